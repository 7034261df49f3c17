import json
from typing import List

import pytest

from core.connection import ChatConnection
from models.models import Plugin


class FakeWriter:
    """Stands in for a plugin's stdin StreamWriter."""

    def __init__(self, broken: bool = False):
        self.raw: List[str] = []
        self.broken = broken
        self.closed = False

    def write(self, data: bytes):
        if self.broken:
            raise BrokenPipeError("pipe closed")
        self.raw.append(data.decode("utf-8"))

    async def drain(self):
        pass

    def is_closing(self):
        return self.closed

    def close(self):
        self.closed = True

    @property
    def messages(self):
        return [json.loads(line) for line in self.raw]


class FakeConnection(ChatConnection):
    def __init__(self, address, nickname="plughost", username="plug", chans=None):
        self.address = address
        self.nickname = nickname
        self.username = username
        self.chans = list(chans or ["#chan"])
        self.sent: List[str] = []

    async def get_address(self):
        return self.address

    async def get_nickname(self):
        return self.nickname

    async def get_username(self):
        return self.username

    async def get_channels(self):
        return self.chans

    async def send_raw(self, text):
        self.sent.append(text)


@pytest.fixture
def make_plugin(tmp_path):
    def _make(name="alpha", stdout=None, stderr=None, broken=False):
        return Plugin(
            name=name,
            path=str(tmp_path / name),
            stdout=stdout,
            stderr=stderr,
            stdin=FakeWriter(broken=broken),
        )
    return _make


@pytest.fixture
def make_connection():
    return FakeConnection
