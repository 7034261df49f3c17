"""Plughost - Chat connection boundary.

The chat-network client lives outside the host. It implements
ChatConnection for each server it is connected to and registers the
connection with the host; the host only queries it and transmits raw lines.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List

from models.models import ConnectionInfo


class ChatConnection(ABC):
    """One live connection to a chat server."""

    @abstractmethod
    async def get_address(self) -> str:
        pass

    @abstractmethod
    async def get_nickname(self) -> str:
        pass

    @abstractmethod
    async def get_username(self) -> str:
        pass

    @abstractmethod
    async def get_channels(self) -> List[str]:
        pass

    @abstractmethod
    async def send_raw(self, text: str) -> None:
        """Transmit one raw protocol line on this connection."""
        pass


async def connection_info(connection: ChatConnection) -> ConnectionInfo:
    """Query the connection for the fields plugins receive with each event.

    Not cached: nickname and channel membership change over time.
    """
    return ConnectionInfo(
        address=await connection.get_address(),
        nickname=await connection.get_nickname(),
        username=await connection.get_username(),
        chans=list(await connection.get_channels()),
    )
