"""Plughost - Data Models

- Plugin: handle for one running plugin subprocess
- IrcMessage / ConnectionInfo: payloads delivered to plugins
- Request variants decoded from plugin output
- Command variants encoded onto plugin input
- HostConfig: validated host settings
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Optional, Any, Dict, List
import asyncio
import os
import re

DEFAULT_PLUGINS_DIR = "Plugins"
DEFAULT_ENTRY_POINT = "run.sh"
DEFAULT_COMMAND_PREFIX = "|"
DEFAULT_MAX_LINE_BYTES = 2 * 1024 * 1024  # 2 MB per protocol line


@dataclass(eq=False)
class Plugin:
    """Handle for a running plugin subprocess.

    Identity-compared: two handles are equal only if they are the same object,
    so the registry can remove exactly the handle whose process exited.
    The mutable fields (``pid``, ``commands``) are only written by the
    plugin's own read loop.
    """
    name: str                       # Plugin directory name
    path: str                       # Absolute plugin directory
    stdout: Any                     # asyncio.StreamReader (plugin -> host)
    stderr: Any                     # asyncio.StreamReader (plugin diagnostics)
    stdin: Any                      # asyncio.StreamWriter (host -> plugin)
    process: Optional[asyncio.subprocess.Process] = None

    # Self-reported via the "pid" request
    pid: Optional[int] = None

    # Command names registered via "cmdadd", in registration order
    commands: List[str] = field(default_factory=list)

    # Reserved protocol metadata, not interpreted by the host
    capabilities: List[str] = field(default_factory=list)
    version: str = ""

    @property
    def os_pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process is not None else None

    def __repr__(self) -> str:
        return f"<Plugin {self.name!r} pid={self.os_pid}>"


@dataclass
class IrcMessage:
    """A chat event as delivered to plugins."""
    nick: Optional[str] = None
    user: Optional[str] = None
    host: Optional[str] = None
    server: Optional[str] = None
    code: Optional[str] = None
    msg: Optional[str] = None
    chan: Optional[str] = None
    origin: Optional[str] = None
    other: List[str] = field(default_factory=list)
    raw: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConnectionInfo:
    address: str
    nickname: str
    username: str
    chans: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


# --- Requests (plugin -> host) ---

@dataclass(frozen=True)
class SendRequest:
    server_address: str
    text: str
    request_id: int


@dataclass(frozen=True)
class RegisterCommandRequest:
    command: str
    request_id: int


@dataclass(frozen=True)
class ReportPidRequest:
    pid: int


# --- Commands (host -> plugin) ---

@dataclass(frozen=True)
class Deliver:
    event: IrcMessage
    connection_info: ConnectionInfo


@dataclass(frozen=True)
class DeliverCommand:
    event: IrcMessage
    connection_info: ConnectionInfo
    prefix: str
    remainder: str


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class Success:
    message: str
    request_id: int


@dataclass(frozen=True)
class Failure:
    message: str
    request_id: int


@dataclass
class HostConfig:
    """Settings for the plugin host."""
    plugins_dir: str = DEFAULT_PLUGINS_DIR
    entry_point: str = DEFAULT_ENTRY_POINT
    command_prefix: str = DEFAULT_COMMAND_PREFIX

    # Lines above this size are discarded (also the StreamReader limit)
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES

    # Seconds
    write_timeout: float = 10.0     # Per-line stdin drain
    stop_timeout: float = 5.0       # Grace after "quit" before terminate/kill

    # Crash reports keep the last N stderr lines
    stderr_tail_lines: int = 200

    def __post_init__(self):
        if not self.plugins_dir:
            raise ValueError("plugins_dir cannot be empty")

        # Entry point is resolved inside each plugin directory: a bare
        # file name only, no path components
        if (not self.entry_point
                or os.path.basename(self.entry_point) != self.entry_point
                or self.entry_point in (".", "..")):
            raise ValueError(
                f"entry_point {self.entry_point!r} must be a plain file name"
            )

        if not self.command_prefix or re.search(r"\s", self.command_prefix):
            raise ValueError(
                f"command_prefix {self.command_prefix!r} must be non-empty "
                f"and contain no whitespace"
            )

        if self.max_line_bytes < 1024:
            raise ValueError("max_line_bytes must be at least 1024")
        if self.write_timeout <= 0 or self.stop_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.stderr_tail_lines < 1:
            raise ValueError("stderr_tail_lines must be at least 1")

    @property
    def plugins_path(self) -> str:
        return os.path.abspath(self.plugins_dir)
