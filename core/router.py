"""Plughost - Event Router

Two directions:
- dispatch(): act on a request decoded from one plugin's output and reply
  to that plugin
- broadcast*(): fan an inbound chat event out to every active plugin

A failed delivery to one plugin (closed pipe, stalled stdin) is logged and
never stops delivery to the others.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from core.connection import ChatConnection, connection_info
from core.errors import DeliveryError, safe_text
from core.protocol import Command, Request
from core.registry import SharedRegistry
from models.models import (
    DEFAULT_COMMAND_PREFIX,
    Deliver,
    DeliverCommand,
    Failure,
    IrcMessage,
    Plugin,
    Quit,
    RegisterCommandRequest,
    ReportPidRequest,
    SendRequest,
    Success,
)

logger = logging.getLogger("plughost.router")

MSG_SENT = "Message sent."
MSG_NO_SERVER = "Server doesn't exist."
MSG_COMMAND_ADDED = "Command added."
MSG_SEND_FAILED = "Failed to send message."

CommandWriter = Callable[[Plugin, Command], Awaitable[None]]


class EventRouter:
    def __init__(
        self,
        registry: SharedRegistry,
        write_command: CommandWriter,
        command_prefix: str = DEFAULT_COMMAND_PREFIX,
    ):
        self.registry = registry
        self.write_command = write_command  # Raises DeliveryError
        self.command_prefix = command_prefix

    # --- Plugin requests ---

    async def dispatch(self, plugin: Plugin, request: Request) -> None:
        """Handle one decoded request from ``plugin``.

        Replies are written to the same plugin. A DeliveryError on the reply
        propagates to the caller.
        """
        if isinstance(request, SendRequest):
            await self._handle_send(plugin, request)
        elif isinstance(request, RegisterCommandRequest):
            plugin.commands.append(request.command)
            logger.info(
                "Plugin %r registered command %r",
                plugin.name, request.command
            )
            await self.write_command(
                plugin, Success(MSG_COMMAND_ADDED, request.request_id)
            )
        elif isinstance(request, ReportPidRequest):
            plugin.pid = request.pid
            logger.debug("Plugin %r reported pid %d", plugin.name, request.pid)
        else:
            raise TypeError(f"Not a plugin request: {type(request).__name__}")

    async def _handle_send(self, plugin: Plugin, request: SendRequest) -> None:
        connection = await self.registry.find_connection(request.server_address)
        if connection is None:
            logger.warning(
                "Plugin %r: send to unknown server %r",
                plugin.name, request.server_address
            )
            await self.write_command(
                plugin, Failure(MSG_NO_SERVER, request.request_id)
            )
            return

        try:
            await connection.send_raw(request.text)
        except Exception as e:
            logger.warning(
                "Plugin %r: send to %r failed: %s",
                plugin.name, request.server_address, safe_text(e)
            )
            await self.write_command(
                plugin, Failure(MSG_SEND_FAILED, request.request_id)
            )
            return
        await self.write_command(plugin, Success(MSG_SENT, request.request_id))

    # --- Chat events ---

    async def on_message(self, event: IrcMessage, connection: ChatConnection) -> None:
        """Entry point for the chat client: route one inbound event.

        Messages starting with the command prefix followed by a command some
        active plugin registered go out as "cmd"; everything else as "recv".
        """
        plugins = await self.registry.plugins()
        remainder = self._match_command(event.msg, plugins)
        info = await connection_info(connection)
        if remainder is None:
            await self._deliver_all(plugins, Deliver(event, info))
        else:
            await self._deliver_all(
                plugins,
                DeliverCommand(event, info, self.command_prefix, remainder),
            )

    async def broadcast(self, event: IrcMessage, connection: ChatConnection) -> None:
        info = await connection_info(connection)
        await self._deliver_all(await self.registry.plugins(), Deliver(event, info))

    async def broadcast_command(
        self,
        event: IrcMessage,
        connection: ChatConnection,
        prefix: str,
        remainder: str,
    ) -> None:
        info = await connection_info(connection)
        await self._deliver_all(
            await self.registry.plugins(),
            DeliverCommand(event, info, prefix, remainder),
        )

    async def broadcast_quit(self) -> None:
        await self._deliver_all(await self.registry.plugins(), Quit())

    def _match_command(
        self, text: Optional[str], plugins: Sequence[Plugin]
    ) -> Optional[str]:
        """Text after the prefix if it names a registered command, else None."""
        if not text or not text.startswith(self.command_prefix):
            return None
        remainder = text[len(self.command_prefix):]
        words = remainder.split(None, 1)
        if not words:
            return None
        if any(words[0] in plugin.commands for plugin in plugins):
            return remainder
        return None

    async def _deliver_all(self, plugins: Sequence[Plugin], command: Command) -> None:
        if not plugins:
            return
        await asyncio.gather(*(self._deliver(p, command) for p in plugins))

    async def _deliver(self, plugin: Plugin, command: Command) -> None:
        try:
            await self.write_command(plugin, command)
        except DeliveryError as e:
            logger.warning("Delivery to plugin %r failed: %s", plugin.name, e)
