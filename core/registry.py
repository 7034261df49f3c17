"""Plughost - Shared Registry

Active plugins and active chat connections, shared between every plugin
task and the event delivery path.

Readers get an immutable tuple snapshot; writers replace the whole tuple.
Both happen under one asyncio.Lock, so a reader never sees a half-applied
change and a removal is visible to every broadcast that starts after it.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Iterable, Optional, Tuple

from core.connection import ChatConnection
from models.models import Plugin

logger = logging.getLogger("plughost.registry")


class SharedRegistry:
    def __init__(
        self,
        plugins: Iterable[Plugin] = (),
        connections: Iterable[ChatConnection] = (),
    ):
        self._lock = asyncio.Lock()
        self._plugins: Tuple[Plugin, ...] = tuple(plugins)
        self._connections: Tuple[ChatConnection, ...] = tuple(connections)

    # --- Snapshots ---

    async def plugins(self) -> Tuple[Plugin, ...]:
        async with self._lock:
            return self._plugins

    async def connections(self) -> Tuple[ChatConnection, ...]:
        async with self._lock:
            return self._connections

    @property
    def plugin_count(self) -> int:
        return len(self._plugins)

    async def find_plugin(self, name: str) -> Optional[Plugin]:
        for plugin in await self.plugins():
            if plugin.name == name:
                return plugin
        return None

    # --- Plugin set ---

    async def add_plugin(self, plugin: Plugin) -> None:
        async with self._lock:
            if any(p is plugin for p in self._plugins):
                return
            self._plugins = self._plugins + (plugin,)
        logger.debug("Registered plugin %r", plugin.name)

    async def remove_plugin(self, plugin: Plugin) -> bool:
        """Drop a plugin handle. Returns False if it was not registered."""
        async with self._lock:
            remaining = tuple(p for p in self._plugins if p is not plugin)
            removed = len(remaining) != len(self._plugins)
            self._plugins = remaining
        if removed:
            logger.debug("Removed plugin %r", plugin.name)
        return removed

    async def clear_plugins(self) -> Tuple[Plugin, ...]:
        async with self._lock:
            previous = self._plugins
            self._plugins = ()
        return previous

    # --- Connection set ---

    async def add_connection(self, connection: ChatConnection) -> None:
        async with self._lock:
            if any(c is connection for c in self._connections):
                return
            self._connections = self._connections + (connection,)

    async def remove_connection(self, connection: ChatConnection) -> bool:
        async with self._lock:
            remaining = tuple(
                c for c in self._connections if c is not connection
            )
            removed = len(remaining) != len(self._connections)
            self._connections = remaining
        return removed

    async def find_connection(self, address: str) -> Optional[ChatConnection]:
        """First registered connection whose address equals ``address``."""
        for connection in await self.connections():
            if await connection.get_address() == address:
                return connection
        return None
