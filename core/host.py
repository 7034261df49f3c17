"""Plughost - Plugin Host

Owns the shared registry, the event router and one supervised task per
plugin. The supervising task runs the plugin's read loop to completion and is
the only place a plugin is removed from the registry. Removal happens at
stdout EOF; the crash report is logged afterwards.
"""

from __future__ import annotations
import asyncio
import logging
import os
import signal
import sys
from typing import Dict, List, Optional

from core.connection import ChatConnection
from core.errors import DeliveryError, SpawnFailure
from core.launcher import launch_plugin, launch_plugins
from core.plugin_loop import PluginReadLoop
from core.protocol import Command, encode_command
from core.registry import SharedRegistry
from core.router import EventRouter
from models.models import HostConfig, IrcMessage, Plugin

logger = logging.getLogger("plughost.host")

POSIX_KILL_GRACE = 3.0   # Seconds between SIGTERM and SIGKILL


class PluginHost:
    def __init__(
        self,
        config: Optional[HostConfig] = None,
        registry: Optional[SharedRegistry] = None,
    ):
        self.config = config or HostConfig()
        self.registry = registry if registry is not None else SharedRegistry()
        self.router = EventRouter(
            self.registry, self.send_command, self.config.command_prefix
        )
        self._tasks: Dict[Plugin, asyncio.Task] = {}
        self._loops: Dict[Plugin, PluginReadLoop] = {}
        self._stopping = False

    # --- Plugin lifecycle ---

    async def start(self) -> List[Plugin]:
        """Launch every plugin in the plugins directory."""
        plugins = await launch_plugins(self.config)
        for plugin in plugins:
            await self.attach(plugin)
        return plugins

    async def add_plugin(self, name: str) -> Plugin:
        """Launch one more plugin at runtime. Raises SpawnFailure."""
        if await self.registry.find_plugin(name) is not None:
            raise SpawnFailure(name, "already running")
        plugin = await launch_plugin(name, self.config)
        await self.attach(plugin)
        return plugin

    async def attach(self, plugin: Plugin) -> asyncio.Task:
        """Register a spawned plugin and start its read loop."""
        await self.registry.add_plugin(plugin)
        loop = PluginReadLoop(
            plugin,
            self.router,
            max_line_bytes=self.config.max_line_bytes,
            stderr_tail_lines=self.config.stderr_tail_lines,
        )
        loop.stopping = self._stopping
        self._loops[plugin] = loop
        task = asyncio.create_task(
            self._supervise(plugin, loop), name=f"plugin-{plugin.name}-stdout"
        )
        self._tasks[plugin] = task
        return task

    async def _supervise(self, plugin: Plugin, loop: PluginReadLoop) -> None:
        try:
            try:
                await loop.run()
            except Exception:
                logger.exception("Plugin %r: read loop failed", plugin.name)
            finally:
                # Out of the registry as soon as stdout is gone, before the
                # stderr drain and exit wait
                await self.registry.remove_plugin(plugin)
                self._close_stdin(plugin)
            await loop.finish()
        finally:
            self._tasks.pop(plugin, None)
            self._loops.pop(plugin, None)

    async def wait(self) -> None:
        """Return once every plugin task has finished."""
        while self._tasks:
            await asyncio.wait(list(self._tasks.values()))

    async def stop(self) -> None:
        """Ask every plugin to quit, then terminate the ones that don't."""
        self._stopping = True
        for loop in self._loops.values():
            loop.stopping = True

        if not self._tasks:
            return
        logger.info("Stopping %d plugin(s)...", len(self._tasks))
        await self.router.broadcast_quit()

        _, pending = await asyncio.wait(
            list(self._tasks.values()), timeout=self.config.stop_timeout
        )
        if pending:
            stragglers = [p for p, t in list(self._tasks.items()) if t in pending]
            await asyncio.gather(*(self._terminate(p) for p in stragglers))
            _, pending = await asyncio.wait(
                pending, timeout=self.config.stop_timeout
            )

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.registry.clear_plugins()
        logger.info("All plugins stopped")

    async def _terminate(self, plugin: Plugin) -> None:
        process = plugin.process
        if process is None or process.returncode is not None:
            return

        logger.warning("Plugin %r did not quit, terminating", plugin.name)
        try:
            self._signal(process, signal.SIGTERM)
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=POSIX_KILL_GRACE)
            return
        except asyncio.TimeoutError:
            pass

        try:
            self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=POSIX_KILL_GRACE)
        except asyncio.TimeoutError:
            logger.warning(
                "Plugin %r: process didn't exit after kill", plugin.name
            )

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        if sys.platform == "win32":
            if sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
            return
        try:
            os.killpg(os.getpgid(process.pid), sig)
        except PermissionError:
            process.send_signal(sig)

    @staticmethod
    def _close_stdin(plugin: Plugin) -> None:
        stdin = plugin.stdin
        if stdin is None or stdin.is_closing():
            return
        try:
            stdin.close()
        except (BrokenPipeError, ConnectionResetError, OSError):
            pass

    # --- Writing to plugins ---

    async def send_command(self, plugin: Plugin, command: Command) -> None:
        """Write one command line to a plugin's stdin.

        Raises DeliveryError if the pipe is closed or the plugin stops
        reading for longer than ``write_timeout``.
        """
        stdin = plugin.stdin
        if stdin is None or stdin.is_closing():
            raise DeliveryError(f"Plugin '{plugin.name}' stdin is closed")

        line = encode_command(command) + "\n"
        try:
            stdin.write(line.encode("utf-8"))
            await asyncio.wait_for(
                stdin.drain(), timeout=self.config.write_timeout
            )
        except asyncio.TimeoutError:
            raise DeliveryError(
                f"Plugin '{plugin.name}' stdin drain timed out"
            ) from None
        except (BrokenPipeError, ConnectionResetError, OSError) as e:
            raise DeliveryError(f"Plugin '{plugin.name}' pipe broken: {e}") from e

    # --- Chat side ---

    async def add_connection(self, connection: ChatConnection) -> None:
        await self.registry.add_connection(connection)

    async def remove_connection(self, connection: ChatConnection) -> None:
        await self.registry.remove_connection(connection)

    async def on_message(self, event: IrcMessage, connection: ChatConnection) -> None:
        await self.router.on_message(event, connection)

    async def plugins(self) -> List[Plugin]:
        return list(await self.registry.plugins())
