"""Plughost - Plugin Read Loop

One loop per plugin. Reads the plugin's stdout line by line, decodes
protocol lines and hands them to the router, and returns once stdout reaches
EOF. Requests from one plugin are handled strictly in the order written.

stderr is collected by a companion task for the plugin's whole lifetime so
the plugin never blocks on a full stderr pipe. After stdout closes, finish()
lets the collector reach EOF too and puts its tail into the crash log.
"""

from __future__ import annotations
import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from core.errors import DeliveryError, ProtocolError, safe_text
from core.protocol import decode_request
from core.router import EventRouter
from models.models import DEFAULT_MAX_LINE_BYTES, Plugin

logger = logging.getLogger("plughost.plugin_loop")

STDERR_DRAIN_TIMEOUT = 5.0   # Seconds to let stderr reach EOF after stdout
EXIT_WAIT_TIMEOUT = 2.0      # Seconds to wait for an exit code for the log


class PluginReadLoop:
    def __init__(
        self,
        plugin: Plugin,
        router: EventRouter,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        stderr_tail_lines: int = 200,
    ):
        self.plugin = plugin
        self.router = router
        self.max_line_bytes = max_line_bytes
        self._stderr_tail: Deque[str] = deque(maxlen=stderr_tail_lines)
        self._stderr_task: Optional[asyncio.Task] = None
        # Set by the host during shutdown: EOF is then an expected exit
        self.stopping = False

    async def run(self) -> None:
        """Read and dispatch until EOF on stdout. Never restarts.

        Call finish() afterwards for the stderr drain and the exit report.
        """
        if self.plugin.stderr is not None and self._stderr_task is None:
            self._stderr_task = asyncio.create_task(
                self._collect_stderr(),
                name=f"plugin-{self.plugin.name}-stderr",
            )
        try:
            while True:
                line = await self._read_line()
                if line is None:
                    return
                await self.handle_line(line)
        except asyncio.CancelledError:
            if self._stderr_task is not None:
                self._stderr_task.cancel()
            raise

    async def finish(self) -> None:
        """Let stderr reach EOF, then log how the plugin ended."""
        await self._finish_stderr()
        await self._report_exit()

    async def _read_line(self) -> Optional[str]:
        """Next line from stdout without its terminator; None at EOF."""
        stdout = self.plugin.stdout
        while True:
            try:
                line_bytes = await stdout.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; an unterminated last line still counts
                line_bytes = e.partial
                if not line_bytes:
                    return None
            except asyncio.LimitOverrunError as e:
                logger.warning(
                    "Plugin %r: oversized line (> %d bytes) discarded",
                    self.plugin.name, self.max_line_bytes
                )
                if not await self._skip_line(e.consumed):
                    return None
                continue
            except (ConnectionResetError, BrokenPipeError):
                return None

            if len(line_bytes) > self.max_line_bytes:
                logger.warning(
                    "Plugin %r: oversized line (%d bytes) discarded",
                    self.plugin.name, len(line_bytes)
                )
                continue
            return line_bytes.decode("utf-8", errors="replace").rstrip("\r\n")

    async def _skip_line(self, consumed: int) -> bool:
        """Drop the rest of an over-limit line, through its newline.

        The line may still be arriving, so keep dropping buffered chunks until
        the newline shows up. Returns False if EOF comes first.
        """
        stdout = self.plugin.stdout
        while True:
            await stdout.read(consumed)
            try:
                await stdout.readuntil(b"\n")
                return True
            except asyncio.LimitOverrunError as e:
                consumed = e.consumed
            except asyncio.IncompleteReadError:
                return False

    async def handle_line(self, line: str) -> None:
        """Decode and dispatch one stdout line. Errors stay local to the line."""
        if not line.startswith("{"):
            if line.strip():
                logger.info(
                    "Plugin %r says: %s", self.plugin.name, safe_text(line, 500)
                )
            return

        logger.debug("Got line from plugin %r: %s", self.plugin.name, safe_text(line))
        try:
            request = decode_request(line)
        except ProtocolError as e:
            logger.warning(
                "Plugin %r: ignoring bad message (%s): %s",
                self.plugin.name, type(e).__name__, safe_text(e)
            )
            return

        try:
            await self.router.dispatch(self.plugin, request)
        except DeliveryError as e:
            logger.warning(
                "Plugin %r: reply not delivered: %s", self.plugin.name, e
            )
        except Exception:
            logger.exception(
                "Plugin %r: error handling %s", self.plugin.name,
                type(request).__name__
            )

    # --- stderr ---

    async def _collect_stderr(self) -> None:
        while True:
            try:
                line_bytes = await self.plugin.stderr.readline()
            except ValueError:
                continue
            except (ConnectionResetError, BrokenPipeError):
                return
            if not line_bytes:
                return
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if line:
                safe_line = safe_text(line, 1000)
                self._stderr_tail.append(safe_line)
                logger.debug(
                    "Plugin %r stderr: %s", self.plugin.name, safe_line[:200]
                )

    async def _finish_stderr(self) -> None:
        task = self._stderr_task
        if task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=STDERR_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            # stderr held open by a surviving child process
            logger.debug("Plugin %r: stderr still open after stdout EOF", self.plugin.name)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        except asyncio.CancelledError:
            task.cancel()
            raise

    async def _report_exit(self) -> None:
        returncode = self.plugin.returncode
        process = self.plugin.process
        if process is not None and returncode is None:
            try:
                returncode = await asyncio.wait_for(
                    process.wait(), timeout=EXIT_WAIT_TIMEOUT
                )
            except asyncio.TimeoutError:
                returncode = None

        errs = "\n".join(self._stderr_tail) or "(no stderr captured)"
        if self.stopping:
            logger.info(
                "Plugin %r exited (exit code %s)", self.plugin.name, returncode
            )
            logger.debug("Plugin %r final stderr:\n%s", self.plugin.name, errs)
            return
        logger.warning(
            "Plugin %r crashed (exit code %s), stderr:\n%s",
            self.plugin.name, returncode, errs
        )
