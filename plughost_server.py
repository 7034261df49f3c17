"""Plughost - Main Entry Point

Runs the plugin host standalone:
- Logging to stderr (plus optional file)
- Plugin discovery and launch from --plugins-dir
- SIGINT/SIGTERM: send "quit" to every plugin, terminate stragglers, exit

A chat client embedding the host creates a PluginHost itself and feeds it
connections and events; this script only supervises the plugin set.
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import os
import signal
import stat
import sys
from typing import List, Optional, TextIO

from core.host import PluginHost
from models.models import (
    DEFAULT_COMMAND_PREFIX,
    DEFAULT_ENTRY_POINT,
    DEFAULT_PLUGINS_DIR,
    HostConfig,
)


LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def open_log_file(path: str) -> Optional[TextIO]:
    """Open ``path`` for appending, refusing symlinks and non-regular files.

    Returns None (after a warning on stderr) when the file can't be used; the
    host then logs to stderr only.
    """
    flags = os.O_WRONLY | os.O_CREAT | os.O_APPEND | getattr(os, "O_NOFOLLOW", 0)
    try:
        fd = os.open(os.path.realpath(path), flags, 0o644)
    except OSError as e:
        sys.stderr.write(f"plughost: cannot open log file {path!r}: {e}\n")
        return None
    if stat.S_ISREG(os.fstat(fd).st_mode):
        return os.fdopen(fd, "a", encoding="utf-8")
    os.close(fd)
    sys.stderr.write(f"plughost: log file {path!r} is not a regular file\n")
    return None


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    stream = open_log_file(log_file) if log_file else None
    if stream is not None:
        handlers.append(logging.StreamHandler(stream))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Plughost plugin host")
    parser.add_argument(
        "--plugins-dir",
        type=str,
        default=os.environ.get("PLUGHOST_PLUGINS_DIR", DEFAULT_PLUGINS_DIR),
        help=f"Directory with one subdirectory per plugin (default: {DEFAULT_PLUGINS_DIR})",
    )
    parser.add_argument(
        "--entry-point",
        type=str,
        default=DEFAULT_ENTRY_POINT,
        help=f"Executable started in each plugin directory (default: {DEFAULT_ENTRY_POINT})",
    )
    parser.add_argument(
        "--command-prefix",
        type=str,
        default=DEFAULT_COMMAND_PREFIX,
        help=f"Prefix marking chat commands (default: {DEFAULT_COMMAND_PREFIX})",
    )
    parser.add_argument(
        "--stop-timeout",
        type=float,
        default=5.0,
        help="Seconds plugins get to exit after 'quit' (default: 5)",
    )
    parser.add_argument(
        "--log-level", type=str.upper, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level",
    )
    parser.add_argument("--log-file", type=str, default=None, help="Also log to this file")
    return parser


def config_from_args(args: argparse.Namespace) -> HostConfig:
    return HostConfig(
        plugins_dir=args.plugins_dir,
        entry_point=args.entry_point,
        command_prefix=args.command_prefix,
        stop_timeout=args.stop_timeout,
    )


async def run_host(config: HostConfig, logger: logging.Logger) -> None:
    host = PluginHost(config)
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except (NotImplementedError, RuntimeError):
            logger.warning("Signal %s handler not supported on this platform", sig)

    plugins = await host.start()
    logger.info(
        "Plughost started: plugins_dir=%s plugins=%d",
        config.plugins_path, len(plugins),
    )

    waiter = asyncio.create_task(stop_requested.wait())
    all_exited = asyncio.create_task(host.wait())
    try:
        await asyncio.wait({waiter, all_exited}, return_when=asyncio.FIRST_COMPLETED)
        if stop_requested.is_set():
            logger.info("Shutting down (signal)...")
        else:
            logger.warning("All plugins have exited")
    finally:
        waiter.cancel()
        await host.stop()
        all_exited.cancel()
        await asyncio.gather(waiter, all_exited, return_exceptions=True)


def main(argv: list | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)
    logger = logging.getLogger("plughost")

    try:
        config = config_from_args(args)
    except ValueError as e:
        logger.critical("Invalid configuration: %s", e)
        sys.exit(2)

    try:
        asyncio.run(run_host(config, logger))
    except Exception as e:
        logger.critical("Host failed: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
