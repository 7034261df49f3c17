"""Plughost - Plugin Launcher

Discovers plugin directories and spawns one subprocess per plugin.

Layout:
    <plugins_dir>/<name>/run.sh    executable, started with no arguments
                                   and <name>/ as working directory

Hidden entries (leading ".") and anything that is not a directory are
ignored. A plugin that fails to spawn is logged and skipped; discovery of the
remaining plugins continues.
"""

from __future__ import annotations
import asyncio
import logging
import os
import sys
from typing import List

from core.errors import SpawnFailure
from models.models import HostConfig, Plugin

logger = logging.getLogger("plughost.launcher")


def discover_plugin_dirs(plugins_dir: str) -> List[str]:
    """Names of plugin directories under ``plugins_dir``, sorted."""
    if not os.path.isdir(plugins_dir):
        logger.warning("Plugins dir not found: %r", plugins_dir)
        return []

    names = []
    with os.scandir(plugins_dir) as entries:
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if not entry.is_dir():
                logger.debug("Skipping non-directory %r", entry.name)
                continue
            names.append(entry.name)
    return sorted(names)


async def launch_plugin(name: str, config: HostConfig) -> Plugin:
    """Spawn the entry point of one plugin directory.

    Raises SpawnFailure if the entry point is missing, not executable, or the
    OS refuses to start it.
    """
    plugin_dir = os.path.join(config.plugins_path, name)
    entry_point = os.path.join(plugin_dir, config.entry_point)
    logger.info("Launching plugin %r from %s", name, plugin_dir)

    if not os.path.isfile(entry_point):
        raise SpawnFailure(name, f"{config.entry_point} not found")
    if sys.platform != "win32" and not os.access(entry_point, os.X_OK):
        raise SpawnFailure(name, f"{config.entry_point} is not executable")

    kwargs = {
        "stdin": asyncio.subprocess.PIPE,
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "cwd": plugin_dir,
        # Default 64KB makes readline() fail on long but valid lines
        "limit": config.max_line_bytes,
    }
    if sys.platform != "win32":
        # Own process group, so shutdown can signal run.sh and its children
        kwargs["start_new_session"] = True

    try:
        process = await asyncio.create_subprocess_exec(entry_point, **kwargs)
    except OSError as e:
        raise SpawnFailure(name, str(e)[:200]) from e

    logger.debug("Plugin %r spawned (PID %d)", name, process.pid)
    return Plugin(
        name=name,
        path=plugin_dir,
        stdout=process.stdout,
        stderr=process.stderr,
        stdin=process.stdin,
        process=process,
    )


async def launch_plugins(config: HostConfig) -> List[Plugin]:
    """Launch every plugin found in the configured plugins directory."""
    plugins = []
    for name in discover_plugin_dirs(config.plugins_path):
        try:
            plugins.append(await launch_plugin(name, config))
        except SpawnFailure as e:
            logger.error("%s - skipping", e)
    logger.info("Launched %d plugin(s)", len(plugins))
    return plugins
