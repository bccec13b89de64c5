"""Structured build descriptions: run the described build, report externals.

A description is a plain mapping returned by a build script, e.g.::

    {
        "command": ["node", "scripts/build.js"],    # run with FUNCPACK_BUILD_DIR set
        "entry": "dist/handler.js",          # optional, copied to handler.js
        "sourceMap": "dist/handler.js.map",  # optional, copied to handler.js.map
        "externals": ["uuid", "left-pad"],   # list, or mapping keyed by module id
    }

The bundler leaves ``handler.js`` (and optionally ``handler.js.map``) in the
build directory; the file strategy picks them up from there.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import anyio

from funcpack.logging import get_logger

PRIMARY_PAYLOAD = "handler.js"
DEBUG_MAP = "handler.js.map"

log = get_logger("funcpack.description")


class DescriptionBundler(Protocol):
    async def bundle(self, description: Mapping[str, Any], build_dir: Path) -> set[str]: ...


def _externals(value: Any) -> set[str]:
    if not value:
        return set()
    if isinstance(value, str):
        return {value}
    if isinstance(value, Mapping):
        return {str(k) for k in value}
    return {str(v) for v in value}


class CommandDescriptionBundler:
    """Default description bundler driven by ``command``/``entry``/``sourceMap``."""

    def __init__(self, service_path: Path) -> None:
        self.service_path = Path(service_path)

    async def bundle(self, description: Mapping[str, Any], build_dir: Path) -> set[str]:
        build_dir = Path(build_dir)

        command = description.get("command")
        if command:
            if isinstance(command, str):
                raise ValueError("description 'command' must be a list of arguments")
            env = {**os.environ, "FUNCPACK_BUILD_DIR": str(build_dir)}
            log.info("Running build command: %s", " ".join(command))
            await anyio.run_process(
                [str(c) for c in command], cwd=self.service_path, env=env, check=True
            )

        for key, target in (("entry", PRIMARY_PAYLOAD), ("sourceMap", DEBUG_MAP)):
            source = description.get(key)
            if source:
                await anyio.to_thread.run_sync(
                    shutil.copyfile, self.service_path / source, build_dir / target
                )

        return _externals(description.get("externals"))
