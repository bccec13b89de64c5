"""Transient build and artifact directories under ``<service>/.serverless``."""

from __future__ import annotations

import shutil
from pathlib import Path

import anyio

TMP_DIRNAME = ".serverless"


class WorkspaceManager:
    def __init__(self, service_path: Path) -> None:
        self.tmp_dir = Path(service_path) / TMP_DIRNAME
        self.build_dir = self.tmp_dir / "build"
        self.artifact_dir = self.tmp_dir / "artifacts"

    async def ensure(self) -> None:
        for directory in (self.build_dir, self.artifact_dir):
            await anyio.Path(directory).mkdir(parents=True, exist_ok=True)

    async def empty(self, directory: Path) -> None:
        """Remove everything inside *directory*, keeping the directory itself."""
        await anyio.to_thread.run_sync(_empty_dir, Path(directory))

    async def empty_build_dir(self) -> None:
        await self.empty(self.build_dir)

    async def empty_artifact_dir(self) -> None:
        await self.empty(self.artifact_dir)


def _empty_dir(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
