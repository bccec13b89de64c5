"""Finalize a build: persist the zip, or hand the build dir to a local run."""

from __future__ import annotations

import shutil
import time
from collections.abc import Callable
from pathlib import Path

import anyio

from funcpack.logging import get_logger
from funcpack.package.archive import ArtifactSink
from funcpack.package.digest import archive_digest
from funcpack.types import BuildConfiguration, BuildResult, ServiceContext
from funcpack.workspace import WorkspaceManager

log = get_logger("funcpack.completion")

ARCHIVE_EXT = "zip"


def _write_archive(sink: ArtifactSink, destination: Path) -> None:
    stream = sink.finalize()
    try:
        with open(destination, "wb") as out:
            shutil.copyfileobj(stream, out)
    finally:
        stream.close()


class CompletionController:
    def __init__(
        self, workspace: WorkspaceManager, clock: Callable[[], float] = time.time
    ) -> None:
        self.workspace = workspace
        self.clock = clock

    def archive_path(self, service_name: str) -> Path:
        millis = int(self.clock() * 1000)
        return self.workspace.artifact_dir / f"{service_name}-{millis}.{ARCHIVE_EXT}"

    async def complete(
        self,
        sink: ArtifactSink,
        config: BuildConfiguration,
        service: ServiceContext,
        is_local_execution: bool,
    ) -> BuildResult:
        if is_local_execution:
            # Local runs execute straight from the build dir; nothing is purged
            service.service_path = self.workspace.build_dir
            log.info("Execution root redirected to %s", self.workspace.build_dir)
            return BuildResult.redirected(self.workspace.build_dir)

        if not config.keep:
            await self.workspace.empty_artifact_dir()

        destination = self.archive_path(service.name)
        try:
            await anyio.to_thread.run_sync(_write_archive, sink, destination)
        except BaseException:
            # Drop the partial zip; the build dir stays for inspection
            destination.unlink(missing_ok=True)
            raise

        digest = await anyio.to_thread.run_sync(archive_digest, destination)
        service.artifact = destination
        log.info("Archive written to %s (%d entries)", destination, len(sink))

        if not config.keep:
            await self.workspace.empty_build_dir()

        return BuildResult.archive(destination, sha256=digest)
