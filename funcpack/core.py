"""Build orchestration: workspace -> strategy -> modules -> completion."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio

from funcpack.buildpacks.description import DescriptionBundler
from funcpack.buildpacks.file import FileBuildStrategy, ScriptLoader
from funcpack.buildpacks.modules import ModuleBundler
from funcpack.buildpacks.source import SourceBundler
from funcpack.completion import CompletionController
from funcpack.config import load_build_config, resolve_functions
from funcpack.errors import ConfigurationError, DebugAbort
from funcpack.logging import get_logger
from funcpack.package.archive import ArtifactSink
from funcpack.types import BuildConfiguration, BuildResult, FunctionBuildSpec, ServiceContext
from funcpack.workspace import WorkspaceManager

log = get_logger("funcpack.core")

METHODS = ("bundle", "file")


@dataclass
class BuildContext:
    """State shared by one run; handed to build scripts as their argument."""

    config: BuildConfiguration
    service: ServiceContext
    units: list[FunctionBuildSpec]
    workspace: WorkspaceManager
    sink: ArtifactSink
    externals: set[str] = field(default_factory=set)

    @property
    def is_local_execution(self) -> bool:
        return self.config.local_execution


class BuildOrchestrator:
    def __init__(
        self,
        service: ServiceContext,
        *,
        loader: ScriptLoader | None = None,
        description_bundler: DescriptionBundler | None = None,
        source_bundler: SourceBundler | None = None,
        module_bundler: ModuleBundler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.service = service
        self.workspace = WorkspaceManager(service.service_path)
        self.loader = loader
        self.description_bundler = description_bundler
        self.source_bundler = source_bundler
        self.module_bundler = module_bundler
        self.completion = CompletionController(self.workspace, clock=clock)

    async def run(
        self, config: BuildConfiguration, units: Sequence[FunctionBuildSpec]
    ) -> BuildResult:
        method = config.method
        if method not in METHODS:
            raise ConfigurationError(
                f"unknown build method {method!r} under custom.build.method "
                f"(expected one of: {', '.join(METHODS)})"
            )

        is_local = config.local_execution
        log.info(
            "Build triggered (method=%s, mode=%s)", method, "local" if is_local else "package"
        )

        sink = ArtifactSink(mirror_dir=self.workspace.build_dir if is_local else None)
        ctx = BuildContext(
            config=config,
            service=self.service,
            units=list(units),
            workspace=self.workspace,
            sink=sink,
        )

        file_strategy: FileBuildStrategy | None = None
        if method == "file":
            file_strategy = FileBuildStrategy(
                ctx, loader=self.loader, description_bundler=self.description_bundler
            )
            # Resolve before touching the filesystem
            await file_strategy.resolve_entry()

        await self.workspace.ensure()

        if file_strategy is not None:
            # One script builds every function
            await file_strategy.build()
        else:
            bundler = self.source_bundler or SourceBundler(
                self.service.service_path, compress=config.compress
            )
            # Sequential for now; units are independent and could run in parallel
            for unit in ctx.units:
                log.info("Bundling %s...", unit.name)
                await bundler.bundle(sink, include=unit.include, exclude=unit.exclude)

        module_includes = sorted(ctx.externals | set(config.modules.include))
        modules = self.module_bundler or ModuleBundler(
            self.service.service_path, compress=config.compress
        )
        await modules.bundle(
            sink,
            include=module_includes,
            exclude=config.modules.exclude,
            deep_exclude=config.modules.deep_exclude,
        )

        result = await self.completion.complete(sink, config, self.service, is_local)

        if config.test:
            raise DebugAbort(result)
        return result


def build_service(
    service_path: Path,
    overrides: Mapping[str, Any] | None = None,
    **orchestrator_kwargs: Any,
) -> tuple[BuildResult, ServiceContext]:
    """Load configuration from *service_path* and run a full build synchronously."""
    service_path = Path(service_path).resolve()
    definition, config = load_build_config(service_path, overrides)
    units = resolve_functions(definition, config)
    service = ServiceContext(name=definition.service, service_path=service_path)
    orchestrator = BuildOrchestrator(service, **orchestrator_kwargs)

    async def _run() -> BuildResult:
        return await orchestrator.run(config, units)

    return anyio.run(_run), service
