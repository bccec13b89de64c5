"""Shared models: configuration, units, service and build results."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ZipOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    compress: bool = True


class ModulesConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ("aws-sdk",)
    deep_exclude: tuple[str, ...] = Field(default=("aws-sdk",), alias="deepExclude")


class FunctionOverride(BaseModel):
    """Per-function section of the build settings (``functions.<fn>``)."""

    model_config = ConfigDict(frozen=True, extra="allow")

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


class BuildConfiguration(BaseModel):
    """Fully merged, read-only settings for one build run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    try_files: tuple[str, ...] = Field(default=("build.py",), alias="tryFiles")
    base_exclude: tuple[str, ...] = Field(
        default=("node_modules", ".serverless"), alias="baseExclude"
    )
    modules: ModulesConfig = Field(default_factory=ModulesConfig)
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    zip: ZipOptions = Field(default_factory=ZipOptions)
    method: str = "bundle"
    function: str | list[str] | None = None
    keep: bool = False
    test: bool = False
    local_execution: bool = Field(default=False, alias="localExecution")
    functions: dict[str, FunctionOverride] = Field(default_factory=dict)

    @property
    def compress(self) -> bool:
        return self.zip.compress


class FunctionBuildSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    handler: str | None = None
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


class PackageSection(BaseModel):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    artifact: str | None = None


class FunctionDefinition(BaseModel):
    """A function as declared in ``serverless.yml``."""

    model_config = ConfigDict(extra="allow")

    handler: str | None = None
    package: PackageSection = Field(default_factory=PackageSection)


class ServiceDefinition(BaseModel):
    model_config = ConfigDict(extra="allow")

    service: str
    functions: dict[str, FunctionDefinition] = Field(default_factory=dict)
    custom: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ServiceContext:
    """The host's view of the service being packaged.

    ``service_path`` is the active execution root; local runs point it at the
    build directory. ``artifact`` receives the archive path after a persisted
    build.
    """

    name: str
    service_path: Path
    artifact: Path | None = None


@dataclass(frozen=True)
class BuildResult:
    kind: Literal["archive", "redirected"]
    archive_path: Path | None = None
    sha256: str | None = None
    execution_root: Path | None = None

    @classmethod
    def archive(cls, path: Path, sha256: str | None = None) -> BuildResult:
        return cls(kind="archive", archive_path=path, sha256=sha256)

    @classmethod
    def redirected(cls, execution_root: Path) -> BuildResult:
        return cls(kind="redirected", execution_root=execution_root)

    @property
    def is_archive(self) -> bool:
        return self.kind == "archive"
