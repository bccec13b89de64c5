"""Test doubles and tree builders shared by the unit and integration tests."""

from __future__ import annotations

import json
from pathlib import Path

from funcpack.core import BuildContext
from funcpack.package.archive import ArtifactSink
from funcpack.types import BuildConfiguration, FunctionBuildSpec, ServiceContext
from funcpack.workspace import WorkspaceManager


def write_module(
    root: Path, name: str, files: dict[str, str], dependencies: dict[str, str] | None = None
) -> Path:
    pkg = root / "node_modules" / name
    pkg.mkdir(parents=True, exist_ok=True)
    (pkg / "package.json").write_text(
        json.dumps({"name": name, "dependencies": dependencies or {}}), encoding="utf-8"
    )
    for rel, text in files.items():
        (pkg / rel).parent.mkdir(parents=True, exist_ok=True)
        (pkg / rel).write_text(text, encoding="utf-8")
    return pkg


class StaticLoader:
    """Script loader returning a fixed value instead of importing a file."""

    def __init__(self, value: object) -> None:
        self.value = value
        self.loaded: list[Path] = []

    def load(self, path: Path) -> object:
        self.loaded.append(path)
        return self.value


class RecordingModuleBundler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    async def bundle(self, sink, include=(), exclude=(), deep_exclude=()) -> list[str]:
        self.calls.append(
            {"include": list(include), "exclude": list(exclude), "deep_exclude": list(deep_exclude)}
        )
        return []


class FakeDescriptionBundler:
    """Writes the requested derived files into the build dir, reports fixed externals."""

    def __init__(self, externals: set[str], files: tuple[str, ...] = ()) -> None:
        self.externals = externals
        self.files = files
        self.descriptions: list[dict] = []

    async def bundle(self, description, build_dir: Path) -> set[str]:
        self.descriptions.append(dict(description))
        build_dir.mkdir(parents=True, exist_ok=True)
        for name in self.files:
            (build_dir / name).write_text(f"// {name}\n", encoding="utf-8")
        return set(self.externals)


def make_context(root: Path, **settings) -> BuildContext:
    config = BuildConfiguration.model_validate(settings)
    return BuildContext(
        config=config,
        service=ServiceContext(name="demo", service_path=root),
        units=[FunctionBuildSpec(name="hello")],
        workspace=WorkspaceManager(root),
        sink=ArtifactSink(),
    )
