from __future__ import annotations

import logging
import zipfile
from pathlib import Path

import pytest

from funcpack.config import load_build_config, resolve_functions
from funcpack.core import BuildOrchestrator
from funcpack.errors import (
    BuildFailure,
    ConfigurationError,
    DebugAbort,
    EntryResolutionError,
    OutputClassificationError,
)
from funcpack.types import ServiceContext
from tests.helpers import FakeDescriptionBundler, RecordingModuleBundler, StaticLoader

pytestmark = pytest.mark.anyio

FIXED_NOW = 1_700_000_000.5


def _orchestrator(root: Path, **kwargs) -> BuildOrchestrator:
    service = ServiceContext(name="demo", service_path=root)
    return BuildOrchestrator(service, clock=lambda: FIXED_NOW, **kwargs)


def _load(root: Path, **overrides):
    definition, config = load_build_config(root, overrides)
    return config, resolve_functions(definition, config)


def _files(directory: Path) -> list[str]:
    if not directory.exists():
        return []
    return sorted(p.relative_to(directory).as_posix() for p in directory.rglob("*") if p.is_file())


async def test_bundle_method_packages_every_unit(service_dir: Path) -> None:
    config, units = _load(service_dir, include=["src/*"])
    orchestrator = _orchestrator(service_dir)

    result = await orchestrator.run(config, units)

    expected = service_dir / ".serverless" / "artifacts" / "demo-1700000000500.zip"
    assert result.kind == "archive"
    assert result.archive_path == expected
    assert orchestrator.service.artifact == expected
    with zipfile.ZipFile(expected) as z:
        assert set(z.namelist()) == {"src/hello.js", "src/world.js"}
    assert _files(orchestrator.workspace.build_dir) == []
    assert _files(orchestrator.workspace.artifact_dir) == [expected.name]


async def test_units_sharing_files_build_without_warnings(
    service_dir: Path, caplog: pytest.LogCaptureFixture
) -> None:
    config, units = _load(service_dir)
    await _orchestrator(service_dir).run(config, units)
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


async def test_bundle_method_uses_each_units_own_lists(service_dir: Path) -> None:
    config, units = _load(service_dir, function="hello")
    result = await _orchestrator(service_dir).run(config, units)
    with zipfile.ZipFile(result.archive_path) as z:
        # hello only includes its own file; node_modules is in baseExclude
        assert z.namelist() == ["src/hello.js"]


async def test_unknown_method_fails_before_any_mutation(service_dir: Path) -> None:
    config, units = _load(service_dir, method="webpack")
    with pytest.raises(ConfigurationError, match="webpack"):
        await _orchestrator(service_dir).run(config, units)
    assert not (service_dir / ".serverless").exists()


async def test_missing_build_script_leaves_no_trace(service_dir: Path) -> None:
    config, units = _load(service_dir, method="file", tryFiles=["nope.py", "also-nope.py"])
    with pytest.raises(EntryResolutionError):
        await _orchestrator(service_dir).run(config, units)
    assert not (service_dir / ".serverless").exists()


async def test_unclassifiable_output_aborts_the_run(service_dir: Path) -> None:
    (service_dir / "build.py").write_text("build = 42\n", encoding="utf-8")
    config, units = _load(service_dir, method="file")
    with pytest.raises(OutputClassificationError):
        await _orchestrator(service_dir).run(config, units)
    assert _files(service_dir / ".serverless" / "artifacts") == []


async def test_file_method_raw_content_round_trip(service_dir: Path) -> None:
    (service_dir / "build.py").write_text("build = 'module content A'\n", encoding="utf-8")
    config, units = _load(service_dir, method="file")

    result = await _orchestrator(service_dir).run(config, units)

    with zipfile.ZipFile(result.archive_path) as z:
        assert z.namelist() == ["handler.js"]
        assert z.read("handler.js") == "module content A".encode()


async def test_externals_seed_the_module_phase(service_dir: Path) -> None:
    (service_dir / "build.py").touch()
    config, units = _load(
        service_dir,
        method="file",
        modules={"include": ["extra"], "exclude": ["aws-sdk"], "deepExclude": ["aws-sdk"]},
    )
    modules = RecordingModuleBundler()
    orchestrator = _orchestrator(
        service_dir,
        loader=StaticLoader({"entry": "src/hello.js"}),
        description_bundler=FakeDescriptionBundler({"left-pad", "uuid"}, files=("handler.js",)),
        module_bundler=modules,
    )

    await orchestrator.run(config, units)

    assert modules.calls == [
        {
            "include": ["extra", "left-pad", "uuid"],
            "exclude": ["aws-sdk"],
            "deep_exclude": ["aws-sdk"],
        }
    ]


async def test_structured_build_packages_payload_map_and_modules(service_dir: Path) -> None:
    (service_dir / "build.py").touch()
    config, units = _load(service_dir, method="file")
    orchestrator = _orchestrator(
        service_dir,
        loader=StaticLoader({}),
        description_bundler=FakeDescriptionBundler(
            {"uuid"}, files=("handler.js", "handler.js.map")
        ),
    )

    result = await orchestrator.run(config, units)

    with zipfile.ZipFile(result.archive_path) as z:
        assert z.namelist() == [
            "handler.js",
            "handler.js.map",
            "node_modules/uuid/index.js",
            "node_modules/uuid/package.json",
        ]


async def test_local_execution_redirects_without_archive(service_dir: Path) -> None:
    (service_dir / "build.py").write_text("build = b'local handler'\n", encoding="utf-8")
    config, units = _load(service_dir, method="file", localExecution=True)
    orchestrator = _orchestrator(
        service_dir, loader=None, module_bundler=None, description_bundler=None
    )
    build_dir = orchestrator.workspace.build_dir

    result = await orchestrator.run(config, units)

    assert result.kind == "redirected"
    assert result.archive_path is None
    assert result.execution_root == build_dir
    assert orchestrator.service.service_path == build_dir
    assert orchestrator.service.artifact is None
    assert _files(orchestrator.workspace.artifact_dir) == []
    # outputs stay on disk for the local run
    assert (build_dir / "handler.js").read_bytes() == b"local handler"


async def test_local_bundle_mirrors_sources_into_build_dir(service_dir: Path) -> None:
    config, units = _load(service_dir, localExecution=True, modules={"include": ["uuid"]})
    orchestrator = _orchestrator(service_dir)

    await orchestrator.run(config, units)

    assert _files(orchestrator.workspace.build_dir) == [
        "node_modules/uuid/index.js",
        "node_modules/uuid/package.json",
        "serverless.yml",
        "src/hello.js",
        "src/world.js",
    ]


async def test_keep_retains_previous_artifacts(service_dir: Path) -> None:
    stale = service_dir / ".serverless" / "artifacts" / "demo-1.zip"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old")
    (service_dir / "build.py").write_text("build = 'x'\n", encoding="utf-8")
    config, units = _load(service_dir, method="file", keep=True)
    orchestrator = _orchestrator(service_dir)

    result = await orchestrator.run(config, units)

    assert sorted(_files(orchestrator.workspace.artifact_dir)) == [
        "demo-1.zip",
        result.archive_path.name,
    ]


async def test_stale_artifacts_are_purged_without_keep(service_dir: Path) -> None:
    stale = service_dir / ".serverless" / "artifacts" / "demo-1.zip"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old")
    config, units = _load(service_dir)

    result = await _orchestrator(service_dir).run(config, units)

    assert _files(stale.parent) == [result.archive_path.name]


async def test_failed_write_keeps_build_dir(service_dir: Path) -> None:
    class BrokenStream:
        def read(self, size: int = -1) -> bytes:
            raise OSError("stream broke")

    (service_dir / "build.py").touch()
    config, units = _load(service_dir, method="file")

    async def build(ctx):
        (ctx.workspace.build_dir / "intermediate.js").write_text("keep me", encoding="utf-8")
        return BrokenStream()

    orchestrator = _orchestrator(service_dir, loader=StaticLoader(build))
    with pytest.raises(OSError, match="stream broke"):
        await orchestrator.run(config, units)

    assert _files(orchestrator.workspace.build_dir) == ["intermediate.js"]
    assert _files(orchestrator.workspace.artifact_dir) == []
    assert orchestrator.service.artifact is None


async def test_debug_abort_keeps_the_artifact(service_dir: Path) -> None:
    (service_dir / "build.py").write_text("build = 'handler'\n", encoding="utf-8")
    config, units = _load(service_dir, method="file", test=True)
    orchestrator = _orchestrator(service_dir)

    with pytest.raises(DebugAbort) as stop:
        await orchestrator.run(config, units)

    assert not isinstance(stop.value, BuildFailure)
    archive = stop.value.result.archive_path
    assert archive.is_file() and archive.stat().st_size > 0
    assert orchestrator.service.artifact == archive

