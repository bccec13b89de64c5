"""Runtime dependency bundler for ``node_modules``.

Root modules are looked up the way Node does it: starting from the service
directory, then in every ``node_modules`` up the parent chain of the package
that requires them. Each resolved package is added file by file (its nested
``node_modules`` excluded) and its ``dependencies`` are followed.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable
from pathlib import Path

import anyio

from funcpack.logging import get_logger
from funcpack.package.archive import ArtifactSink

log = get_logger("funcpack.modules")


def _read_dependencies(package_dir: Path) -> list[str]:
    manifest = package_dir / "package.json"
    if not manifest.is_file():
        return []
    data = json.loads(manifest.read_text(encoding="utf-8"))
    return sorted((data.get("dependencies") or {}).keys())


def _lookup(name: str, start: Path, root: Path) -> Path | None:
    """Find ``node_modules/<name>`` from *start* upwards, stopping at *root*."""
    current = start
    while True:
        candidate = current / "node_modules" / name
        if candidate.is_dir():
            return candidate
        if current == root or current.parent == current:
            return None
        current = current.parent


def _package_files(package_dir: Path) -> list[Path]:
    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(package_dir):
        dirnames[:] = sorted(d for d in dirnames if d != "node_modules")
        files.extend(Path(dirpath) / f for f in sorted(filenames))
    return files


class ModuleBundler:
    def __init__(self, service_path: Path, *, compress: bool = True) -> None:
        self.service_path = Path(service_path).resolve()
        self.compress = compress

    def resolve(
        self, include: Iterable[str], exclude: Iterable[str] = (), deep_exclude: Iterable[str] = ()
    ) -> list[Path]:
        """Return every package directory to ship, roots first.

        A root module that cannot be found raises ``FileNotFoundError``; a
        missing transitive dependency is logged and skipped (it may be
        optional or provided by the runtime).
        """
        excluded = set(exclude)
        deep_excluded = set(deep_exclude)
        seen: set[Path] = set()
        ordered: list[Path] = []

        pending: list[tuple[str, Path, bool]] = [
            (name, self.service_path, True) for name in include if name not in excluded
        ]
        while pending:
            name, start, is_root = pending.pop(0)
            found = _lookup(name, start, self.service_path)
            if found is None:
                if is_root:
                    raise FileNotFoundError(
                        f"Module {name!r} not found under {self.service_path / 'node_modules'}"
                    )
                log.warning("Skipping unresolved dependency %s", name)
                continue
            real = found.resolve()
            if real in seen:
                continue
            seen.add(real)
            ordered.append(found)
            for dep in _read_dependencies(found):
                if dep not in deep_excluded:
                    pending.append((dep, found, False))
        return ordered

    def _collect(
        self, include: list[str], exclude: list[str], deep_exclude: list[str]
    ) -> list[tuple[Path, str]]:
        members: list[tuple[Path, str]] = []
        for package_dir in self.resolve(include, exclude, deep_exclude):
            for path in _package_files(package_dir):
                members.append((path, path.relative_to(self.service_path).as_posix()))
        return members

    async def bundle(
        self,
        sink: ArtifactSink,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
        deep_exclude: Iterable[str] = (),
    ) -> list[str]:
        """Add the resolved modules to *sink*; return the names added."""
        include, exclude, deep_exclude = list(include), list(exclude), list(deep_exclude)
        if not include:
            return []
        members = await anyio.to_thread.run_sync(self._collect, include, exclude, deep_exclude)
        for path, name in members:
            sink.add_file(path, name, self.compress)
        log.info("Bundled %d module files for %s", len(members), ", ".join(include))
        return [name for _, name in members]
