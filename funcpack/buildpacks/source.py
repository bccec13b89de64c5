"""Source tree bundler (``method: bundle``).

Walks the service directory and registers every file selected by a unit's
include/exclude globs under its service-relative POSIX path.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath

import anyio

from funcpack.package.archive import ArtifactSink


def matches(rel_posix: str, pattern: str) -> bool:
    """Glob match against the path or any of its leading directories.

    ``node_modules`` therefore matches ``node_modules/a/b.js``, and
    ``*/node_modules`` matches ``lib/node_modules/x.js``.
    """
    pattern = pattern.rstrip("/")
    if fnmatchcase(rel_posix, pattern):
        return True
    parts = PurePosixPath(rel_posix).parts
    for i in range(1, len(parts)):
        if fnmatchcase("/".join(parts[:i]), pattern):
            return True
    return False


def select_files(
    root: Path, include: Iterable[str], exclude: Iterable[str]
) -> Iterator[tuple[Path, str]]:
    """Yield ``(absolute path, relative posix name)`` for selected files, sorted."""
    include = list(include)
    exclude = list(exclude)
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        # Prune excluded directories early
        kept = []
        for d in sorted(dirnames):
            rel = d if rel_dir == "." else f"{rel_dir}/{d}"
            if not any(matches(rel, p) for p in exclude):
                kept.append(d)
        dirnames[:] = kept

        for name in sorted(filenames):
            rel = name if rel_dir == "." else f"{rel_dir}/{name}"
            if include and not any(matches(rel, p) for p in include):
                continue
            if any(matches(rel, p) for p in exclude):
                continue
            yield Path(dirpath) / name, rel


class SourceBundler:
    def __init__(self, service_path: Path, *, compress: bool = True) -> None:
        self.service_path = Path(service_path)
        self.compress = compress

    async def bundle(
        self, sink: ArtifactSink, include: Iterable[str] = (), exclude: Iterable[str] = ()
    ) -> list[str]:
        """Add the selected sources to *sink*; return the names added."""
        selected = await anyio.to_thread.run_sync(
            lambda: list(select_files(self.service_path, include, exclude))
        )
        for path, name in selected:
            sink.add_file(path, name, self.compress)
        return [name for _, name in selected]
