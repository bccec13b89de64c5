"""File buildpack (``method: file``).

Builds every function from a single build script. The first existing file
among ``tryFiles`` is loaded; its ``build`` attribute is either the output
itself or a callable taking the ``BuildContext`` (sync or async). The output
is classified and routed into the artifact:

- mapping: run through the description bundler, collect externals, pick up
  ``handler.js`` / ``handler.js.map`` from the build directory
- text or bytes: stored as ``handler.js``
- readable stream: streamed into ``handler.js`` when the archive is written
"""

from __future__ import annotations

import importlib.util
import inspect
import stat
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import anyio

from funcpack.buildpacks.description import (
    DEBUG_MAP,
    PRIMARY_PAYLOAD,
    CommandDescriptionBundler,
    DescriptionBundler,
)
from funcpack.errors import EntryResolutionError
from funcpack.logging import get_logger
from funcpack.outputs import RawContent, StreamOutput, StructuredDescription, classify

if TYPE_CHECKING:
    from funcpack.core import BuildContext

log = get_logger("funcpack.file")


class ScriptLoader(Protocol):
    def load(self, path: Path) -> Any: ...


class PythonScriptLoader:
    """Import a build script by path and return its ``build`` attribute.

    The script runs as a throwaway module. Sibling modules it imports from the
    service directory are dropped from ``sys.modules`` afterwards, so every
    load sees the current files on disk.
    """

    attribute = "build"

    def load(self, path: Path) -> Any:
        module_name = f"_funcpack_build_{abs(hash(str(path)))}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load build script {path}", path=str(path))
        module = importlib.util.module_from_spec(spec)
        script_dir = str(path.parent)
        before = set(sys.modules)
        sys.modules[module_name] = module
        sys.path.insert(0, script_dir)
        try:
            spec.loader.exec_module(module)
        finally:
            sys.path.remove(script_dir)
            sys.modules.pop(module_name, None)
            for name in set(sys.modules) - before:
                if _defined_under(sys.modules.get(name), path.parent):
                    del sys.modules[name]
        return getattr(module, self.attribute, None)


def _defined_under(module: Any, directory: Path) -> bool:
    origin = getattr(module, "__file__", None)
    if not origin:
        return False
    return Path(origin).resolve().is_relative_to(directory.resolve())


async def _regular_file(path: Path) -> bool:
    """True for a regular file, False when missing. Other I/O errors propagate."""
    try:
        st = await anyio.Path(path).stat()
    except FileNotFoundError:
        return False
    return stat.S_ISREG(st.st_mode)


class FileBuildStrategy:
    def __init__(
        self,
        context: BuildContext,
        *,
        loader: ScriptLoader | None = None,
        description_bundler: DescriptionBundler | None = None,
    ) -> None:
        self.context = context
        self.loader = loader or PythonScriptLoader()
        self.description_bundler = description_bundler or CommandDescriptionBundler(
            context.service.service_path
        )
        self._entry: Path | None = None

    async def resolve_entry(self) -> Path:
        """Return the first candidate in ``try_files`` that is a regular file."""
        if self._entry is not None:
            return self._entry
        root = Path(self.context.service.service_path)
        tried = list(self.context.config.try_files)
        for candidate in tried:
            path = root / candidate
            if await _regular_file(path):
                self._entry = path
                return path
        raise EntryResolutionError(tried)

    async def load_output(self) -> Any:
        entry = await self.resolve_entry()
        log.info("Loading build script %s", entry.name)
        result = self.loader.load(entry)
        if callable(result):
            result = result(self.context)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def build(self) -> set[str]:
        """Run the build script and route its output into the artifact.

        Returns the external module ids discovered along the way (also added
        to ``context.externals``).
        """
        ctx = self.context
        sink = ctx.sink
        compress = ctx.config.compress
        output = classify(await self.load_output())
        discovered: set[str] = set()

        match output:
            case StructuredDescription(data=description):
                discovered = set(
                    await self.description_bundler.bundle(description, ctx.workspace.build_dir)
                )
                for path in await self._probe_derived_outputs(ctx.workspace.build_dir):
                    sink.add_file(path, path.name, compress)
            case RawContent(payload=payload):
                sink.add_buffer(payload, PRIMARY_PAYLOAD, compress)
            case StreamOutput(stream=stream):
                sink.add_stream(stream, PRIMARY_PAYLOAD, compress)

        ctx.externals.update(discovered)
        if discovered:
            log.info("Externals discovered: %s", ", ".join(sorted(discovered)))
        return discovered

    async def _probe_derived_outputs(self, build_dir: Path) -> list[Path]:
        """Check for the payload and its source map together; wait for both."""
        names = (PRIMARY_PAYLOAD, DEBUG_MAP)
        found: dict[str, bool] = {}
        errors: list[OSError] = []

        async def probe(name: str) -> None:
            try:
                found[name] = await _regular_file(build_dir / name)
            except OSError as exc:
                errors.append(exc)

        async with anyio.create_task_group() as tg:
            for name in names:
                tg.start_soon(probe, name)

        # Re-raise unwrapped rather than as an ExceptionGroup
        if errors:
            raise errors[0]
        return [build_dir / name for name in names if found[name]]
