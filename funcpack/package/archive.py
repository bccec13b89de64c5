"""Zip artifact accumulator.

Entries are registered as file paths, in-memory buffers or readable streams
and only materialized when the sink is finalized into a zip archive.

Design goals:
- Registration order is archive order, so output is reproducible.
- One entry per name; re-adding a name replaces the earlier entry in place.
- Only relative, forward-slash arcnames; no traversal.
"""

from __future__ import annotations

import shutil
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Literal

from funcpack.logging import get_logger

log = get_logger("funcpack.archive")

# Fixed timestamp for in-memory entries (zip cannot store dates before 1980)
_EPOCH = (1980, 1, 1, 0, 0, 0)
_SPOOL_BYTES = 16 * 1024 * 1024


@dataclass
class ArtifactEntry:
    name: str
    kind: Literal["file", "buffer", "stream"]
    payload: Path | bytes | BinaryIO
    compress: bool = True

    def read_bytes(self) -> bytes:
        """Return the payload contents. Drains stream payloads."""
        if self.kind == "file":
            return Path(self.payload).read_bytes()  # type: ignore[arg-type]
        if self.kind == "buffer":
            return bytes(self.payload)  # type: ignore[arg-type]
        data = self.payload.read()  # type: ignore[union-attr]
        return data.encode("utf-8") if isinstance(data, str) else data


def normalize_arcname(name: str) -> str:
    arc = PurePosixPath(str(name).replace("\\", "/"))
    if arc.is_absolute() or ".." in arc.parts or not arc.parts:
        raise ValueError(f"Unsafe archive member name: {name!r}")
    return arc.as_posix()


class ArtifactSink:
    """Append-only set of named entries that becomes the deployment zip.

    When *mirror_dir* is given every entry is also written to
    ``<mirror_dir>/<name>`` as it is added, so the directory holds a runnable
    copy of the archive contents (used for local execution).
    """

    def __init__(self, mirror_dir: Path | None = None) -> None:
        self.mirror_dir = Path(mirror_dir) if mirror_dir is not None else None
        self._entries: list[ArtifactEntry] = []
        self._index: dict[str, int] = {}
        self._finalized = False

    # --- registration -------------------------------------------------------

    def add_file(self, path: Path, name: str, compress: bool = True) -> ArtifactEntry:
        path = Path(path)
        name = normalize_arcname(name)
        if self.mirror_dir is not None:
            target = self.mirror_dir / name
            if target.resolve() != path.resolve():
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, target)
        return self._register(ArtifactEntry(name, "file", path, compress))

    def add_buffer(self, data: bytes | str, name: str, compress: bool = True) -> ArtifactEntry:
        if isinstance(data, str):
            data = data.encode("utf-8")
        name = normalize_arcname(name)
        data = bytes(data)
        if self.mirror_dir is not None:
            target = self.mirror_dir / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return self._register(ArtifactEntry(name, "buffer", data, compress))

    def add_stream(self, stream: BinaryIO, name: str, compress: bool = True) -> ArtifactEntry:
        name = normalize_arcname(name)
        if self.mirror_dir is not None:
            # Drain to disk now; the mirrored file becomes the payload
            target = self.mirror_dir / name
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                with open(target, "wb") as out:
                    _copy_stream(stream, out)
            finally:
                _close_stream(stream)
            return self._register(ArtifactEntry(name, "file", target, compress))
        return self._register(ArtifactEntry(name, "stream", stream, compress))

    def _register(self, entry: ArtifactEntry) -> ArtifactEntry:
        if self._finalized:
            raise RuntimeError("Artifact already finalized; no more entries can be added")
        existing = self._index.get(entry.name)
        if existing is not None:
            if _same_payload(self._entries[existing], entry):
                log.debug("Archive entry %s registered again", entry.name)
            else:
                log.warning("Replacing duplicate archive entry %s", entry.name)
            self._entries[existing] = entry
        else:
            self._index[entry.name] = len(self._entries)
            self._entries.append(entry)
        return entry

    # --- inspection ---------------------------------------------------------

    @property
    def entries(self) -> list[ArtifactEntry]:
        return list(self._entries)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self._entries]

    def get(self, name: str) -> ArtifactEntry | None:
        idx = self._index.get(name)
        return None if idx is None else self._entries[idx]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    # --- output -------------------------------------------------------------

    def finalize(self) -> BinaryIO:
        """Serialize all entries into a zip and return it as a readable stream.

        The returned stream is positioned at the start. Stream payloads are
        consumed, so a sink can only be finalized once.
        """
        if self._finalized:
            raise RuntimeError("Artifact already finalized")
        self._finalized = True

        out = tempfile.SpooledTemporaryFile(max_size=_SPOOL_BYTES, mode="w+b")
        try:
            with zipfile.ZipFile(out, "w") as z:
                for entry in self._entries:
                    self._write_entry(z, entry)
        except BaseException:
            out.close()
            raise
        out.seek(0)
        return out  # type: ignore[return-value]

    def _write_entry(self, z: zipfile.ZipFile, entry: ArtifactEntry) -> None:
        compress_type = zipfile.ZIP_DEFLATED if entry.compress else zipfile.ZIP_STORED
        if entry.kind == "file":
            info = zipfile.ZipInfo.from_file(
                entry.payload, arcname=entry.name, strict_timestamps=False  # type: ignore[arg-type]
            )
        else:
            info = zipfile.ZipInfo(entry.name, date_time=_EPOCH)
            info.external_attr = 0o644 << 16
        info.compress_type = compress_type

        if entry.kind == "buffer":
            z.writestr(info, entry.payload)  # type: ignore[arg-type]
            return

        with z.open(info, "w") as dst:
            if entry.kind == "file":
                with open(entry.payload, "rb") as src:  # type: ignore[arg-type]
                    shutil.copyfileobj(src, dst)
            else:
                try:
                    _copy_stream(entry.payload, dst)  # type: ignore[arg-type]
                finally:
                    _close_stream(entry.payload)


def _same_payload(old: ArtifactEntry, new: ArtifactEntry) -> bool:
    if old.kind != new.kind:
        return False
    if old.kind == "file":
        return Path(old.payload).resolve() == Path(new.payload).resolve()  # type: ignore[arg-type]
    if old.kind == "buffer":
        return old.payload == new.payload
    return old.payload is new.payload


def _copy_stream(src: BinaryIO, dst: BinaryIO, chunk_size: int = 1024 * 1024) -> None:
    for chunk in iter(lambda: src.read(chunk_size), b""):
        if isinstance(chunk, str):
            if not chunk:
                break
            chunk = chunk.encode("utf-8")
        dst.write(chunk)


def _close_stream(stream: object) -> None:
    close = getattr(stream, "close", None)
    if callable(close):
        close()
