"""Archive digests, recorded on the build result and checked by ``funcpack verify``."""

from __future__ import annotations

import hashlib
from pathlib import Path

PREFIX = "sha256:"


def archive_digest(path: Path) -> str:
    """Hex SHA-256 of the archive at *path*."""
    with open(path, "rb") as f:
        return hashlib.file_digest(f, "sha256").hexdigest()


def verify_archive(path: Path, expected: str) -> str:
    """Check *path* against *expected* (bare hex or ``sha256:<hex>``).

    Returns the digest; raises ``ValueError`` on mismatch.
    """
    want = expected.strip().lower().removeprefix(PREFIX)
    got = archive_digest(path)
    if got != want:
        raise ValueError(f"{Path(path).name}: digest mismatch, got {got}, expected {want}")
    return got
