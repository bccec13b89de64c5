"""Build script output shapes and their classification.

A build script yields exactly one of three shapes:

- ``StructuredDescription``: a mapping describing how to produce the bundle
  (entry points, externals, a command to run); handed to a description bundler.
- ``RawContent``: the handler source itself, as text or bytes.
- ``StreamOutput``: a readable binary stream producing the handler source.

Anything else is an ``OutputClassificationError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, BinaryIO

from funcpack.errors import OutputClassificationError


@dataclass(frozen=True)
class StructuredDescription:
    data: Mapping[str, Any]


@dataclass(frozen=True)
class RawContent:
    payload: bytes


@dataclass(frozen=True)
class StreamOutput:
    stream: BinaryIO


BuildOutput = StructuredDescription | RawContent | StreamOutput


def _is_stream(value: object) -> bool:
    return callable(getattr(value, "read", None))


def classify(value: object) -> BuildOutput:
    """Map a resolved build-script result onto one ``BuildOutput`` variant.

    Checks run in a fixed order and the first match wins. Already classified
    values pass through unchanged.
    """
    if isinstance(value, StructuredDescription | RawContent | StreamOutput):
        return value
    if isinstance(value, Mapping):
        return StructuredDescription(data=value)
    if isinstance(value, str):
        return RawContent(payload=value.encode("utf-8"))
    if isinstance(value, bytes | bytearray | memoryview):
        return RawContent(payload=bytes(value))
    if _is_stream(value):
        return StreamOutput(stream=value)  # type: ignore[arg-type]
    raise OutputClassificationError(value)
