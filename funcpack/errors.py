"""Error taxonomy for the build pipeline.

Every failure carries the phase it came from so a wrapping report can say
where the run stopped. Filesystem errors are never wrapped here; they reach
the caller as plain ``OSError``.
"""

from __future__ import annotations


class FuncpackError(Exception):
    phase: str = "build"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.phase}] {self.message}"


class BuildFailure(FuncpackError):
    """A genuine failure: the run produced no usable artifact."""


class ConfigurationError(BuildFailure):
    phase = "configuration"


class EntryResolutionError(BuildFailure):
    phase = "entry-resolution"

    def __init__(self, tried: list[str]) -> None:
        super().__init__(f"no build script found; tried: {', '.join(tried) or '(nothing)'}")
        self.tried = tried


class OutputClassificationError(BuildFailure):
    phase = "classification"

    def __init__(self, value: object) -> None:
        super().__init__(f"unrecognized build output of type {type(value).__name__}")
        self.value = value


class DebugAbort(FuncpackError):
    """Raised on purpose after a successful build when ``test`` is set.

    The artifact referenced by ``result`` is complete and valid.
    """

    phase = "debug"

    def __init__(self, result) -> None:
        super().__init__("--test mode, stopping after a successful build")
        self.result = result
