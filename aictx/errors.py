"""
Error taxonomy for the detection-and-correlation pipeline.

Every per-response failure is converted into a degraded outcome at the
pipeline boundary. Only SourceUnavailable at detector startup reaches the
caller.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class AictxError(Exception):
    """Base class for all aictx errors."""


class SourceUnavailable(AictxError):
    """The chat history source is missing, locked, or unreadable."""


class RepositoryError(AictxError):
    """A git invocation failed (no repository, no commits, checkout conflict)."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = tuple(command)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}: {self.stderr.strip()}"
        return base


class DiffParseError(AictxError):
    """Diff output could not be produced or parsed."""


class StoreCorruption(AictxError):
    """An on-disk JSON document is malformed."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason
