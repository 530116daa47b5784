"""
Data model for chat responses, change events and provenance records.

On-disk documents use the camelCase keys shared with the editor-side
presentation layer (``responseId``, ``filePath``, ``lineRanges``...).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Timestamps below this are assumed to be in seconds
SECONDS_THRESHOLD = 1e12

NO_PROMPT = "(no prompt)"
NO_RESPONSE = "(no response)"
SENTINELS = frozenset({NO_PROMPT, NO_RESPONSE})


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def normalize_timestamp_ms(value: float | int | None) -> int:
    """Normalize a chat timestamp to milliseconds.

    Values under 1e12 are taken to be seconds. ``None`` means "now".
    """
    if value is None:
        return now_ms()
    if value < SECONDS_THRESHOLD:
        return int(value * 1000)
    return int(value)


class ChatRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class AIResponse:
    """One message of a chat exchange, as produced by the chat source."""

    id: str
    conversation_id: str
    timestamp: float  # ms, or seconds for some sources (see normalize_timestamp_ms)
    role: ChatRole
    text: str = ""

    @property
    def is_assistant(self) -> bool:
        return self.role == ChatRole.ASSISTANT


@dataclass(frozen=True)
class ChangeEvent:
    """A file mutation seen by the filesystem watcher."""

    file_path: str  # workspace-relative, forward slashes
    timestamp: int  # ms


@dataclass(frozen=True, order=True)
class LineRange:
    """1-indexed inclusive line range."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1:
            raise ValueError(f"LineRange start must be >= 1, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"LineRange end ({self.end}) must be >= start ({self.start})")

    def contains(self, line: int) -> bool:
        return self.start <= line <= self.end

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineRange":
        return cls(start=int(data["start"]), end=int(data["end"]))


@dataclass(frozen=True)
class FileChange:
    """Changed line ranges of one file (sorted, non-overlapping)."""

    file_path: str
    line_ranges: tuple[LineRange, ...] = ()

    def covers(self, line: int) -> bool:
        return any(r.contains(line) for r in self.line_ranges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "filePath": self.file_path,
            "lineRanges": [r.to_dict() for r in self.line_ranges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileChange":
        return cls(
            file_path=str(data["filePath"]),
            line_ranges=tuple(LineRange.from_dict(r) for r in data.get("lineRanges", [])),
        )


@dataclass(frozen=True)
class ProvenanceRecord:
    """Association between one assistant response and the code it produced."""

    response_id: str
    conversation_id: str
    prompt: str = NO_PROMPT
    thinking: str = NO_RESPONSE
    files: tuple[FileChange, ...] = ()
    commit_hash: str | None = None
    created_at: int = field(default_factory=now_ms)
    tokens: int | None = None

    @property
    def file_paths(self) -> list[str]:
        return [f.file_path for f in self.files]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        result: dict[str, Any] = {
            "responseId": self.response_id,
            "conversationId": self.conversation_id,
            "prompt": self.prompt,
            "thinking": self.thinking,
            "files": [f.to_dict() for f in self.files],
            "createdAt": self.created_at,
        }
        if self.commit_hash is not None:
            result["commitHash"] = self.commit_hash
        if self.tokens is not None:
            result["tokens"] = self.tokens
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvenanceRecord":
        """Deserialize from a dict.

        Also accepts the older layout (``bubbleId``/``composerId``/``timestamp``
        keys, single ``filePath`` + ``lineRanges`` instead of ``files``).
        """
        response_id = data.get("responseId", data.get("bubbleId"))
        if not response_id:
            raise KeyError("responseId")

        raw_files = data.get("files")
        if not raw_files and data.get("filePath"):
            raw_files = [{"filePath": data["filePath"], "lineRanges": data.get("lineRanges", [])}]

        tokens = data.get("tokens")
        return cls(
            response_id=str(response_id),
            conversation_id=str(data.get("conversationId", data.get("composerId", ""))),
            prompt=data.get("prompt") or NO_PROMPT,
            thinking=data.get("thinking") or NO_RESPONSE,
            files=tuple(FileChange.from_dict(f) for f in raw_files or []),
            commit_hash=data.get("commitHash") or None,
            created_at=int(data.get("createdAt", data.get("timestamp", 0))),
            tokens=int(tokens) if tokens is not None else None,
        )


@dataclass(frozen=True)
class CommitContext:
    """Commit-keyed provenance document (lower fidelity than ProvenanceRecord)."""

    commit_hash: str
    timestamp: int
    changes: tuple[FileChange, ...] = ()
    prompt: str | None = None
    thinking: str | None = None
    token: int | None = None
    ai_refs: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "commitHash": self.commit_hash,
            "timestamp": self.timestamp,
            "changes": [c.to_dict() for c in self.changes],
        }
        if self.prompt is not None:
            result["prompt"] = self.prompt
        if self.thinking is not None:
            result["thinking"] = self.thinking
        if self.token is not None:
            result["token"] = self.token
        if self.ai_refs:
            result["aiRefs"] = list(self.ai_refs)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommitContext":
        return cls(
            commit_hash=str(data["commitHash"]),
            timestamp=int(data.get("timestamp", 0)),
            changes=tuple(FileChange.from_dict(c) for c in data.get("changes", [])),
            prompt=data.get("prompt"),
            thinking=data.get("thinking"),
            token=data.get("token"),
            ai_refs=tuple(data.get("aiRefs", [])),
        )
