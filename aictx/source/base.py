"""The chat-history interface the detector and pipeline depend on."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from ..models import AIResponse


@runtime_checkable
class ChatSource(Protocol):
    """Read-only access to an assistant's chat history."""

    def ensure_available(self) -> None:
        """Raise SourceUnavailable if the history cannot be read."""
        ...

    def latest_assistant_message(self) -> AIResponse | None:
        """Most recent assistant message across all conversations."""
        ...

    def messages(self, conversation_id: str) -> list[AIResponse]:
        """Messages of one conversation, oldest first."""
        ...

    def watch_path(self) -> Path | None:
        """Directory whose changes signal new chat activity, if any."""
        ...
