"""
Cursor editor chat history.

Cursor keeps chats in a SQLite key/value table (``cursorDiskKV``) inside
``<user dir>/globalStorage/state.vscdb``:

    composerData:<composerId>             one conversation
    bubbleId:<composerId>:<bubbleId>      one message (type 1 = user, 2 = assistant)

The editor writes the file continuously, so every read opens a fresh
read-only connection and closes it before returning; nothing is held
between polls. Lock errors are retried with the configured backoff.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import unquote

from ..errors import SourceUnavailable
from ..models import AIResponse, ChatRole, normalize_timestamp_ms, now_ms
from ..retry import BackoffPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPOSER_PREFIX = "composerData:"
BUBBLE_PREFIX = "bubbleId:"
USER_TYPE = 1
ASSISTANT_TYPE = 2


def cursor_user_dir() -> Path:
    """Platform-specific Cursor ``User`` directory."""
    if sys.platform == "win32":
        base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / "Cursor" / "User"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor" / "User"
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "Cursor" / "User"


def default_cursor_db_path() -> Path:
    return cursor_user_dir() / "globalStorage" / "state.vscdb"


def _folder_to_path(folder: str) -> str:
    value = unquote(folder.strip())
    if value.startswith("file://"):
        value = value[len("file://"):]
    # file:///c:/x on Windows
    if len(value) > 2 and value[0] == "/" and value[2] == ":":
        value = value[1:]
    return os.path.normpath(value)


def find_workspace_storage_db(workspace_root: Path, user_dir: Path | None = None) -> Path | None:
    """The per-workspace ``state.vscdb`` whose ``workspace.json`` names ``workspace_root``."""
    storage = (user_dir or cursor_user_dir()) / "workspaceStorage"
    if not storage.is_dir():
        return None

    target = os.path.normpath(str(workspace_root))
    for entry in storage.iterdir():
        meta = entry / "workspace.json"
        state = entry / "state.vscdb"
        if not meta.is_file() or not state.is_file():
            continue
        try:
            folder = json.loads(meta.read_text(encoding="utf-8")).get("folder") or ""
        except (OSError, ValueError, AttributeError):
            continue
        if folder and _folder_to_path(folder) == target:
            return state
    return None


def parse_created_at(value: Any, label: str = "createdAt") -> float:
    """Milliseconds from a numeric or ISO-8601 ``createdAt``; now when unusable."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000
        except ValueError:
            logger.warning("%s is not a valid date: %r", label, value)
    return float(now_ms())


def extract_text(data: dict[str, Any]) -> str:
    """Message text from the several shapes Cursor has used."""
    text = data.get("text")
    if isinstance(text, str) and text.strip():
        return text

    content = data.get("content")
    if isinstance(content, str) and content.strip():
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
            elif isinstance(part, str):
                parts.append(part)
        parts = [p for p in parts if p]
        if parts:
            return "\n".join(parts)

    for key in ("rawContent", "message"):
        if isinstance(data.get(key), str):
            return data[key]

    raw_parts = data.get("parts")
    if isinstance(raw_parts, list):
        parts = [str(p["text"]) for p in raw_parts if isinstance(p, dict) and p.get("text")]
        if parts:
            return "\n".join(parts)
    return ""


def _decode(value: Any) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value if isinstance(value, str) else None


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CursorChatSource:
    """ChatSource over Cursor's ``state.vscdb``."""

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        workspace_root: Path | None = None,
        workspace_db_path: Path | None = None,
        backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        """
        Args:
            db_path: Global ``state.vscdb`` (platform default if None)
            workspace_root: Restrict to conversations of this workspace when
                Cursor has a workspace storage entry for it
            workspace_db_path: Explicit workspace ``state.vscdb``
            backoff: Retry policy for opening/reading the database
            sleep: Sleep function for retries (injectable for tests)
        """
        self.db_path = Path(db_path) if db_path else default_cursor_db_path()
        self.workspace_root = workspace_root
        self.workspace_db_path = workspace_db_path
        self.backoff = backoff or BackoffPolicy()
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    def _read(self, db_path: Path, reader: Callable[[sqlite3.Connection], T]) -> T:
        if not db_path.exists():
            raise SourceUnavailable(f"Cursor database not found: {db_path}")

        def attempt() -> T:
            conn = sqlite3.connect(db_path.resolve().as_uri() + "?mode=ro", uri=True, timeout=1.0)
            try:
                return reader(conn)
            finally:
                conn.close()

        kwargs = {"sleep": self._sleep} if self._sleep else {}
        try:
            return retry_with_backoff(attempt, self.backoff, (sqlite3.OperationalError,), **kwargs)
        except sqlite3.Error as e:
            raise SourceUnavailable(f"Cannot read {db_path}: {e}") from e

    def ensure_available(self) -> None:
        self._read(self.db_path, lambda conn: conn.execute("SELECT 1 FROM cursorDiskKV LIMIT 1").fetchall())
        logger.debug("Cursor database available at %s", self.db_path)

    def watch_path(self) -> Path | None:
        return self.db_path.parent

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _workspace_composer_ids(self) -> list[str] | None:
        """Composer ids registered for the workspace, or None when unscoped."""
        if self.workspace_root is None:
            return None
        ws_db = self.workspace_db_path or find_workspace_storage_db(
            self.workspace_root, self.db_path.parent.parent
        )
        if ws_db is None:
            logger.debug("No Cursor workspace storage for %s; using all conversations", self.workspace_root)
            return None

        def reader(conn: sqlite3.Connection) -> list[str]:
            row = conn.execute("SELECT value FROM ItemTable WHERE key = 'composer.composerData'").fetchone()
            if row is None:
                return []
            try:
                data = json.loads(_decode(row[0]) or "{}")
            except ValueError:
                return []
            return [c["composerId"] for c in data.get("allComposers") or [] if isinstance(c, dict) and c.get("composerId")]

        try:
            return self._read(ws_db, reader)
        except SourceUnavailable as e:
            logger.warning("Ignoring unreadable workspace storage: %s", e)
            return None

    @staticmethod
    def _composer_ids(conn: sqlite3.Connection) -> list[str]:
        rows = conn.execute(
            "SELECT key FROM cursorDiskKV WHERE key LIKE ? ESCAPE '\\'",
            (_like_escape(COMPOSER_PREFIX) + "%",),
        ).fetchall()
        return [key[len(COMPOSER_PREFIX):] for (key,) in rows]

    @staticmethod
    def _bubbles(conn: sqlite3.Connection, composer_id: str) -> list[AIResponse]:
        rows = conn.execute(
            "SELECT key, value FROM cursorDiskKV WHERE key LIKE ? ESCAPE '\\'",
            (_like_escape(f"{BUBBLE_PREFIX}{composer_id}:") + "%",),
        ).fetchall()

        messages: list[AIResponse] = []
        for key, value in rows:
            raw = _decode(value)
            if raw is None:
                continue
            try:
                data = json.loads(raw)
            except ValueError as e:
                logger.warning("Skipping unreadable message %s: %s", key, e)
                continue
            if not isinstance(data, dict):
                continue
            bubble_id = key.split(":", 2)[2]
            messages.append(
                AIResponse(
                    id=bubble_id,
                    conversation_id=composer_id,
                    timestamp=parse_created_at(data.get("createdAt"), f"bubble {bubble_id} createdAt"),
                    role=ChatRole.ASSISTANT if data.get("type") == ASSISTANT_TYPE else ChatRole.USER,
                    text=extract_text(data),
                )
            )
        return messages

    def latest_assistant_message(self) -> AIResponse | None:
        scope = self._workspace_composer_ids()

        def reader(conn: sqlite3.Connection) -> AIResponse | None:
            composer_ids = scope if scope is not None else self._composer_ids(conn)
            latest: AIResponse | None = None
            latest_ms = -1
            for composer_id in composer_ids:
                for message in self._bubbles(conn, composer_id):
                    # createdAt is seconds in some rows and milliseconds in others
                    message_ms = normalize_timestamp_ms(message.timestamp)
                    if message.is_assistant and message_ms > latest_ms:
                        latest, latest_ms = message, message_ms
            return latest

        return self._read(self.db_path, reader)

    def messages(self, conversation_id: str) -> list[AIResponse]:
        messages = self._read(self.db_path, lambda conn: self._bubbles(conn, conversation_id))
        return sorted(messages, key=lambda m: normalize_timestamp_ms(m.timestamp))
