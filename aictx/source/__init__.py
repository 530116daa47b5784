"""
Chat history sources.

The pipeline only depends on the ChatSource protocol; CursorChatSource is
the adapter for the Cursor editor's local database.
"""

from .base import ChatSource
from .cursor import CursorChatSource, default_cursor_db_path, find_workspace_storage_db

__all__ = [
    "ChatSource",
    "CursorChatSource",
    "default_cursor_db_path",
    "find_workspace_storage_db",
]
