"""
Time-windowed record of file mutations in the workspace.

The watchdog handler feeds every create/modify/delete/move into a
ChangeTracker; the correlation pipeline later asks which files changed
in the window following a response.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import STORE_DIR_NAME
from .models import ChangeEvent, now_ms
from .paths import is_excluded, relative_to_root

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_SEGMENTS = ("node_modules", ".git", STORE_DIR_NAME)
DEFAULT_RETENTION_MS = 600_000


class ChangeTracker:
    """
    Thread-safe, time-pruned list of ChangeEvents.

    Events older than ``retention_ms`` (relative to ``clock``) are pruned
    on every write and every query.
    """

    def __init__(
        self,
        workspace_root: Path,
        *,
        ignored_segments: Iterable[str] = DEFAULT_IGNORED_SEGMENTS,
        retention_ms: int = DEFAULT_RETENTION_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.workspace_root = Path(workspace_root)
        self.ignored_segments = frozenset(ignored_segments)
        self.retention_ms = retention_ms
        self._clock = clock
        self._events: list[ChangeEvent] = []
        self._lock = threading.Lock()

    def _relative(self, path: str | os.PathLike[str]) -> str | None:
        p = Path(os.fsdecode(path))
        if p.is_absolute():
            try:
                p.relative_to(self.workspace_root)
            except ValueError:
                try:
                    p.resolve().relative_to(self.workspace_root.resolve())
                except (ValueError, OSError):
                    return None
        rel = relative_to_root(p, self.workspace_root)
        return rel or None

    def _prune_locked(self) -> None:
        cutoff = self._clock() - self.retention_ms
        if self._events and self._events[0].timestamp < cutoff:
            self._events = [e for e in self._events if e.timestamp >= cutoff]

    def record(self, path: str | os.PathLike[str], timestamp: int | None = None) -> bool:
        """
        Record a mutation of ``path``.

        Returns:
            False if the path is outside the workspace or ignored
        """
        rel = self._relative(path)
        if rel is None or is_excluded(rel, self.ignored_segments):
            return False

        event = ChangeEvent(file_path=rel, timestamp=self._clock() if timestamp is None else int(timestamp))
        with self._lock:
            self._events.append(event)
            if len(self._events) > 1 and self._events[-2].timestamp > event.timestamp:
                self._events.sort(key=lambda e: e.timestamp)
            self._prune_locked()
        logger.debug("Change recorded: %s @ %d", rel, event.timestamp)
        return True

    def files_in_window(self, from_ms: int, duration_ms: int) -> set[str]:
        """Paths with an event at ``from_ms <= t <= from_ms + duration_ms``."""
        end = from_ms + duration_ms
        with self._lock:
            self._prune_locked()
            return {e.file_path for e in self._events if from_ms <= e.timestamp <= end}

    def events(self) -> list[ChangeEvent]:
        with self._lock:
            self._prune_locked()
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class WorkspaceEventHandler(FileSystemEventHandler):
    """Forward watchdog file events to a ChangeTracker."""

    def __init__(self, tracker: ChangeTracker):
        super().__init__()
        self.tracker = tracker

    def on_created(self, event: FileCreatedEvent) -> None:
        if not event.is_directory:
            self.tracker.record(event.src_path)

    def on_modified(self, event: FileModifiedEvent) -> None:
        if not event.is_directory:
            self.tracker.record(event.src_path)

    def on_deleted(self, event: FileDeletedEvent) -> None:
        if not event.is_directory:
            self.tracker.record(event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:
        # Both names changed from the repository's point of view
        if event.is_directory:
            return
        self.tracker.record(event.src_path)
        self.tracker.record(event.dest_path)


def watch_workspace(
    workspace_root: Path,
    tracker: ChangeTracker,
    recursive: bool = True,
) -> tuple[Observer, WorkspaceEventHandler]:
    """
    Start one workspace-wide watchdog subscription feeding ``tracker``.

    Returns:
        Tuple of (observer, handler) - caller should call observer.stop() to stop watching
    """
    handler = WorkspaceEventHandler(tracker)
    observer = Observer()
    observer.schedule(handler, str(workspace_root), recursive=recursive)
    observer.start()
    logger.debug("Watching %s for file changes", workspace_root)
    return observer, handler
