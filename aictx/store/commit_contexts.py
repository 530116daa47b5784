"""
Commit-keyed provenance documents.

One ``<commitHash>.json`` per provenance commit plus a derived
``change-index.json`` mapping file paths to commit hashes. Lower fidelity
than the response-keyed store; used when a response record is missing.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from ..config import STORE_DIR_NAME
from ..errors import StoreCorruption
from ..models import CommitContext, now_ms
from ..paths import normalize_path, paths_match
from .jsonio import read_json, write_json_atomic

logger = logging.getLogger(__name__)

CHANGE_INDEX_FILE = "change-index.json"

_COMMIT_HASH = re.compile(r"^[0-9a-f]{7,64}$")


class CommitContextStore:
    """Read/write CommitContext documents under the store directory."""

    def __init__(self, workspace_root: Path, store_dir_name: str = STORE_DIR_NAME):
        self.store_dir = Path(workspace_root) / store_dir_name
        self.index_path = self.store_dir / CHANGE_INDEX_FILE

    def _context_path(self, commit_hash: str) -> Path:
        return self.store_dir / f"{commit_hash}.json"

    def list_commit_hashes(self) -> list[str]:
        if not self.store_dir.exists():
            return []
        return sorted(p.stem for p in self.store_dir.glob("*.json") if _COMMIT_HASH.match(p.stem))

    def get(self, commit_hash: str) -> CommitContext | None:
        """Context for a full hash, or for an unambiguous abbreviation."""
        path = self._context_path(commit_hash)
        if not path.exists():
            candidates = [h for h in self.list_commit_hashes() if h.startswith(commit_hash)]
            if len(candidates) != 1:
                return None
            path = self._context_path(candidates[0])

        try:
            return CommitContext.from_dict(read_json(path))
        except FileNotFoundError:
            return None
        except StoreCorruption as e:
            logger.warning("Ignoring corrupt commit context: %s", e)
            return None
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring malformed commit context %s: %s", path, e)
            return None

    def all_contexts(self) -> list[CommitContext]:
        contexts = (self.get(h) for h in self.list_commit_hashes())
        return [c for c in contexts if c is not None]

    def rebuild_index(self) -> dict[str, object]:
        by_file: dict[str, list[str]] = {}
        for context in self.all_contexts():
            for change in context.changes:
                hashes = by_file.setdefault(normalize_path(change.file_path), [])
                if context.commit_hash not in hashes:
                    hashes.append(context.commit_hash)
        index = {"byFile": by_file, "updatedAt": now_ms()}
        write_json_atomic(self.index_path, index)
        return index

    def save(self, context: CommitContext) -> Path:
        """Write ``<hash>.json`` and rebuild the change index."""
        path = self._context_path(context.commit_hash)
        write_json_atomic(path, context.to_dict())
        self.rebuild_index()
        logger.debug("Saved commit context %s", context.commit_hash[:7])
        return path

    def contexts_for_file(self, file_path: str) -> list[CommitContext]:
        """Contexts with a change to ``file_path``, newest first."""
        matches = [
            c for c in self.all_contexts()
            if any(paths_match(ch.file_path, file_path) for ch in c.changes)
        ]
        return sorted(matches, key=lambda c: c.timestamp, reverse=True)

    def contexts_for_file_and_line(self, file_path: str, line: int) -> list[CommitContext]:
        return [
            c for c in self.contexts_for_file(file_path)
            if any(paths_match(ch.file_path, file_path) and ch.covers(line) for ch in c.changes)
        ]
