"""
Response-keyed provenance store.

Layout under ``<workspace>/.ai-context/``:

    metadata.json   JSON array of ProvenanceRecord (rewritten in full)
    index.json      {"byResponseId": {id: offset}, "byFile": {path: [id]}}
    cache/          scratch space for presentation layers

The index is derived data: it is rebuilt from the record list after
every mutation and whenever it is missing or unreadable. The store does
no locking of its own; callers keep a single writer per workspace.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

from ..config import STORE_DIR_NAME
from ..errors import StoreCorruption
from ..models import SENTINELS, FileChange, ProvenanceRecord, now_ms
from ..paths import is_store_path, normalize_path, paths_match
from .jsonio import read_json, write_json_atomic

logger = logging.getLogger(__name__)

RECORDS_FILE = "metadata.json"
INDEX_FILE = "index.json"
CACHE_DIR = "cache"


def _prefer(new: str | None, old: str) -> str:
    """Keep ``old`` unless ``new`` is a real (non-empty, non-sentinel) value."""
    if new and new.strip() and new not in SENTINELS:
        return new
    return old


def merge_records(existing: ProvenanceRecord, incoming: ProvenanceRecord) -> ProvenanceRecord:
    """
    Merge a new observation of a response into its stored record.

    Files are merged by path: a path already present is never added
    again. ``commitHash`` and ``tokens`` take the new value when present.
    """
    known = {normalize_path(f.file_path) for f in existing.files}
    files = list(existing.files)
    for change in incoming.files:
        key = normalize_path(change.file_path)
        if key not in known:
            known.add(key)
            files.append(change)

    return ProvenanceRecord(
        response_id=existing.response_id,
        conversation_id=incoming.conversation_id or existing.conversation_id,
        prompt=_prefer(incoming.prompt, existing.prompt),
        thinking=_prefer(incoming.thinking, existing.thinking),
        files=tuple(files),
        commit_hash=incoming.commit_hash or existing.commit_hash,
        created_at=incoming.created_at,
        tokens=incoming.tokens if incoming.tokens is not None else existing.tokens,
    )


def build_index(records: list[ProvenanceRecord]) -> dict[str, Any]:
    """Derive the lookup index from the record list."""
    by_response_id: dict[str, int] = {}
    by_file: dict[str, list[str]] = {}
    for offset, record in enumerate(records):
        by_response_id[record.response_id] = offset
        for change in record.files:
            ids = by_file.setdefault(normalize_path(change.file_path), [])
            if record.response_id not in ids:
                ids.append(record.response_id)
    return {
        "byResponseId": by_response_id,
        "byFile": by_file,
        "updatedAt": now_ms(),
    }


class ProvenanceStore:
    """Durable, indexed ProvenanceRecord storage with upsert-merge semantics."""

    def __init__(self, workspace_root: Path, store_dir_name: str = STORE_DIR_NAME):
        self.workspace_root = Path(workspace_root)
        self.store_dir_name = store_dir_name
        self.store_dir = self.workspace_root / store_dir_name
        self.records_path = self.store_dir / RECORDS_FILE
        self.index_path = self.store_dir / INDEX_FILE
        self.cache_dir = self.store_dir / CACHE_DIR

    def ensure(self) -> None:
        """Create the store directory and empty documents if missing."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(exist_ok=True)
        if not self.records_path.exists():
            write_json_atomic(self.records_path, [])
        if not self.index_path.exists():
            write_json_atomic(self.index_path, build_index([]))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _load_records(self) -> list[ProvenanceRecord]:
        data = read_json(self.records_path)
        if not isinstance(data, list):
            raise StoreCorruption(self.records_path, "expected a JSON array")

        records: list[ProvenanceRecord] = []
        for i, item in enumerate(data):
            try:
                records.append(ProvenanceRecord.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping malformed record #%d in %s: %s", i, self.records_path, e)
        return records

    def read_all(self) -> list[ProvenanceRecord]:
        """
        All stored records, in insertion order.

        A corrupt records file reads as empty and is overwritten by the
        next upsert.
        """
        try:
            return self._load_records()
        except FileNotFoundError:
            return []
        except StoreCorruption as e:
            logger.warning("Provenance store is corrupt, treating as empty: %s", e)
            return []

    def read_index(self) -> dict[str, Any]:
        """The on-disk index, rebuilt in memory when missing or unreadable."""
        try:
            index = read_json(self.index_path)
            if isinstance(index, dict) and "byResponseId" in index and "byFile" in index:
                return index
            logger.warning("Index %s has an unexpected shape, rebuilding", self.index_path)
        except FileNotFoundError:
            pass
        except StoreCorruption as e:
            logger.warning("Index is corrupt, rebuilding: %s", e)
        return build_index(self.read_all())

    def by_id(self, response_id: str) -> ProvenanceRecord | None:
        records = self.read_all()
        offset = self.read_index()["byResponseId"].get(response_id)
        if isinstance(offset, int) and 0 <= offset < len(records):
            if records[offset].response_id == response_id:
                return records[offset]
        # Index out of date; fall back to a scan
        return next((r for r in records if r.response_id == response_id), None)

    def by_file(self, file_path: str) -> list[ProvenanceRecord]:
        """Records touching ``file_path`` (see paths_match), newest first."""
        matches = [
            r for r in self.read_all()
            if any(paths_match(f.file_path, file_path) for f in r.files)
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    def by_file_and_line(self, file_path: str, line: int) -> list[ProvenanceRecord]:
        """Records whose ranges for ``file_path`` cover ``line``, newest first."""
        return [
            r for r in self.by_file(file_path)
            if any(paths_match(f.file_path, file_path) and f.covers(line) for f in r.files)
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _strip_store_paths(self, record: ProvenanceRecord) -> ProvenanceRecord:
        files = tuple(
            FileChange(file_path=normalize_path(f.file_path), line_ranges=f.line_ranges)
            for f in record.files
            if not is_store_path(f.file_path, self.store_dir_name)
        )
        if files == record.files:
            return record
        return dataclasses.replace(record, files=files)

    def _write(self, records: list[ProvenanceRecord]) -> None:
        write_json_atomic(self.records_path, [r.to_dict() for r in records])
        write_json_atomic(self.index_path, build_index(records))

    def upsert(self, record: ProvenanceRecord) -> ProvenanceRecord:
        """
        Insert ``record``, or merge it into the stored record with the same id.

        Returns:
            The record as stored
        """
        self.ensure()
        record = self._strip_store_paths(record)
        records = self.read_all()

        for i, existing in enumerate(records):
            if existing.response_id == record.response_id:
                stored = merge_records(existing, record)
                records[i] = stored
                break
        else:
            stored = record
            records.append(stored)

        self._write(records)
        logger.info(
            "Stored provenance for %s (%d file(s)%s)",
            stored.response_id,
            len(stored.files),
            f", commit {stored.commit_hash[:7]}" if stored.commit_hash else "",
        )
        return stored
