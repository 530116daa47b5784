"""Tests for the commit-keyed context store."""

from __future__ import annotations

import json
from pathlib import Path

from aictx.models import CommitContext, FileChange, LineRange
from aictx.store import CommitContextStore

HASH_A = "a" * 40
HASH_B = "b" * 40


def context(commit_hash: str, path: str, start: int, end: int, timestamp: int) -> CommitContext:
    return CommitContext(
        commit_hash=commit_hash,
        timestamp=timestamp,
        changes=(FileChange(path, (LineRange(start, end),)),),
        prompt=f"prompt {commit_hash[0]}",
        ai_refs=({"composerId": "c1", "bubbleIds": ["b1"], "time": timestamp},),
    )


def test_save_writes_document_and_index(tmp_path: Path) -> None:
    store = CommitContextStore(tmp_path)
    path = store.save(context(HASH_A, "src/x.ts", 1, 5, 1_000))

    assert path == tmp_path / ".ai-context" / f"{HASH_A}.json"
    assert json.loads(path.read_text(encoding="utf-8"))["commitHash"] == HASH_A
    index = json.loads(store.index_path.read_text(encoding="utf-8"))
    assert index["byFile"] == {"src/x.ts": [HASH_A]}


def test_get_full_and_abbreviated(tmp_path: Path) -> None:
    store = CommitContextStore(tmp_path)
    store.save(context(HASH_A, "x.ts", 1, 1, 1))
    store.save(context(HASH_B, "x.ts", 1, 1, 2))

    assert store.get(HASH_A).commit_hash == HASH_A
    assert store.get("bbbbbbb").commit_hash == HASH_B
    assert store.get("c" * 40) is None
    assert store.list_commit_hashes() == [HASH_A, HASH_B]


def test_other_store_documents_are_not_contexts(tmp_path: Path) -> None:
    store = CommitContextStore(tmp_path)
    store.save(context(HASH_A, "x.ts", 1, 1, 1))
    (tmp_path / ".ai-context" / "metadata.json").write_text("[]", encoding="utf-8")
    assert store.list_commit_hashes() == [HASH_A]


def test_lookup_by_file_and_line(tmp_path: Path) -> None:
    store = CommitContextStore(tmp_path)
    store.save(context(HASH_A, "src/x.ts", 1, 5, 1_000))
    store.save(context(HASH_B, "src/x.ts", 4, 9, 2_000))

    assert [c.commit_hash for c in store.contexts_for_file("src/x.ts")] == [HASH_B, HASH_A]
    assert [c.commit_hash for c in store.contexts_for_file_and_line("src/x.ts", 4)] == [HASH_B, HASH_A]
    assert [c.commit_hash for c in store.contexts_for_file_and_line("src/x.ts", 2)] == [HASH_A]
    assert store.contexts_for_file_and_line("src/x.ts", 10) == []
    assert store.contexts_for_file("other.ts") == []


def test_corrupt_document_is_ignored(tmp_path: Path) -> None:
    store = CommitContextStore(tmp_path)
    store.save(context(HASH_A, "x.ts", 1, 1, 1))
    (tmp_path / ".ai-context" / f"{HASH_B}.json").write_text("{", encoding="utf-8")

    assert store.get(HASH_B) is None
    assert [c.commit_hash for c in store.all_contexts()] == [HASH_A]


def test_undecodable_document_is_ignored(tmp_path: Path) -> None:
    store = CommitContextStore(tmp_path)
    store.save(context(HASH_A, "x.ts", 1, 1, 1))
    (tmp_path / ".ai-context" / f"{HASH_B}.json").write_bytes(b'{"commitHash": "\xff"}')

    assert store.get(HASH_B) is None
    assert [c.commit_hash for c in store.contexts_for_file("x.ts")] == [HASH_A]
