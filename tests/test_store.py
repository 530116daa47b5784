"""Tests for the response-keyed provenance store."""

from __future__ import annotations

import json
from pathlib import Path

from aictx.models import NO_PROMPT, NO_RESPONSE, FileChange, LineRange, ProvenanceRecord
from aictx.store import ProvenanceStore, build_index, merge_records


def record(
    response_id: str = "b1",
    files: tuple[FileChange, ...] = (),
    **kwargs,
) -> ProvenanceRecord:
    kwargs.setdefault("conversation_id", "c1")
    kwargs.setdefault("created_at", 1_000)
    return ProvenanceRecord(response_id=response_id, files=files, **kwargs)


def fc(path: str, *ranges: tuple[int, int]) -> FileChange:
    return FileChange(path, tuple(LineRange(s, e) for s, e in ranges))


def assert_index_consistent(store: ProvenanceStore) -> None:
    records = store.read_all()
    index = json.loads(store.index_path.read_text(encoding="utf-8"))
    assert len(index["byResponseId"]) == len(records)
    for ids in index["byFile"].values():
        for response_id in ids:
            assert response_id in index["byResponseId"]
    for response_id, offset in index["byResponseId"].items():
        assert records[offset].response_id == response_id


def test_ensure_creates_layout(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    store.ensure()
    assert json.loads(store.records_path.read_text(encoding="utf-8")) == []
    assert store.cache_dir.is_dir()
    assert store.read_index()["byResponseId"] == {}


def test_read_all_when_missing(tmp_path: Path) -> None:
    assert ProvenanceStore(tmp_path).read_all() == []


def test_upsert_is_idempotent(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    r = record(files=(fc("src/x.ts", (3, 6)),))
    store.upsert(r)
    store.upsert(r)

    records = store.read_all()
    assert len(records) == 1
    assert records[0].file_paths == ["src/x.ts"]
    assert_index_consistent(store)


def test_upsert_merges_new_files_only(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    store.upsert(record(files=(fc("a.ts", (1, 2)),), thinking="answer", prompt="question"))
    stored = store.upsert(
        record(
            files=(fc("a.ts", (5, 9)), fc("b.ts", (1, 1))),
            commit_hash="abc",
            created_at=2_000,
        )
    )

    assert stored.file_paths == ["a.ts", "b.ts"]
    # Existing file entries are never replaced
    assert stored.files[0] == fc("a.ts", (1, 2))
    assert stored.thinking == "answer"
    assert stored.prompt == "question"
    assert stored.commit_hash == "abc"
    assert stored.created_at == 2_000
    assert_index_consistent(store)


def test_merge_prefers_real_text_over_sentinels() -> None:
    old = record(prompt="question", thinking="answer", commit_hash="abc", tokens=12)
    merged = merge_records(old, record(prompt=NO_PROMPT, thinking=NO_RESPONSE))
    assert merged.prompt == "question"
    assert merged.thinking == "answer"
    assert merged.commit_hash == "abc"
    assert merged.tokens == 12

    merged = merge_records(old, record(thinking="longer answer", commit_hash="def"))
    assert merged.thinking == "longer answer"
    assert merged.commit_hash == "def"


def test_store_paths_are_never_recorded(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    stored = store.upsert(record(files=(fc(".ai-context/metadata.json", (1, 1)), fc("./src\\x.ts", (1, 1)))))
    assert stored.file_paths == ["src/x.ts"]


def test_lookups(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    store.upsert(record("b1", files=(fc("src/x.ts", (3, 6)),), created_at=1_000))
    store.upsert(record("b2", files=(fc("src/x.ts", (10, 12)), fc("y.ts", (1, 1))), created_at=2_000))

    assert store.by_id("b2").file_paths == ["src/x.ts", "y.ts"]
    assert store.by_id("nope") is None
    assert [r.response_id for r in store.by_file("src/x.ts")] == ["b2", "b1"]
    assert [r.response_id for r in store.by_file("pkg/src/x.ts")] == ["b2", "b1"]
    assert [r.response_id for r in store.by_file_and_line("src/x.ts", 4)] == ["b1"]
    assert [r.response_id for r in store.by_file_and_line("src/x.ts", 12)] == ["b2"]
    assert store.by_file_and_line("src/x.ts", 8) == []
    assert store.by_file_and_line("y.ts", 3) == []


def test_corrupt_records_read_as_empty_and_are_overwritten(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    store.ensure()
    store.records_path.write_text("{not json", encoding="utf-8")

    assert store.read_all() == []
    store.upsert(record(files=(fc("a.ts", (1, 1)),)))
    assert [r.response_id for r in store.read_all()] == ["b1"]


def test_undecodable_records_read_as_empty_and_are_overwritten(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    store.ensure()
    store.records_path.write_bytes(b'[{"responseId": "\xff"}]')
    store.index_path.write_bytes(b"\xfe\xff")

    assert store.read_all() == []
    assert store.read_index()["byResponseId"] == {}
    store.upsert(record(files=(fc("a.ts", (1, 1)),)))
    assert [r.response_id for r in store.read_all()] == ["b1"]
    assert store.by_id("b1").file_paths == ["a.ts"]


def test_malformed_entries_are_skipped(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    store.ensure()
    store.records_path.write_text(
        json.dumps([{"conversationId": "no id"}, record("ok").to_dict()]),
        encoding="utf-8",
    )
    assert [r.response_id for r in store.read_all()] == ["ok"]


def test_missing_or_stale_index_is_rebuilt(tmp_path: Path) -> None:
    store = ProvenanceStore(tmp_path)
    store.upsert(record("b1", files=(fc("a.ts", (1, 1)),)))
    store.upsert(record("b2", files=(fc("a.ts", (2, 2)),)))

    store.index_path.unlink()
    assert store.read_index()["byFile"] == {"a.ts": ["b1", "b2"]}

    store.index_path.write_text(json.dumps({"byResponseId": {"b2": 0}, "byFile": {}}), encoding="utf-8")
    assert store.by_id("b2").response_id == "b2"


def test_build_index() -> None:
    index = build_index([record("b1", files=(fc("a.ts", (1, 1)), fc("b.ts", (1, 1)))), record("b2", files=(fc("a.ts", (2, 2)),))])
    assert index["byResponseId"] == {"b1": 0, "b2": 1}
    assert index["byFile"] == {"a.ts": ["b1", "b2"], "b.ts": ["b1"]}
