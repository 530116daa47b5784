"""Tests for diff parsing and line-range resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from aictx.errors import DiffParseError
from aictx.git.diff import DiffResolver, Hunk, merge_line_ranges, parse_unified_diff, ranges_to_file_changes
from aictx.models import FileChange, LineRange

from conftest import commit_all, git, requires_git


SAMPLE_DIFF = """\
diff --git a/src/x.ts b/src/x.ts
index 1111111..2222222 100644
--- a/src/x.ts
+++ b/src/x.ts
@@ -2,0 +3,4 @@ function f() {
+a
+b
+c
+d
@@ -9 +12 @@
-old
+new
diff --git a/gone.ts b/gone.ts
deleted file mode 100644
--- a/gone.ts
+++ /dev/null
@@ -1,2 +0,0 @@
-x
-y
diff --git a/new.ts b/new.ts
new file mode 100644
--- /dev/null
+++ b/new.ts
@@ -0,0 +1 @@
+hello
\\ No newline at end of file
"""


def test_merge_adjacent_and_disjoint_ranges() -> None:
    merged = merge_line_ranges([LineRange(1, 5), LineRange(6, 10), LineRange(12, 12)])
    assert merged == [LineRange(1, 10), LineRange(12, 12)]


def test_merge_sorts_and_absorbs_overlaps() -> None:
    merged = merge_line_ranges([LineRange(20, 25), LineRange(3, 8), LineRange(4, 5), LineRange(7, 9)])
    assert merged == [LineRange(3, 9), LineRange(20, 25)]


def test_merge_empty() -> None:
    assert merge_line_ranges([]) == []


def test_parse_unified_diff() -> None:
    files = parse_unified_diff(SAMPLE_DIFF)
    assert [f.path for f in files] == ["src/x.ts", "gone.ts", "new.ts"]

    x = files[0]
    assert x.hunks == [Hunk(2, 0, 3, 4), Hunk(9, 1, 12, 1)]
    assert [h.new_range() for h in x.hunks] == [LineRange(3, 6), LineRange(12, 12)]

    gone = files[1]
    assert gone.new_path is None
    assert gone.hunks[0].new_range() is None


def test_hunk_body_lines_that_look_like_headers() -> None:
    text = (
        "diff --git a/a.md b/a.md\n"
        "--- a/a.md\n"
        "+++ b/a.md\n"
        "@@ -0,0 +1,2 @@\n"
        "+++ not a header\n"
        "+@@ nor this\n"
    )
    files = parse_unified_diff(text)
    assert len(files) == 1
    assert files[0].hunks == [Hunk(0, 0, 1, 2)]


@pytest.mark.parametrize("odd", ["\x0c", "\x0b", "\x1c", "\x85", "\u2028", "\r"])
def test_only_newline_ends_a_hunk_line(odd: str) -> None:
    text = (
        "diff --git a/x.ts b/x.ts\n"
        "--- a/x.ts\n"
        "+++ b/x.ts\n"
        "@@ -0,0 +1,2 @@\n"
        f"+a{odd}b\n"
        "+c\n"
        "diff --git a/y.ts b/y.ts\n"
        "--- a/y.ts\n"
        "+++ b/y.ts\n"
        "@@ -3,0 +4 @@\n"
        "+d\n"
    )
    files = parse_unified_diff(text)
    assert [(f.path, f.hunks) for f in files] == [
        ("x.ts", [Hunk(0, 0, 1, 2)]),
        ("y.ts", [Hunk(3, 0, 4, 1)]),
    ]


def test_malformed_hunk_header_raises() -> None:
    with pytest.raises(DiffParseError):
        parse_unified_diff("--- a/a.ts\n+++ b/a.ts\n@@ garbage @@\n")


def test_truncated_hunk_raises() -> None:
    with pytest.raises(DiffParseError):
        parse_unified_diff("--- a/a.ts\n+++ b/a.ts\n@@ -1,2 +1,2 @@\n-a\ndiff --git a/b b/b\n")


def test_ranges_to_file_changes() -> None:
    changes = ranges_to_file_changes({"a.ts": [LineRange(1, 2)]})
    assert changes == [FileChange("a.ts", (LineRange(1, 2),))]


class StaticDiffResolver(DiffResolver):
    def __init__(self, text: str):
        super().__init__()
        self.text = text

    def raw_diff(self, repo_root: Path, commit_hash: str | None = None) -> str:
        return self.text


def test_resolver_filters_to_candidates(tmp_path: Path) -> None:
    resolver = StaticDiffResolver(SAMPLE_DIFF)
    result = resolver.diff_line_ranges(tmp_path, candidate_paths=["pkg/src/x.ts"])
    assert result == {"src/x.ts": [LineRange(3, 6), LineRange(12, 12)]}


def test_resolver_drops_pure_deletions(tmp_path: Path) -> None:
    result = StaticDiffResolver(SAMPLE_DIFF).diff_line_ranges(tmp_path)
    assert set(result) == {"src/x.ts", "new.ts"}
    assert result["new.ts"] == [LineRange(1, 1)]


def test_resolver_excludes_store_directory(tmp_path: Path) -> None:
    text = (
        "diff --git a/.ai-context/metadata.json b/.ai-context/metadata.json\n"
        "--- a/.ai-context/metadata.json\n"
        "+++ b/.ai-context/metadata.json\n"
        "@@ -1 +1 @@\n"
        "-[]\n"
        "+[1]\n"
    )
    assert StaticDiffResolver(text).diff_line_ranges(tmp_path) == {}


@requires_git
def test_not_a_repository_gives_empty_result(tmp_path: Path) -> None:
    assert DiffResolver().diff_line_ranges(tmp_path) == {}


@requires_git
def test_working_tree_diff(repo: Path) -> None:
    lines = (repo / "src" / "x.ts").read_text(encoding="utf-8").splitlines(keepends=True)
    lines[2:2] = ["new a\n", "new b\n", "new c\n", "new d\n"]
    lines[-1] = "changed last\n"
    (repo / "src" / "x.ts").write_text("".join(lines), encoding="utf-8")

    result = DiffResolver().diff_line_ranges(repo)
    assert result == {"src/x.ts": [LineRange(3, 6), LineRange(14, 14)]}


@requires_git
def test_working_tree_diff_with_form_feed_and_carriage_return(repo: Path) -> None:
    with (repo / "src" / "x.ts").open("ab") as fh:
        fh.write(b"page\x0cbreak\nlone\rreturn\nnext\n")
    (repo / "README.md").write_text("# demo\nunrelated\n", encoding="utf-8")

    result = DiffResolver().diff_line_ranges(repo)
    assert result == {"src/x.ts": [LineRange(11, 13)], "README.md": [LineRange(2, 2)]}


@requires_git
def test_clean_tree_gives_empty_result(repo: Path) -> None:
    assert DiffResolver().diff_line_ranges(repo) == {}


@requires_git
def test_repository_without_commits_diffs_against_empty_tree(empty_repo: Path) -> None:
    (empty_repo / "a.ts").write_text("one\ntwo\n", encoding="utf-8")
    git(empty_repo, "add", "a.ts")
    assert DiffResolver().diff_line_ranges(empty_repo) == {"a.ts": [LineRange(1, 2)]}


@requires_git
def test_diff_of_a_commit(repo: Path) -> None:
    (repo / "README.md").write_text("# demo\nmore\n", encoding="utf-8")
    commit_hash = commit_all(repo, "second")
    result = DiffResolver().diff_line_ranges(repo, commit_hash=commit_hash)
    assert result == {"README.md": [LineRange(2, 2)]}


@requires_git
def test_unknown_commit_raises(repo: Path) -> None:
    with pytest.raises(DiffParseError):
        DiffResolver().diff_line_ranges(repo, commit_hash="deadbeef" * 5)


@requires_git
def test_paths_are_relative_to_a_subdirectory_root(repo: Path) -> None:
    (repo / "src" / "x.ts").write_text("changed\n", encoding="utf-8")
    result = DiffResolver().diff_line_ranges(repo / "src")
    assert list(result) == ["x.ts"]
