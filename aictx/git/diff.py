"""
Diff-to-line-range resolution.

Runs git to produce a zero-context unified diff and turns each hunk's
new-side span into a LineRange. Ranges are merged per file so a record
holds sorted, non-overlapping spans.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from ..config import STORE_DIR_NAME
from ..errors import DiffParseError, RepositoryError
from ..models import FileChange, LineRange
from ..paths import is_store_path, matches_any, normalize_path
from .runner import DEFAULT_TIMEOUT_S, EMPTY_TREE, run_git

logger = logging.getLogger(__name__)

# @@ -old_start[,old_count] +new_start[,new_count] @@
HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
DIFF_GIT_HEADER = re.compile(r"^diff --git a/(.+) b/(.+)$")

_PREFIX_ARGS = ("--src-prefix=a/", "--dst-prefix=b/")


@dataclass(frozen=True)
class Hunk:
    """One hunk header of a unified diff."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int

    def new_range(self) -> LineRange | None:
        """New-side span, or None for a pure deletion."""
        if self.new_count <= 0:
            return None
        return LineRange(self.new_start, self.new_start + self.new_count - 1)


@dataclass
class DiffFile:
    """All hunks for one file of a unified diff."""

    old_path: str | None = None
    new_path: str | None = None
    header_path: str | None = None
    hunks: list[Hunk] = field(default_factory=list)

    @property
    def path(self) -> str | None:
        return self.new_path or self.old_path or self.header_path


def _strip_path(raw: str) -> str | None:
    """Turn a ``---``/``+++`` operand into a bare path (None for /dev/null)."""
    value = raw.rstrip("\n")
    # Some producers append "\t<timestamp>"
    if "\t" in value:
        value = value.split("\t", 1)[0]
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    if value == "/dev/null":
        return None
    if value.startswith(("a/", "b/")):
        value = value[2:]
    return value


def parse_unified_diff(text: str) -> list[DiffFile]:
    """
    Parse unified diff output into files and hunk headers.

    Hunk bodies are consumed by their declared line counts, so content
    lines that happen to start with ``+++`` or ``@@`` are never mistaken
    for headers. Combined (``@@@``) hunks of merge commits are skipped.

    Raises:
        DiffParseError: a ``@@`` line that is not a valid hunk header
    """
    files: list[DiffFile] = []
    current: DiffFile | None = None
    old_left = new_left = 0

    # Only "\n" ends a line; form feeds and other separators are line content
    for lineno, line in enumerate(text.split("\n"), start=1):
        if old_left > 0 or new_left > 0:
            if line.startswith("+"):
                new_left -= 1
            elif line.startswith("-"):
                old_left -= 1
            elif line.startswith(" "):
                old_left -= 1
                new_left -= 1
            elif line.startswith("\\"):
                pass  # "\ No newline at end of file"
            else:
                raise DiffParseError(f"line {lineno}: truncated hunk body")
            continue

        if line.startswith("diff --git "):
            current = DiffFile()
            files.append(current)
            m = DIFF_GIT_HEADER.match(line)
            if m:
                current.header_path = m.group(2)
            continue

        if line.startswith("--- "):
            if current is None or current.hunks:
                current = DiffFile()
                files.append(current)
            current.old_path = _strip_path(line[4:])
            continue

        if line.startswith("+++ "):
            if current is None:
                current = DiffFile()
                files.append(current)
            current.new_path = _strip_path(line[4:])
            continue

        if line.startswith("@@@"):
            continue

        if line.startswith("@@"):
            m = HUNK_HEADER.match(line)
            if not m or current is None:
                raise DiffParseError(f"line {lineno}: malformed hunk header: {line!r}")
            hunk = Hunk(
                old_start=int(m.group(1)),
                old_count=int(m.group(2)) if m.group(2) is not None else 1,
                new_start=int(m.group(3)),
                new_count=int(m.group(4)) if m.group(4) is not None else 1,
            )
            current.hunks.append(hunk)
            old_left, new_left = hunk.old_count, hunk.new_count
            continue

    return files


def merge_line_ranges(ranges: Iterable[LineRange]) -> list[LineRange]:
    """Sort by start and merge overlapping or adjacent ranges.

    >>> merge_line_ranges([LineRange(1, 5), LineRange(6, 10), LineRange(12, 12)])
    [LineRange(start=1, end=10), LineRange(start=12, end=12)]
    """
    merged: list[LineRange] = []
    for r in sorted(ranges, key=lambda r: (r.start, r.end)):
        if merged and r.start <= merged[-1].end + 1:
            prev = merged[-1]
            merged[-1] = LineRange(prev.start, max(prev.end, r.end))
        else:
            merged.append(r)
    return merged


def ranges_to_file_changes(ranges_by_file: dict[str, list[LineRange]]) -> list[FileChange]:
    """Convert a path -> ranges mapping into FileChange values."""
    return [
        FileChange(file_path=path, line_ranges=tuple(ranges))
        for path, ranges in ranges_by_file.items()
    ]


class DiffResolver:
    """Resolve changed line ranges from git.

    Without a commit hash the working tree is compared with the last
    commit (or with the empty tree in a repository without commits).
    """

    def __init__(
        self,
        *,
        store_dir_name: str = STORE_DIR_NAME,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ):
        self.store_dir_name = store_dir_name
        self.timeout = timeout

    def _diff_args(self, repo_root: Path, commit_hash: str | None) -> list[str] | None:
        if commit_hash:
            return ["show", "--no-color", "--no-ext-diff", "--format=", "-U0", "--relative", *_PREFIX_ARGS, commit_hash]

        head = run_git(["rev-parse", "--verify", "--quiet", "HEAD"], repo_root, timeout=self.timeout, check=False)
        if head.not_a_repository:
            return None
        base = "HEAD" if head.ok else EMPTY_TREE
        return ["diff", "--no-color", "--no-ext-diff", "-U0", "--relative", *_PREFIX_ARGS, base]

    def raw_diff(self, repo_root: Path, commit_hash: str | None = None) -> str:
        """Unified diff text, or "" outside a repository.

        Raises:
            DiffParseError: git could not produce a diff
        """
        try:
            args = self._diff_args(repo_root, commit_hash)
            if args is None:
                return ""
            result = run_git(args, repo_root, timeout=self.timeout, check=False)
        except RepositoryError as e:
            raise DiffParseError(str(e)) from e

        if result.ok:
            return result.stdout
        if result.not_a_repository:
            return ""
        raise DiffParseError(
            f"git {result.args[0]} exited with {result.returncode}: {result.stderr.strip()}"
        )

    def diff_line_ranges(
        self,
        repo_root: Path,
        *,
        commit_hash: str | None = None,
        candidate_paths: Iterable[str] | None = None,
    ) -> dict[str, list[LineRange]]:
        """
        Changed line ranges per file.

        Args:
            repo_root: Directory to run git in; output paths are relative to it
            commit_hash: Diff of that commit instead of the working tree
            candidate_paths: Keep only files matching one of these (see paths_match)

        Returns:
            Mapping of normalized path to merged ranges. Empty when nothing
            changed or ``repo_root`` is not in a repository.

        Raises:
            DiffParseError: git failed or produced unparseable output
        """
        raw = self.raw_diff(repo_root, commit_hash)
        if not raw.strip():
            return {}

        candidates = [normalize_path(c) for c in candidate_paths] if candidate_paths is not None else None
        result: dict[str, list[LineRange]] = {}

        for diff_file in parse_unified_diff(raw):
            path = diff_file.path
            if not path:
                continue
            normalized = normalize_path(path)
            if is_store_path(normalized, self.store_dir_name):
                continue
            if candidates is not None and not matches_any(normalized, candidates):
                continue

            ranges = [r for r in (h.new_range() for h in diff_file.hunks) if r is not None]
            if ranges:
                result.setdefault(normalized, []).extend(ranges)

        merged = {path: merge_line_ranges(ranges) for path, ranges in result.items()}
        logger.debug("Resolved line ranges for %d file(s) in %s", len(merged), repo_root)
        return merged
