"""
Git integration: diff-to-line-range resolution and provenance commits.

Only the git command line is used; there is no library binding.
"""

from __future__ import annotations

from .commit import BranchContext, CommitOrchestrator, provenance_branch_name, repository_lock
from .diff import DiffResolver, merge_line_ranges, parse_unified_diff, ranges_to_file_changes
from .runner import GitResult, run_git

__all__ = [
    # Diff
    "DiffResolver",
    "merge_line_ranges",
    "parse_unified_diff",
    "ranges_to_file_changes",
    # Commit
    "BranchContext",
    "CommitOrchestrator",
    "provenance_branch_name",
    "repository_lock",
    # Runner
    "GitResult",
    "run_git",
]
