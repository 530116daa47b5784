"""
Provenance commits on a dedicated per-user branch.

The branch switch moves HEAD and the index only; the working tree is
never checked out, so the uncommitted edits being attributed stay in
place. The caller's HEAD and index are captured in a BranchContext and
put back by restore_branch().

Branch switching mutates state shared by every process using the
repository. Callers serialize through repository_lock().
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Sequence

from ..config import STORE_DIR_NAME
from ..errors import RepositoryError
from ..paths import is_store_path, normalize_path
from .runner import DEFAULT_TIMEOUT_S, GitResult, run_git

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = "ai-context-"

_repo_locks: dict[str, threading.RLock] = {}
_repo_locks_guard = threading.Lock()


@contextmanager
def repository_lock(repo_root: Path) -> Iterator[None]:
    """Exclusive section for branch/index mutation of one repository."""
    key = str(Path(repo_root).resolve())
    with _repo_locks_guard:
        lock = _repo_locks.setdefault(key, threading.RLock())
    with lock:
        yield


def git_username(repo_root: Path, *, timeout: float | None = DEFAULT_TIMEOUT_S) -> str:
    """Configured ``user.name`` with whitespace runs replaced by ``-``."""
    result = run_git(["config", "user.name"], repo_root, timeout=timeout, check=False)
    name = result.stdout.strip() if result.ok else ""
    return re.sub(r"\s+", "-", name) or "unknown"


def provenance_branch_name(
    repo_root: Path,
    prefix: str = DEFAULT_BRANCH_PREFIX,
    *,
    timeout: float | None = DEFAULT_TIMEOUT_S,
) -> str:
    """Deterministic provenance branch name for the repository's user."""
    return f"{prefix}{git_username(repo_root, timeout=timeout)}"


@dataclass(frozen=True)
class BranchContext:
    """What ensure_provenance_branch() changed, and how to undo it."""

    branch_name: str
    created: bool
    saved_ref: str | None = None  # "refs/heads/<name>", or a sha for a detached HEAD
    saved_index_tree: str | None = None

    @property
    def switched(self) -> bool:
        return self.saved_ref is not None

    @property
    def saved_branch(self) -> str | None:
        if self.saved_ref and self.saved_ref.startswith("refs/heads/"):
            return self.saved_ref[len("refs/heads/"):]
        return self.saved_ref


class CommitOrchestrator:
    """Switch to the provenance branch, commit matched files, switch back."""

    def __init__(
        self,
        *,
        branch_prefix: str = DEFAULT_BRANCH_PREFIX,
        store_dir_name: str = STORE_DIR_NAME,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ):
        self.branch_prefix = branch_prefix
        self.store_dir_name = store_dir_name
        self.timeout = timeout

    def _git(self, repo_root: Path, args: Sequence[str], *, check: bool = True) -> GitResult:
        return run_git(args, repo_root, timeout=self.timeout, check=check)

    # -------------------------------------------------------------------------
    # Branch state
    # -------------------------------------------------------------------------

    def branch_name(self, repo_root: Path) -> str:
        return provenance_branch_name(repo_root, self.branch_prefix, timeout=self.timeout)

    def current_ref(self, repo_root: Path) -> str | None:
        """Full ref HEAD points at, a sha when detached, or None."""
        symbolic = self._git(repo_root, ["symbolic-ref", "--quiet", "HEAD"], check=False)
        if symbolic.ok and symbolic.stdout.strip():
            return symbolic.stdout.strip()
        detached = self._git(repo_root, ["rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        if detached.ok and detached.stdout.strip():
            return detached.stdout.strip()
        return None

    def branch_exists(self, repo_root: Path, branch: str) -> bool:
        result = self._git(repo_root, ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], check=False)
        return result.ok

    def ensure_provenance_branch(self, repo_root: Path) -> BranchContext:
        """
        Point HEAD at the provenance branch, creating it as an orphan if needed.

        Returns:
            BranchContext to hand to restore_branch()

        Raises:
            RepositoryError: not a repository, or the switch failed (any
                partial switch has been undone)
        """
        # Fails with "not a git repository" before anything is touched
        self._git(repo_root, ["rev-parse", "--git-dir"])

        branch = self.branch_name(repo_root)
        target_ref = f"refs/heads/{branch}"
        current = self.current_ref(repo_root)
        if current == target_ref:
            return BranchContext(branch_name=branch, created=False)

        if current is None:
            logger.warning("Could not resolve current HEAD in %s; it will not be restored", repo_root)

        saved_tree = self._git(repo_root, ["write-tree"]).stdout.strip()
        exists = self.branch_exists(repo_root, branch)
        context = BranchContext(
            branch_name=branch,
            created=not exists,
            saved_ref=current,
            saved_index_tree=saved_tree or None,
        )

        try:
            self._git(repo_root, ["symbolic-ref", "HEAD", target_ref])
            if exists:
                self._git(repo_root, ["read-tree", target_ref])
            else:
                try:
                    self._git(repo_root, ["read-tree", "--empty"])
                except RepositoryError as e:
                    logger.warning("Could not empty the index for new branch %s: %s", branch, e)
        except RepositoryError:
            self._restore_quietly(repo_root, context)
            raise

        if context.created:
            logger.info("Created provenance branch %s (no shared history)", branch)
        return context

    def restore_branch(self, repo_root: Path, context: BranchContext | None) -> None:
        """Put HEAD and the index back as they were before the switch."""
        if context is None or context.saved_ref is None:
            return

        if context.saved_ref.startswith("refs/"):
            self._git(repo_root, ["symbolic-ref", "HEAD", context.saved_ref])
        else:
            self._git(repo_root, ["update-ref", "--no-deref", "HEAD", context.saved_ref])
        if context.saved_index_tree:
            self._git(repo_root, ["read-tree", context.saved_index_tree])
            # read-tree drops cached stat data
            self._git(repo_root, ["update-index", "-q", "--refresh"], check=False)

    def _restore_quietly(self, repo_root: Path, context: BranchContext) -> None:
        try:
            self.restore_branch(repo_root, context)
        except RepositoryError as e:
            logger.warning(
                "Failed to restore %s in %s: %s",
                context.saved_branch or "HEAD",
                repo_root,
                e,
            )

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def _select_paths(self, repo_root: Path, paths: Sequence[str]) -> list[str]:
        """Paths that exist on disk or in the index (git add rejects the rest)."""
        wanted = [
            p for p in dict.fromkeys(normalize_path(p) for p in paths)
            if p and not is_store_path(p, self.store_dir_name)
        ]
        if not wanted:
            return []
        listed = self._git(repo_root, ["ls-files", "-z", "--", *wanted], check=False)
        tracked = set(filter(None, listed.stdout.split("\0"))) if listed.ok else set()
        return [p for p in wanted if p in tracked or (repo_root / p).exists()]

    def has_staged_changes(self, repo_root: Path) -> bool:
        status = self._git(repo_root, ["status", "--porcelain", "--untracked-files=no"])
        return any(line and line[0] not in " ?!" for line in status.stdout.split("\n"))

    def commit_matched_files(
        self,
        repo_root: Path,
        paths: Sequence[str],
        message: str | None = None,
    ) -> str | None:
        """
        Stage ``paths`` (or the whole tree when empty) and commit.

        Returns:
            The new commit hash, or None when nothing ended up staged

        Raises:
            RepositoryError: staging or committing failed
        """
        if paths:
            selected = self._select_paths(repo_root, paths)
            if not selected:
                logger.debug("None of %d matched path(s) can be staged", len(paths))
                return None
            self._git(repo_root, ["add", "-A", "--", *selected])
        else:
            self._git(repo_root, ["add", "-A", "--", ".", f":(exclude){self.store_dir_name}"])

        if not self.has_staged_changes(repo_root):
            return None

        commit_message = message or f"[AI] {datetime.now(timezone.utc).isoformat()}"
        self._git(
            repo_root,
            ["-c", "commit.gpgsign=false", "commit", "--no-verify", "--quiet", "-m", commit_message],
        )
        return self._git(repo_root, ["rev-parse", "HEAD"]).stdout.strip()

    def commit_on_provenance_branch(
        self,
        repo_root: Path,
        paths: Sequence[str],
        message: str | None = None,
    ) -> tuple[BranchContext, str | None]:
        """
        ensure -> commit -> restore, holding the repository lock throughout.

        The restore step always runs; a restore failure is logged.

        Raises:
            RepositoryError: the switch or the commit failed
        """
        with repository_lock(repo_root):
            context = self.ensure_provenance_branch(repo_root)
            try:
                commit_hash = self.commit_matched_files(repo_root, paths, message)
            finally:
                self._restore_quietly(repo_root, context)

        if commit_hash:
            logger.info(
                "Committed %d file(s) to %s: %s",
                len(paths),
                context.branch_name,
                commit_hash[:7],
            )
        return context, commit_hash
