"""
Thin wrapper around the git command line.

All git access goes through ``run_git`` so every call has a timeout, a
stable (untranslated) stderr for sentinel detection, and the same
failure type.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..errors import RepositoryError

logger = logging.getLogger(__name__)

NOT_A_REPOSITORY = "not a git repository"
DEFAULT_TIMEOUT_S = 30.0

# Hash of the empty tree, valid in every SHA-1 repository
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


@dataclass(frozen=True)
class GitResult:
    """Outcome of one git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def not_a_repository(self) -> bool:
        return NOT_A_REPOSITORY in self.stderr.lower()


def _decode(output: bytes | None) -> str:
    # No universal-newline translation: a lone \r inside a diff line is content
    return output.decode("utf-8", errors="replace") if output else ""


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    env["LC_ALL"] = "C"
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def run_git(
    args: Sequence[str],
    cwd: Path,
    *,
    timeout: float | None = DEFAULT_TIMEOUT_S,
    check: bool = True,
) -> GitResult:
    """
    Run ``git <args>`` in ``cwd``.

    Args:
        args: Arguments after ``git``
        cwd: Working directory
        timeout: Seconds before the process is killed
        check: Raise RepositoryError on a non-zero exit

    Returns:
        GitResult with decoded stdout/stderr

    Raises:
        RepositoryError: git missing, timed out, or (with check) failed
    """
    argv = ["git", "-c", "core.quotepath=off", *args]
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd),
            capture_output=True,
            timeout=timeout,
            env=_git_env(),
        )
    except FileNotFoundError as e:
        raise RepositoryError("git executable not found", command=argv) from e
    except subprocess.TimeoutExpired as e:
        raise RepositoryError(f"git timed out after {timeout}s", command=argv) from e

    result = GitResult(
        args=tuple(args),
        returncode=proc.returncode,
        stdout=_decode(proc.stdout),
        stderr=_decode(proc.stderr),
    )
    if check and not result.ok:
        raise RepositoryError(
            f"git {' '.join(args)} failed with exit code {result.returncode}",
            command=argv,
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return result
