"""
Path normalization and equivalence.

Paths reach the pipeline from three places that disagree on their base:
the filesystem watcher (absolute), git diff output (repository-relative)
and stored records (workspace-relative). Everything is compared through
``paths_match`` so the tolerance rules live in one place.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from typing import Iterable


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Normalize a relative path to forward-slash form.

    Backslashes become ``/``, ``.`` segments and duplicate slashes are
    dropped, and leading ``/`` is stripped. Case is preserved.
    """
    text = os.fspath(path).strip().replace("\\", "/")
    parts = [p for p in text.split("/") if p not in ("", ".")]
    return "/".join(parts)


def relative_to_root(path: str | os.PathLike[str], root: Path) -> str:
    """Express ``path`` relative to ``root`` in normalized form.

    Relative inputs are taken as already relative to ``root``. Absolute
    paths outside ``root`` are returned normalized but unchanged.
    """
    p = Path(path)
    if p.is_absolute():
        try:
            p = p.relative_to(root)
        except ValueError:
            try:
                p = p.resolve().relative_to(root.resolve())
            except (ValueError, OSError):
                pass
    return normalize_path(p)


def is_excluded(path: str, segments: Iterable[str]) -> bool:
    """True if any segment of ``path`` is one of ``segments``."""
    ignored = set(segments)
    if not ignored:
        return False
    return any(part in ignored for part in PurePosixPath(normalize_path(path)).parts)


def is_store_path(path: str, store_dir_name: str) -> bool:
    """True if ``path`` lies under the provenance store directory."""
    normalized = normalize_path(path)
    return normalized == store_dir_name or normalized.startswith(store_dir_name + "/")


def paths_match(a: str, b: str) -> bool:
    """Decide whether two relative paths name the same file.

    Equal after normalization, or one is a suffix of the other on a ``/``
    boundary (``src/x.ts`` matches ``pkg/src/x.ts`` but not ``src/ax.ts``).
    Empty paths match nothing.
    """
    na = normalize_path(a)
    nb = normalize_path(b)
    if not na or not nb:
        return False
    if na == nb:
        return True
    if len(na) > len(nb):
        na, nb = nb, na
    return nb.endswith("/" + na)


def matches_any(path: str, candidates: Iterable[str]) -> bool:
    """True if ``path`` matches at least one of ``candidates``."""
    return any(paths_match(path, c) for c in candidates)
