"""JSON document helpers shared by the stores."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..errors import StoreCorruption


def read_json(path: Path) -> Any:
    """
    Load a JSON document.

    Raises:
        FileNotFoundError: ``path`` does not exist
        StoreCorruption: the file is not valid UTF-8 JSON
    """
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise StoreCorruption(path, str(e)) from e


def write_json_atomic(path: Path, data: Any) -> None:
    """Write ``data`` as JSON (write to temp, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    temp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    temp_path.replace(path)
