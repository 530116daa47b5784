"""Init command - create the store directory and default config."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ..config import CONFIG_FILE, STORE_DIR_NAME, TrackerConfig, write_default_config
from ..store import ProvenanceStore


def run_init(workspace_root: Path, config: TrackerConfig, *, force: bool = False) -> Path:
    """Create ``.ai-context/`` with empty documents and a commented config.yml."""
    console = Console()
    ProvenanceStore(workspace_root, config.store_dir_name).ensure()
    existed = (workspace_root / STORE_DIR_NAME / CONFIG_FILE).exists()
    path = write_default_config(workspace_root, overwrite=force)

    if existed and not force:
        console.print(f"[dim]Config already exists:[/dim] {path}")
    else:
        console.print(f"[green]Wrote[/green] {path}")
    return path
