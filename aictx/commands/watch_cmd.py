"""Watch command - detect responses and record their provenance."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from ..config import TrackerConfig
from ..detector import ResponseDetector
from ..followup import FollowUpScheduler
from ..models import AIResponse
from ..pipeline import CorrelationPipeline
from ..source import CursorChatSource
from ..store import ProvenanceStore
from ..tracker import ChangeTracker, watch_workspace


def configure_logging(console: Console, verbose: bool = False) -> None:
    """Route library logging through rich on ``console``."""
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root = logging.getLogger("aictx")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False


def run_watch(
    workspace_root: Path,
    config: TrackerConfig,
    *,
    verbose: bool = False,
    stop_event: threading.Event | None = None,
) -> int:
    """
    Track AI responses until interrupted.

    This is a blocking command that runs until Ctrl+C (or ``stop_event``).
    Returns the number of responses recorded.

    Raises:
        SourceUnavailable: the chat history cannot be read at startup
    """
    console = Console(stderr=True)
    configure_logging(console, verbose)

    source = CursorChatSource(
        config.chat_db_path,
        workspace_root=workspace_root,
        backoff=config.source_backoff,
    )
    tracker = ChangeTracker(
        workspace_root,
        ignored_segments=config.ignored_segments,
        retention_ms=config.retention_ms,
    )
    ProvenanceStore(workspace_root, config.store_dir_name).ensure()

    def on_branch_created(branch_name: str) -> None:
        console.print(
            f"[green]Created provenance branch[/green] [bold]{branch_name}[/bold] "
            "[dim](no shared history with your branches)[/dim]"
        )

    pipeline = CorrelationPipeline(
        workspace_root,
        source=source,
        tracker=tracker,
        config=config,
        on_branch_created=on_branch_created,
    )
    scheduler = (
        FollowUpScheduler(
            pipeline.run,
            interval_s=config.rescan_interval_s,
            duration_s=config.rescan_duration_s,
        )
        if config.rescan_enabled
        else None
    )

    recorded = 0

    def on_new_response(response: AIResponse) -> None:
        nonlocal recorded
        outcome = pipeline.process(response)
        if outcome.persisted and outcome.record is not None:
            recorded += 1
            files = ", ".join(outcome.record.file_paths[:3])
            more = len(outcome.record.files) - 3
            suffix = f" (+{more} more)" if more > 0 else ""
            marker = " [yellow](lines unknown)[/yellow]" if outcome.degraded else ""
            console.print(f"[bold]Recorded[/bold] {response.id[:8]}: {files}{suffix}{marker}", highlight=False)
        if scheduler is not None:
            scheduler.track(response)

    detector = ResponseDetector(
        source,
        on_new_response,
        poll_interval_s=config.poll_interval_s,
        debounce_s=config.debounce_s,
    )

    observer, _ = watch_workspace(workspace_root, tracker)
    try:
        detector.start()
    except Exception:
        observer.stop()
        observer.join()
        raise

    console.print(f"[bold]Watching[/bold] {workspace_root}")
    console.print(f"  Chat history: {source.db_path}")
    console.print(f"  Follow-up rescans: {'on' if scheduler else 'off'}")
    console.print()
    console.print("[dim]Press Ctrl+C to stop watching[/dim]")
    console.print()

    stop = stop_event or threading.Event()
    try:
        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        console.print()
    finally:
        detector.stop()
        if scheduler is not None:
            scheduler.stop()
        observer.stop()
        observer.join()

    console.print(f"[bold]Stopped.[/bold] Recorded {recorded} response(s).")
    return recorded
