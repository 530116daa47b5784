"""Query commands - read the provenance store."""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..config import TrackerConfig
from ..errors import DiffParseError
from ..git import DiffResolver
from ..models import CommitContext, FileChange, ProvenanceRecord
from ..store import CommitContextStore, ProvenanceStore


def _format_time(ms: int) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _format_ranges(change: FileChange) -> str:
    return ", ".join(
        str(r.start) if r.start == r.end else f"{r.start}-{r.end}"
        for r in change.line_ranges
    )


def _excerpt(text: str, limit: int = 200) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def _print_record(console: Console, record: ProvenanceRecord, *, full: bool = False) -> None:
    console.print(f"[bold]{record.response_id}[/bold]  [dim]conversation {record.conversation_id}[/dim]")
    console.print(f"  Recorded: {_format_time(record.created_at)}")
    if record.commit_hash:
        console.print(f"  Commit:   {record.commit_hash[:12]}")
    console.print(f"  Prompt:   {record.prompt if full else _excerpt(record.prompt)}", highlight=False, markup=False)
    if full:
        console.print("  Response:", highlight=False)
        console.print(record.thinking, highlight=False, markup=False)
    else:
        console.print(f"  Response: {_excerpt(record.thinking)}", highlight=False, markup=False)
    for change in record.files:
        console.print(f"    [cyan]{change.file_path}[/cyan] {_format_ranges(change)}", highlight=False)


def _print_context(console: Console, context: CommitContext) -> None:
    console.print(f"[bold]commit {context.commit_hash[:12]}[/bold]  [dim]{_format_time(context.timestamp)}[/dim]")
    if context.prompt:
        console.print(f"  Prompt:   {_excerpt(context.prompt)}", highlight=False, markup=False)
    if context.thinking:
        console.print(f"  Response: {_excerpt(context.thinking)}", highlight=False, markup=False)
    for change in context.changes:
        console.print(f"    [cyan]{change.file_path}[/cyan] {_format_ranges(change)}", highlight=False)


def run_show(workspace_root: Path, config: TrackerConfig, response_id: str, *, output_json: bool = False) -> int:
    """Display one record. Returns 0 if found, 1 otherwise."""
    store = ProvenanceStore(workspace_root, config.store_dir_name)
    record = store.by_id(response_id)

    if output_json:
        print(json.dumps(record.to_dict() if record else None, indent=2, ensure_ascii=False))
        return 0 if record else 1

    console = Console()
    if record is None:
        console.print(f"[yellow]No record for response {response_id}[/yellow]")
        return 1
    _print_record(console, record, full=True)
    return 0


def run_file(workspace_root: Path, config: TrackerConfig, file_path: str, *, output_json: bool = False) -> int:
    """List records touching a file. Returns the record count."""
    store = ProvenanceStore(workspace_root, config.store_dir_name)
    records = store.by_file(file_path)

    if output_json:
        print(json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False))
        return len(records)

    console = Console()
    if not records:
        console.print(f"[dim]No AI provenance recorded for {file_path}[/dim]")
        return 0
    for record in records:
        _print_record(console, record)
        console.print()
    return len(records)


def run_blame(
    workspace_root: Path,
    config: TrackerConfig,
    file_path: str,
    line: int,
    *,
    output_json: bool = False,
) -> int:
    """
    Explain where a line came from.

    Response records are consulted first; commit contexts only when no
    record covers the line. Returns the number of matches.
    """
    store = ProvenanceStore(workspace_root, config.store_dir_name)
    records = store.by_file_and_line(file_path, line)
    contexts: list[CommitContext] = []
    if not records:
        contexts = CommitContextStore(workspace_root, config.store_dir_name).contexts_for_file_and_line(file_path, line)

    if output_json:
        print(json.dumps(
            {
                "filePath": file_path,
                "line": line,
                "records": [r.to_dict() for r in records],
                "commitContexts": [c.to_dict() for c in contexts],
            },
            indent=2,
            ensure_ascii=False,
        ))
        return len(records) + len(contexts)

    console = Console()
    if not records and not contexts:
        console.print(f"[dim]{file_path}:{line} has no recorded AI provenance[/dim]")
        return 0

    console.print(f"[bold]{file_path}:{line}[/bold]")
    console.print()
    for record in records:
        _print_record(console, record)
        console.print()
    for context in contexts:
        _print_context(console, context)
        console.print()
    return len(records) + len(contexts)


def run_summary(workspace_root: Path, config: TrackerConfig, *, output_json: bool = False) -> int:
    """Display store totals. Returns the record count."""
    records = ProvenanceStore(workspace_root, config.store_dir_name).read_all()
    commit_hashes = CommitContextStore(workspace_root, config.store_dir_name).list_commit_hashes()

    per_file: Counter[str] = Counter()
    for record in records:
        for change in record.files:
            per_file[change.file_path] += 1
    committed = sum(1 for r in records if r.commit_hash)

    if output_json:
        print(json.dumps(
            {
                "records": len(records),
                "withCommit": committed,
                "commitContexts": len(commit_hashes),
                "files": dict(per_file.most_common()),
            },
            indent=2,
        ))
        return len(records)

    console = Console()
    if not records:
        console.print("[dim]No provenance recorded yet.[/dim]")
        return 0

    table = Table(title="Provenance Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Records", str(len(records)))
    table.add_row("With commit", str(committed))
    table.add_row("Commit contexts", str(len(commit_hashes)))
    table.add_row("Files", str(len(per_file)))
    if records:
        table.add_row("", "")
        table.add_row("First record", _format_time(min(r.created_at for r in records)))
        table.add_row("Last record", _format_time(max(r.created_at for r in records)))
    console.print(table)

    files = Table(title="Responses per file")
    files.add_column("File", style="cyan")
    files.add_column("Responses", justify="right")
    for path, count in per_file.most_common(20):
        files.add_row(path, str(count))
    console.print(files)
    return len(records)


def run_diff(
    workspace_root: Path,
    config: TrackerConfig,
    *,
    commit_hash: str | None = None,
    paths: list[str] | None = None,
    output_json: bool = False,
) -> int:
    """Print the line ranges the resolver sees. Returns the file count, -1 on failure."""
    resolver = DiffResolver(store_dir_name=config.store_dir_name, timeout=config.git_timeout_s)
    console = Console()
    try:
        ranges = resolver.diff_line_ranges(workspace_root, commit_hash=commit_hash, candidate_paths=paths or None)
    except DiffParseError as e:
        Console(stderr=True).print(f"[red]Diff failed:[/red] {e}", highlight=False)
        return -1

    if output_json:
        print(json.dumps(
            {path: [r.to_dict() for r in rs] for path, rs in ranges.items()},
            indent=2,
        ))
        return len(ranges)

    if not ranges:
        console.print("[dim]No changed lines.[/dim]")
        return 0
    for path, rs in ranges.items():
        console.print(f"[cyan]{path}[/cyan] {_format_ranges(FileChange(path, tuple(rs)))}", highlight=False)
    return len(ranges)
