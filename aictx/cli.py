"""CLI entrypoint for aictx."""

import sys
from pathlib import Path

import click

from . import __version__
from .config import TrackerConfig, load_config
from .errors import SourceUnavailable


def _auto_detect_workspace(start: Path) -> Path:
    """Nearest directory holding ``.git`` or ``.ai-context``, else ``start``."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / ".git").exists() or (p / ".ai-context").is_dir():
            return p
    return cur


def _config(ctx: click.Context) -> TrackerConfig:
    return ctx.obj["config"]


@click.group()
@click.version_option(__version__, prog_name="aictx")
@click.option(
    "--workspace",
    "-w",
    type=click.Path(exists=False, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Workspace root (defaults to the enclosing git repository)",
)
@click.option("--verbose", is_flag=True, help="Log debug output")
@click.pass_context
def cli(ctx: click.Context, workspace: Path | None, verbose: bool) -> None:
    """aictx - Attribute AI-generated code to the chat that produced it.

    Watches an assistant's chat history and the working tree, and records
    which response produced which changed lines.
    """
    ctx.ensure_object(dict)
    if workspace is None:
        workspace = _auto_detect_workspace(Path.cwd())

    if not workspace.exists() or not workspace.is_dir():
        raise click.BadParameter(f"Directory '{workspace}' does not exist.", param_hint="--workspace / -w")

    workspace = workspace.resolve()
    try:
        config = load_config(workspace)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    ctx.obj["workspace"] = workspace
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option(
    "--chat-db",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Cursor state.vscdb to read (defaults to the platform location)",
)
@click.option("--no-rescan", is_flag=True, help="Do not re-run attribution for late edits")
@click.pass_context
def watch(ctx: click.Context, chat_db: Path | None, no_rescan: bool) -> None:
    """Detect new AI responses and record the code they produced.

    Runs until interrupted (Ctrl+C). Records are written to
    .ai-context/metadata.json; matched files are committed to the
    ai-context-<user> branch.

    Examples:

        aictx watch

        aictx -w ~/src/project watch --chat-db /tmp/state.vscdb --no-rescan
    """
    from .commands.watch_cmd import run_watch

    config = _config(ctx)
    if chat_db is not None:
        config.chat_db_path = chat_db
    if no_rescan:
        config.rescan_enabled = False

    try:
        run_watch(ctx.obj["workspace"], config, verbose=ctx.obj["verbose"])
    except SourceUnavailable as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument("response_id")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def show(ctx: click.Context, response_id: str, output_json: bool) -> None:
    """Show the record for one response."""
    from .commands.query_cmd import run_show

    sys.exit(run_show(ctx.obj["workspace"], _config(ctx), response_id, output_json=output_json))


@cli.command("file")
@click.argument("file_path")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def file_cmd(ctx: click.Context, file_path: str, output_json: bool) -> None:
    """List responses that changed FILE_PATH."""
    from .commands.query_cmd import run_file

    count = run_file(ctx.obj["workspace"], _config(ctx), file_path, output_json=output_json)
    sys.exit(0 if count > 0 else 1)


@cli.command()
@click.argument("file_path")
@click.argument("line", type=click.IntRange(min=1))
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def blame(ctx: click.Context, file_path: str, line: int, output_json: bool) -> None:
    """Show which response produced LINE of FILE_PATH.

    Examples:

        aictx blame src/app.py 42

        aictx blame src/app.py 42 --json
    """
    from .commands.query_cmd import run_blame

    count = run_blame(ctx.obj["workspace"], _config(ctx), file_path, line, output_json=output_json)
    sys.exit(0 if count > 0 else 1)


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def summary(ctx: click.Context, output_json: bool) -> None:
    """Display totals of recorded provenance."""
    from .commands.query_cmd import run_summary

    run_summary(ctx.obj["workspace"], _config(ctx), output_json=output_json)


@cli.command()
@click.option("--commit", "commit_hash", default=None, metavar="HASH", help="Diff of this commit instead of the working tree")
@click.argument("paths", nargs=-1)
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def diff(ctx: click.Context, commit_hash: str | None, paths: tuple[str, ...], output_json: bool) -> None:
    """Print changed line ranges as the tracker resolves them."""
    from .commands.query_cmd import run_diff

    count = run_diff(
        ctx.obj["workspace"],
        _config(ctx),
        commit_hash=commit_hash,
        paths=list(paths) if paths else None,
        output_json=output_json,
    )
    sys.exit(2 if count < 0 else 0)


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config.yml")
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Create .ai-context/ and a commented default config.yml."""
    from .commands.init_cmd import run_init

    run_init(ctx.obj["workspace"], _config(ctx), force=force)


def main() -> None:
    """Main entrypoint."""
    cli()


if __name__ == "__main__":
    main()
