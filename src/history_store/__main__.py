"""CLI entry point for history-store.

Every store operation is available as a command and prints the same text a
tool call returns. `serve` runs the stdio JSON-lines server:
    python -m history_store serve
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click

from history_store.config import load_config
from history_store.logging import get_logger, setup_logging
from history_store.server import serve
from history_store.store import DialogStore
from history_store.tools import ToolDispatcher, ToolError

logger = get_logger("cli")


def run_tool(ctx: click.Context, tool: str, arguments: dict[str, Any]) -> None:
    """Dispatch one tool call and echo its result."""
    dispatcher: ToolDispatcher = ctx.obj["dispatcher"]
    try:
        result = asyncio.run(dispatcher.dispatch(tool, arguments))
    except ToolError as e:
        raise click.UsageError(str(e)) from e
    click.echo(result)


def _drop_none(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


project_option = click.option(
    "--project", "-p", "project_root", default=".", show_default=True, help="Project root directory"
)
dialog_option = click.option("--dialog", "-d", default="default", show_default=True, help="Dialog name")


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Per-dialog conversation history store."""
    setup_logging("cli", level=logging.DEBUG if verbose else logging.INFO)
    config = load_config(config_path)
    ctx.ensure_object(dict)
    ctx.obj["dispatcher"] = ToolDispatcher(DialogStore(config))


@cli.command()
@project_option
@dialog_option
@click.option("--recent", "-n", "recent_turns", default=6, show_default=True, help="Trailing messages to return")
@click.option("--format", "fmt", type=click.Choice(["flat", "json"]), default="flat", show_default=True)
@click.option("--no-summary", is_flag=True, help="Omit the summary")
@click.option("--no-messages", is_flag=True, help="Omit the messages")
@click.pass_context
def fetch(
    ctx: click.Context,
    project_root: str,
    dialog: str,
    recent_turns: int,
    fmt: str,
    no_summary: bool,
    no_messages: bool,
) -> None:
    """Show the summary and recent messages of a dialog."""
    run_tool(
        ctx,
        "history_fetch",
        {
            "projectRoot": project_root,
            "dialog": dialog,
            "recentTurns": recent_turns,
            "format": fmt,
            "includeSummary": not no_summary,
            "includeMessages": not no_messages,
        },
    )


@cli.command()
@project_option
@dialog_option
@click.option("--role", type=click.Choice(["user", "assistant"]), required=True)
@click.option("--ts", type=int, help="Timestamp in milliseconds (assigned when omitted)")
@click.argument("text")
@click.pass_context
def save(ctx: click.Context, project_root: str, dialog: str, role: str, ts: int | None, text: str) -> None:
    """Append one message to a dialog."""
    entry = _drop_none(role=role, text=text, ts=ts)
    run_tool(ctx, "history_save", {"projectRoot": project_root, "dialog": dialog, "entry": entry})


@cli.command("get-summary")
@project_option
@dialog_option
@click.pass_context
def get_summary(ctx: click.Context, project_root: str, dialog: str) -> None:
    """Print the rolling summary."""
    run_tool(ctx, "history_get_summary", {"projectRoot": project_root, "dialog": dialog})


@cli.command("set-summary")
@project_option
@dialog_option
@click.option("--mode", type=click.Choice(["merge", "replace"]), default="merge", show_default=True)
@click.argument("summary_file", type=click.File("r"), default="-")
@click.pass_context
def set_summary(ctx: click.Context, project_root: str, dialog: str, mode: str, summary_file: Any) -> None:
    """Set the rolling summary from a JSON file (or stdin)."""
    run_tool(
        ctx,
        "history_set_summary",
        {"projectRoot": project_root, "dialog": dialog, "summary": summary_file.read(), "mode": mode},
    )


@cli.command()
@project_option
@dialog_option
@click.pass_context
def clear(ctx: click.Context, project_root: str, dialog: str) -> None:
    """Back up and delete a dialog's messages and summary."""
    run_tool(ctx, "history_clear", {"projectRoot": project_root, "dialog": dialog})


@cli.command("list-dialogs")
@project_option
@click.pass_context
def list_dialogs(ctx: click.Context, project_root: str) -> None:
    """List dialogs stored for a project."""
    run_tool(ctx, "history_list_dialogs", {"projectRoot": project_root})


@cli.command()
@project_option
@dialog_option
@click.option("--since", "since_ts", type=int, help="Only messages after this timestamp (ms)")
@click.option("--limit", "-n", default=50, show_default=True, help="Maximum messages (capped at 200)")
@click.pass_context
def since(ctx: click.Context, project_root: str, dialog: str, since_ts: int | None, limit: int) -> None:
    """List messages after a timestamp, or the most recent ones."""
    arguments = _drop_none(projectRoot=project_root, dialog=dialog, sinceTs=since_ts, limit=limit)
    run_tool(ctx, "history_get_messages_since", arguments)


@cli.command()
@project_option
@dialog_option
@click.pass_context
def stats(ctx: click.Context, project_root: str, dialog: str) -> None:
    """Show size, backup count and comfort-zone status."""
    run_tool(ctx, "history_stats", {"projectRoot": project_root, "dialog": dialog})


@cli.command("list-backups")
@project_option
@dialog_option
@click.pass_context
def list_backups(ctx: click.Context, project_root: str, dialog: str) -> None:
    """List a dialog's backups, newest first."""
    run_tool(ctx, "history_list_backups", {"projectRoot": project_root, "dialog": dialog})


@cli.command()
@project_option
@dialog_option
@click.argument("backup_id")
@click.pass_context
def restore(ctx: click.Context, project_root: str, dialog: str, backup_id: str) -> None:
    """Restore a backup (the current state is backed up first)."""
    run_tool(ctx, "history_restore_backup", {"projectRoot": project_root, "dialog": dialog, "id": backup_id})


@cli.command("serve")
@click.pass_context
def serve_command(ctx: click.Context) -> None:
    """Serve tool calls as JSON lines on stdin/stdout."""
    handled = asyncio.run(serve(ctx.obj["dispatcher"], handle_signals=True))
    logger.info("Stdio server exited: handled=%d", handled)


@cli.command("tools")
def list_tools() -> None:
    """List the tool names accepted by `serve`."""
    click.echo(json.dumps(ToolDispatcher.tool_names()))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
