#!/usr/bin/env python3
"""
Sweep a project's dialogs and repair double-encoded summary files.

Older writers stored the rolling summary as a JSON string containing JSON.
Reads repair this lazily; this script repairs every dialog up front so the
files can be consumed by other tools directly.
"""

import sys
from pathlib import Path

# Add src to path if running from repo root
repo_root = Path(__file__).parent.parent
if (repo_root / "src").exists():
    sys.path.insert(0, str(repo_root / "src"))

import click

from history_store.config import load_config
from history_store.logging import get_logger, setup_logging
from history_store.paths import SUMMARY_FILE, history_root, list_dialog_names
from history_store.storage.durable import DurableWriter
from history_store.summary import normalize_summary_text, read_summary_normalized

logger = get_logger("repair")


@click.command()
@click.argument("project_root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--dry-run", is_flag=True, help="Only report dialogs that need a repair")
def repair(project_root: Path, dry_run: bool) -> None:
    """Repair double-encoded summaries under PROJECT_ROOT."""
    setup_logging("repair")
    config = load_config()
    writer = DurableWriter()
    container = history_root(project_root, config.store)

    repaired = 0
    for name in list_dialog_names(project_root, config.store):
        path = container / name / SUMMARY_FILE
        if not path.is_file():
            continue
        _, needs_repair = normalize_summary_text(path.read_text(encoding="utf-8"))
        if not needs_repair:
            continue
        repaired += 1
        if dry_run:
            click.echo(f"would repair: {name}")
            continue
        read_summary_normalized(path, writer)
        click.echo(f"repaired: {name}")

    logger.info("Summary sweep finished: project=%s repaired=%d dry_run=%s", project_root, repaired, dry_run)
    click.echo(f"{repaired} dialog(s) {'need repair' if dry_run else 'repaired'}")


if __name__ == "__main__":
    repair()
