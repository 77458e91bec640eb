"""migrate command — move a JSON file store into the configured SQL store."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from reviewtrail_store.errors import MigrationPartialFailure
from reviewtrail_store.factory import describe_store
from reviewtrail_store.file import DATA_FILENAME, FileStore
from reviewtrail_store.memory import MemoryStore
from reviewtrail_store.migration import migrate_file_store

console = Console()


@click.command("migrate")
@click.option(
    "--source",
    type=click.Path(dir_okay=False),
    default=None,
    help="JSON document to import. Defaults to review-data.json in the storage directory.",
)
@click.option("--strict", is_flag=True, help="Exit non-zero if any record fails to migrate.")
@click.pass_context
def migrate_cmd(ctx, source: str | None, strict: bool):
    """Import a review-data.json file store into the SQL store.

    The configured store must be sqlite or relational. Selecting one of them
    already migrates the default document automatically; use --source to
    import a document from somewhere else.
    """
    store = ctx.obj["store"]
    if isinstance(store, (FileStore, MemoryStore)):
        raise click.UsageError(
            "Migration needs a SQL store. Set 'store: sqlite' or 'store: relational' in .reviewtrail.yml, "
            "or pass --store."
        )

    data_file = Path(source) if source else Path(ctx.obj["config"].get("storage_dir") or ".contributor") / DATA_FILENAME
    if not data_file.exists():
        console.print(f"[yellow]No file storage found at {data_file}, nothing to migrate.[/yellow]")
        return

    try:
        report = migrate_file_store(store, data_file, strict=strict)
    except MigrationPartialFailure as e:
        raise click.ClickException(str(e))

    console.print(f"[green]Migrated {report.migrated} review(s) into {describe_store(store)}[/green]")
    if report.skipped:
        console.print(f"  Skipped {report.skipped} review(s) already present")
    if report.transitions_migrated:
        console.print(f"  Migrated {report.transitions_migrated} approval transition(s)")
    if report.transitions_skipped:
        console.print(f"  Skipped {report.transitions_skipped} approval transition(s) already present")
    if report.failed:
        console.print(f"[yellow]  {report.failed} record(s) failed, see log for details[/yellow]")
    if report.backup_path:
        console.print(f"  Original kept as {report.backup_path}")
