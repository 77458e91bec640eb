"""CLI entry point for reviewtrail.

Commands:
  record    — persist a review snapshot and any approval transition it causes
  history   — display past review records from the configured store
  stats     — aggregate statistics for a repository
  insights  — historical validation for a PR about to be reviewed
  migrate   — move an existing JSON file store into the SQL store
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from reviewtrail_cli.commands.history import history_cmd
from reviewtrail_cli.commands.insights import insights_cmd
from reviewtrail_cli.commands.migrate import migrate_cmd
from reviewtrail_cli.commands.record import record_cmd
from reviewtrail_cli.commands.stats import stats_cmd
from reviewtrail_core.config import load_config
from reviewtrail_store.factory import create_store, describe_store

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # Engine logging is far too chatty even at debug level.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("reviewtrail"),
    prog_name="reviewtrail",
)
@click.option(
    "--config",
    "config_path",
    default=".reviewtrail.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="REVIEWTRAIL_CONFIG",
)
@click.option(
    "--store",
    "store_type",
    type=click.Choice(["file", "sqlite", "relational"]),
    default=None,
    help="Storage backend. Overrides config file.",
)
@click.option("--storage-dir", default=None, help="Directory holding local review data. Overrides config file.")
@click.option("--verbose", "-v", is_flag=True, help="Show storage log messages.")
@click.pass_context
def main(ctx: click.Context, config_path: str, store_type: str | None, storage_dir: str | None, verbose: bool):
    """Review history and historical validation for AI code reviews."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path, cli_overrides={"store": store_type, "storage_dir": storage_dir})
    except (OSError, ValueError) as e:
        raise click.UsageError(f"Could not load {config_path}: {e}")

    store = create_store(config)
    if verbose:
        console.print(f"[dim]Storage: {describe_store(store)}[/dim]")
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(record_cmd)
main.add_command(history_cmd)
main.add_command(stats_cmd)
main.add_command(insights_cmd)
main.add_command(migrate_cmd)
