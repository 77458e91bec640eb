"""record command — persist a review snapshot produced by the review pipeline."""

from __future__ import annotations

import json

import click
from rich.console import Console

from reviewtrail_core.report import format_state
from reviewtrail_core.tracker import record_review
from reviewtrail_store.file import snapshot_from_dict
from reviewtrail_store.models import utc_now

console = Console()


@click.command("record")
@click.argument("snapshot_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--repo", default=None, help="Repository (owner/name). Defaults to the snapshot's own.")
@click.option("--new-commit", is_flag=True, help="The review was triggered by a push to the PR.")
@click.pass_context
def record_cmd(ctx, snapshot_file: str, repo: str | None, new_commit: bool):
    """Record one review snapshot read from a JSON file.

    The file holds a single snapshot in the same shape as the entries of
    review-data.json. A missing timestamp is set to now.
    """
    try:
        with open(snapshot_file, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise click.BadParameter(str(e), param_hint="SNAPSHOT_FILE")
    if not isinstance(raw, dict):
        raise click.BadParameter("expected a JSON object", param_hint="SNAPSHOT_FILE")

    repository = repo or raw.get("repository")
    if not repository:
        raise click.UsageError("No repository given: pass --repo or set 'repository' in the snapshot.")
    raw.setdefault("timestamp", utc_now())

    try:
        snapshot = snapshot_from_dict(raw, repository)
    except (KeyError, TypeError, ValueError) as e:
        raise click.BadParameter(f"invalid snapshot: {e}", param_hint="SNAPSHOT_FILE")

    result = record_review(ctx.obj["store"], repository, snapshot, new_commit=new_commit)
    if not result.saved:
        console.print(
            f"[yellow]Review of PR #{snapshot.pr_number} was not recorded (duplicate or storage error).[/yellow]"
        )
        return

    console.print(f"[green]Recorded review of PR #{snapshot.pr_number}: {format_state(snapshot.review_state)}[/green]")
    if result.transition is not None:
        t = result.transition
        console.print(
            f"Approval changed: {format_state(t.from_state)} → {format_state(t.to_state)} "
            f"[dim]({t.trigger.value.lower()})[/dim]"
        )
