"""history command — display past review records from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from reviewtrail_core.report import generate_review_summary_markdown
from reviewtrail_core.tracker import build_review_history
from reviewtrail_store.models import ReviewState

console = Console()

_STATE_STYLE = {
    ReviewState.MERGE: "green",
    ReviewState.MERGE_AFTER_CHANGES: "yellow",
    ReviewState.DONT_MERGE: "red",
}


@click.command("history")
@click.option("--repo", required=True, help="Repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Show the full review log of one PR.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.option("--markdown", "as_markdown", is_flag=True, help="Print the PR review log as raw markdown (needs --pr).")
@click.pass_context
def history_cmd(ctx, repo: str, pr_number: int | None, limit: int, as_markdown: bool):
    """Show past AI review records for a repository.

    Without --pr, lists the most recent reviews across all PRs. With --pr,
    shows that PR's review log and approval transitions.
    """
    store = ctx.obj["store"]

    if pr_number is None:
        if as_markdown:
            raise click.UsageError("--markdown needs --pr.")
        _print_recent(store, repo, limit)
        return

    history = build_review_history(store.get_review_history(repo, pr_number))
    if history is None:
        console.print(f"[yellow]No review records found for PR #{pr_number}.[/yellow]")
        return

    markdown = generate_review_summary_markdown(history)
    if as_markdown:
        click.echo(markdown)
        return

    console.print(Markdown(markdown))
    transitions = store.get_approval_transitions(repo, pr_number)
    if transitions:
        table = Table(title="Approval Transitions", show_header=True, header_style="bold cyan")
        table.add_column("When", width=20)
        table.add_column("From")
        table.add_column("To")
        table.add_column("Trigger")
        for t in transitions:
            table.add_row(
                t.timestamp[:19].replace("T", " "),
                _styled(t.from_state),
                _styled(t.to_state),
                t.trigger.value,
            )
        console.print(table)


def _print_recent(store, repo: str, limit: int) -> None:
    records = store.get_all_reviews(repo, limit)
    if not records:
        console.print("[yellow]No review records found.[/yellow]")
        return

    table = Table(title=f"Review History — {repo}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Title", max_width=40)
    table.add_column("Author", max_width=16)
    table.add_column("State", width=20)
    table.add_column("Issues", justify="right", width=6)
    table.add_column("Reviewed At", width=20)

    for r in records:
        table.add_row(
            f"#{r.pr_number}",
            r.pr_title[:40] if r.pr_title else "",
            r.pr_author,
            _styled(r.review_state),
            str(r.metrics.issues.total),
            r.timestamp[:19].replace("T", " "),
        )

    console.print(table)


def _styled(state: ReviewState) -> str:
    style = _STATE_STYLE.get(state, "white")
    return f"[{style}]{state.value}[/{style}]"
