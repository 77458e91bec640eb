"""stats command — aggregate patterns across review history."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from reviewtrail_store.factory import describe_store

console = Console()


@click.command("stats")
@click.option("--repo", required=True, help="Repository (owner/name).")
@click.pass_context
def stats_cmd(ctx, repo: str):
    """Show aggregated review statistics for a repository.

    Reports how many reviews are stored, the approval rate, average
    processing time and issue count, and how review outcomes are distributed.
    """
    store = ctx.obj["store"]

    stats = store.get_stats(repo)
    if not stats.total_reviews:
        console.print("[yellow]No review records found for this repository.[/yellow]")
        return
    insights = store.get_review_insights(repo)

    # --- Summary ---
    console.print(f"\n[bold]Review stats for [cyan]{repo}[/cyan][/bold]")
    console.print(f"  Storage:          {describe_store(store)}")
    console.print(f"  Total reviews:    {stats.total_reviews}")
    console.print(f"  Oldest review:    {stats.oldest_review}")
    console.print(f"  Newest review:    {stats.newest_review}")
    console.print(f"  Approval rate:    {stats.approval_rate * 100:.1f}%")
    console.print(f"  Avg processing:   {insights.average_processing_time}s")
    console.print(f"  Avg issues found: {insights.average_issues_found}")
    if insights.effectiveness_rate:
        console.print(f"  Effectiveness:    {insights.effectiveness_rate * 100:.0f}%")

    # --- State breakdown ---
    if insights.state_breakdown:
        table = Table(title="Review Outcomes", show_header=True)
        table.add_column("State", style="bold")
        table.add_column("Count", justify="right")
        table.add_column("% of total", justify="right")
        for state, count in sorted(insights.state_breakdown.items(), key=lambda kv: kv[1], reverse=True):
            table.add_row(state, str(count), f"{count / insights.total_reviews * 100:.1f}%")
        console.print(table)
