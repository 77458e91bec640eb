"""insights command — historical validation for a PR about to be reviewed."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from reviewtrail_core.report import format_validation_insights
from reviewtrail_core.validator import CurrentPR, HistoricalValidator

console = Console()


@click.command("insights")
@click.option("--repo", required=True, help="Repository (owner/name).")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--title", required=True, help="Pull request title.")
@click.option("--author", required=True, help="Pull request author login.")
@click.option("--file", "files", multiple=True, help="Changed file path (repeatable).")
@click.option("--seed", type=int, default=None, help="Seed for the similarity jitter. Overrides config file.")
@click.option("--markdown", "as_markdown", is_flag=True, help="Print the Historical Context block as raw markdown.")
@click.pass_context
def insights_cmd(
    ctx, repo: str, pr_number: int, title: str, author: str, files: tuple, seed: int | None, as_markdown: bool
):
    """Compare a PR against the stored review history of its repository.

    Prints similar past PRs, recurring issues and the author's approval
    record, the same context that is fed into the review prompt.
    """
    config = ctx.obj["config"]
    validator = HistoricalValidator(
        history_limit=int(config.get("history_limit") or 100),
        seed=seed if seed is not None else config.get("similarity_seed"),
    )
    current = CurrentPR(number=pr_number, title=title, author=author, files_changed=list(files))
    insights = validator.validate(ctx.obj["store"], repo, current)

    if as_markdown:
        click.echo(format_validation_insights(insights))
        return

    console.print(f"\n[bold]Historical context for [cyan]{repo}[/cyan] PR #{pr_number}[/bold]")
    for recommendation in insights.recommendations:
        console.print(f"  • {recommendation}")

    if insights.similar_prs:
        table = Table(title="Similar PRs", show_header=True, header_style="bold cyan")
        table.add_column("PR", style="bold", width=6)
        table.add_column("Title", max_width=40)
        table.add_column("State", width=20)
        table.add_column("Similarity", justify="right")
        for pr in insights.similar_prs:
            table.add_row(f"#{pr.pr_number}", pr.pr_title[:40], pr.review_state.value, f"{pr.similarity}%")
        console.print(table)

    if insights.common_issues:
        table = Table(title="Common Issues", show_header=True)
        table.add_column("Issue")
        table.add_column("Reviews", justify="right")
        table.add_column("Priority")
        for issue in insights.common_issues:
            table.add_row(issue.issue, str(issue.frequency), issue.priority)
        console.print(table)

    patterns = insights.approval_patterns
    console.print(f"  Author approval rate:     {patterns.author_approval_rate * 100:.0f}%")
    console.print(f"  Repository approval rate: {patterns.repository_approval_rate * 100:.0f}%")
