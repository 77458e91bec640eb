"""Markdown rendering of review history and validation insights."""

from __future__ import annotations

from typing import TYPE_CHECKING

from reviewtrail_store.models import ReviewState

if TYPE_CHECKING:
    from reviewtrail_core.validator import ValidationInsights
    from reviewtrail_store.models import ReviewHistory

_STATE_LABEL = {
    ReviewState.MERGE: "✅ MERGE",
    ReviewState.DONT_MERGE: "❌ DON'T MERGE",
    ReviewState.MERGE_AFTER_CHANGES: "🔄 MERGE AFTER CHANGES",
    ReviewState.UNKNOWN: "❓ UNKNOWN",
}
_PRIORITY_MARK = {"high": "🔴", "medium": "🟡", "low": "🟢"}


def format_state(state: ReviewState) -> str:
    return _STATE_LABEL.get(state, _STATE_LABEL[ReviewState.UNKNOWN])


def format_validation_insights(insights: ValidationInsights) -> str:
    """Render insights as a "Historical Context" block to append to a prompt or comment.

    Returns an empty string when there is nothing to say.
    """
    if not insights.recommendations:
        return ""

    lines = ["", "---", "", "## 📊 Historical Context", "", "### Key Insights", ""]
    lines.extend(insights.recommendations)
    lines.append("")

    if insights.similar_prs:
        lines += ["### Similar PRs", ""]
        for pr in insights.similar_prs[:3]:
            mark = format_state(pr.review_state).split(" ", 1)[0]
            lines.append(f"- {mark} PR #{pr.pr_number}: {pr.pr_title} ({pr.similarity}% similar)")
        lines.append("")

    if insights.common_issues:
        lines += ["### Common Issues in This Codebase", ""]
        for issue in insights.common_issues[:5]:
            mark = _PRIORITY_MARK.get(issue.priority, "🟡")
            lines.append(f"- {mark} **{issue.issue}** (found in {issue.frequency} reviews)")
        lines.append("")

    lines.append("*This analysis is based on historical review data stored in your repository.*")
    return "\n".join(lines) + "\n"


def generate_review_summary_markdown(history: ReviewHistory) -> str:
    """Render the full review log of one PR."""
    snapshots = history.snapshots
    plural = "" if history.approval_changes == 1 else "s"
    lines = [
        f"# PR #{history.pr_number}: {history.pr_title}",
        "",
        f"**Author**: @{history.pr_author}",
        f"**Files Changed**: {snapshots[0].files_changed if snapshots else 0}",
        f"**First Review**: {history.first_review_at}",
        f"**Last Review**: {history.last_review_at}",
        "",
        "## Approval History",
        f"- 📊 Total Reviews: {len(snapshots)}",
        f"- 🔄 Approval Changes: {history.approval_changes} time{plural}",
        f"- 💬 Mentions: {history.mention_count}",
        "",
        "## Review Log",
        "",
    ]

    for number, snapshot in enumerate(snapshots, start=1):
        lines.append(f"### {snapshot.timestamp} - Review #{number}")
        lines.append(f"**State**: {format_state(snapshot.review_state)}")
        if snapshot.mentioned:
            lines.append("**💬 Mentioned** - Developer requested additional feedback")

        issues = snapshot.metrics.issues
        if issues.total:
            severities = (("high", issues.high), ("medium", issues.medium), ("low", issues.low))
            parts = [f"{count} {label}" for label, count in severities if count]
            lines.append(f"**Issues Found**: {issues.total} ({', '.join(parts)})")

        lines += [
            f"**Processing Time**: {snapshot.metrics.processing_time}s",
            f"**Rules Applied**: {snapshot.metrics.rules_applied}",
            f"**Patterns Detected**: {snapshot.metrics.patterns_detected}",
            "",
            "<details>",
            "<summary>📝 Full Review Details</summary>",
            "",
            snapshot.review_text,
            "</details>",
            "",
            "---",
            "",
        ]

    return "\n".join(lines)
