"""Historical review validation.

Mines the stored reviews of a repository before a new review is generated:
which past PRs look like this one, which issues keep coming up, and how often
this author's PRs get approved. The result is fed into the review prompt.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from reviewtrail_store.models import ReviewSnapshot, ReviewState

if TYPE_CHECKING:
    from reviewtrail_store.base import BaseStore

logger = logging.getLogger(__name__)

AUTHOR_WEIGHT = 30
TITLE_WEIGHT = 40
SIMILARITY_THRESHOLD = 20
MAX_SIMILAR_PRS = 5
MAX_COMMON_ISSUES = 10
MIN_WORD_LENGTH = 4  # title words must be longer than 3 characters

BASELINE_RECOMMENDATION = "This is the first review for this repository. Building historical baseline..."

# Keyword -> default priority. Order breaks frequency ties.
ISSUE_VOCABULARY: tuple[tuple[str, str], ...] = (
    ("security", "high"),
    ("vulnerability", "high"),
    ("memory leak", "high"),
    ("performance", "medium"),
    ("test", "medium"),
    ("type error", "medium"),
    ("error handling", "medium"),
    ("documentation", "low"),
)


@dataclass
class CurrentPR:
    """The pull request about to be reviewed."""

    number: int
    title: str
    author: str
    files_changed: list[str] = field(default_factory=list)


@dataclass
class SimilarPR:
    pr_number: int
    pr_title: str
    review_state: ReviewState
    similarity: int


@dataclass
class CommonIssue:
    issue: str
    frequency: int
    priority: str  # "high" | "medium" | "low"


@dataclass
class ApprovalPatterns:
    author_approval_rate: float = 0.0
    repository_approval_rate: float = 0.0
    # Needs timestamps correlated across reviews of the same PR; not computed yet.
    average_time_to_approval: float | None = None


@dataclass
class ValidationInsights:
    similar_prs: list[SimilarPR] = field(default_factory=list)
    common_issues: list[CommonIssue] = field(default_factory=list)
    approval_patterns: ApprovalPatterns = field(default_factory=ApprovalPatterns)
    recommendations: list[str] = field(default_factory=list)


def empty_insights() -> ValidationInsights:
    """Cold start: no history yet."""
    return ValidationInsights(recommendations=[BASELINE_RECOMMENDATION])


def _title_words(title: str) -> set[str]:
    return {w for w in title.lower().split() if len(w) >= MIN_WORD_LENGTH}


def similarity_score(review: ReviewSnapshot, current: CurrentPR, jitter: float = 0.0) -> float:
    """Heuristic similarity of a past review to the current PR, before rounding.

    Same author is worth AUTHOR_WEIGHT; the share of the current title's words
    (longer than 3 characters) that also appear in the past title is worth up
    to TITLE_WEIGHT. ``jitter`` is added as-is.
    """
    score = 0.0
    if review.pr_author == current.author:
        score += AUTHOR_WEIGHT

    current_words = _title_words(current.title)
    common = current_words & _title_words(review.pr_title)
    score += len(common) / max(len(current_words), 1) * TITLE_WEIGHT
    return score + jitter


def find_similar_prs(
    reviews: list[ReviewSnapshot], current: CurrentPR, rng: random.Random | None = None, jitter: float = 10.0
) -> list[SimilarPR]:
    """Rank past PRs by similarity to the current one.

    ``reviews`` is newest first; each past PR is scored on its latest review
    and the current PR itself is left out.
    """
    rng = rng or random.Random()
    latest: dict[int, ReviewSnapshot] = {}
    for review in reviews:
        if review.pr_number != current.number:
            latest.setdefault(review.pr_number, review)

    scored = []
    for review in latest.values():
        score = round(similarity_score(review, current, rng.uniform(0, jitter) if jitter else 0.0))
        if score >= SIMILARITY_THRESHOLD:
            scored.append(SimilarPR(review.pr_number, review.pr_title, review.review_state, score))

    scored.sort(key=lambda s: s.similarity, reverse=True)
    return scored[:MAX_SIMILAR_PRS]


def identify_common_issues(reviews: list[ReviewSnapshot]) -> list[CommonIssue]:
    """Count review texts mentioning each vocabulary keyword.

    An occurrence counts as high when the keyword is high by default, and a
    keyword is reported as high when more than half of its occurrences are.
    The severity counts of the reviews themselves play no part.
    """
    counts: dict[str, list[int]] = {}  # keyword -> [occurrences, high occurrences]
    for review in reviews:
        text = review.review_text.lower()
        for keyword, priority in ISSUE_VOCABULARY:
            if keyword in text:
                entry = counts.setdefault(keyword, [0, 0])
                entry[0] += 1
                if priority == "high":
                    entry[1] += 1

    defaults = dict(ISSUE_VOCABULARY)
    issues = [
        CommonIssue(
            issue=keyword,
            frequency=total,
            priority="high" if high > total / 2 else defaults[keyword],
        )
        for keyword, (total, high) in counts.items()
    ]
    issues.sort(key=lambda i: i.frequency, reverse=True)
    return issues[:MAX_COMMON_ISSUES]


def analyze_approval_patterns(reviews: list[ReviewSnapshot], current: CurrentPR) -> ApprovalPatterns:
    by_author = [r for r in reviews if r.pr_author == current.author]
    return ApprovalPatterns(
        author_approval_rate=_approval_rate(by_author),
        repository_approval_rate=_approval_rate(reviews),
        average_time_to_approval=None,
    )


def _approval_rate(reviews: list[ReviewSnapshot]) -> float:
    if not reviews:
        return 0.0
    return sum(1 for r in reviews if r.review_state == ReviewState.MERGE) / len(reviews)


def generate_recommendations(
    similar_prs: list[SimilarPR], common_issues: list[CommonIssue], patterns: ApprovalPatterns
) -> list[str]:
    recommendations: list[str] = []

    if similar_prs:
        approved = sum(1 for pr in similar_prs if pr.review_state == ReviewState.MERGE)
        rejected = sum(1 for pr in similar_prs if pr.review_state == ReviewState.DONT_MERGE)
        if rejected > approved:
            recommendations.append("Similar PRs have had approval challenges. Pay extra attention to common patterns.")
        if len(similar_prs) >= 3:
            recommendations.append(
                f"Found {len(similar_prs)} similar PRs in history. Review their feedback for patterns."
            )

    if common_issues:
        top = ", ".join(i.issue for i in common_issues[:3])
        recommendations.append(f"Common issues in this codebase: {top}")
        high = [i.issue for i in common_issues if i.priority == "high"]
        if high:
            recommendations.append(f"High-priority issues frequently found: {', '.join(high)}")

    rate = patterns.author_approval_rate
    if 0 < rate < 0.5:
        recommendations.append(f"Author has {round(rate * 100)}% approval rate. Consider extra scrutiny.")
    elif rate > 0.8:
        recommendations.append(f"Author has strong track record ({round(rate * 100)}% approval rate).")

    return recommendations


class HistoricalValidator:
    """Turns stored review history into insights for the next review.

    ``seed`` makes the similarity jitter reproducible; ``jitter=0`` removes it.
    """

    def __init__(self, history_limit: int = 100, seed: int | None = None, jitter: float = 10.0):
        self.history_limit = history_limit
        self.jitter = jitter
        self._rng = random.Random(seed)

    def validate(self, store: BaseStore, repository: str, current: CurrentPR) -> ValidationInsights:
        logger.info("Analyzing historical review data for %s", repository)
        try:
            reviews = store.get_all_reviews(repository, self.history_limit)
        except Exception as e:
            logger.warning("Failed to validate against history: %s", e)
            return empty_insights()

        if not reviews:
            logger.info("No historical data available for validation")
            return empty_insights()
        logger.info("Found %d historical reviews to analyze", len(reviews))

        similar = find_similar_prs(reviews, current, self._rng, self.jitter)
        issues = identify_common_issues(reviews)
        patterns = analyze_approval_patterns(reviews, current)
        return ValidationInsights(
            similar_prs=similar,
            common_issues=issues,
            approval_patterns=patterns,
            recommendations=generate_recommendations(similar, issues, patterns),
        )
