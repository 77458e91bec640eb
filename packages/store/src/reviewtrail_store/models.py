"""Review history data models.

Decoupled from reviewtrail_core so the store layer can be used independently
and the tracker/validator only see plain values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ReviewState(str, Enum):
    """Outcome recommended by an AI review."""

    MERGE = "MERGE"
    DONT_MERGE = "DONT_MERGE"
    MERGE_AFTER_CHANGES = "MERGE_AFTER_CHANGES"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> ReviewState:
        """Map a stored value back to a state; anything unrecognised is UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class TriggerType(str, Enum):
    """What caused the review that produced an approval transition."""

    REVIEW = "REVIEW"
    MENTION = "MENTION"
    COMMIT = "COMMIT"

    @classmethod
    def parse(cls, value: str | None) -> TriggerType:
        try:
            return cls(value)
        except ValueError:
            return cls.REVIEW


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z``. Naive values are taken to be UTC.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: str) -> str:
    """Rewrite an ISO-8601 timestamp as UTC with a ``+00:00`` offset.

    Stored timestamps all share this form so that text order is time order.
    """
    return parse_timestamp(value).isoformat()


@dataclass
class IssueCounts:
    high: int = 0
    medium: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.high + self.medium + self.low


@dataclass
class ReviewMetrics:
    processing_time: float = 0  # seconds
    issues: IssueCounts = field(default_factory=IssueCounts)
    rules_applied: int = 0
    patterns_detected: int = 0


@dataclass
class ReviewEffectiveness:
    """Feedback collected after a review was posted."""

    implemented_suggestions: int
    total_suggestions: int
    developer_feedback: str | None = None  # "positive" | "negative" | "neutral"
    follow_up_required: bool = False

    @property
    def rate(self) -> float:
        return self.implemented_suggestions / max(self.total_suggestions, 1)


@dataclass
class ReviewSnapshot:
    """One AI review event for a pull request.

    Built by the review pipeline once per generated review. Only the
    ``effectiveness`` annotation may be filled in afterwards.
    """

    repository: str
    pr_number: int
    pr_title: str
    pr_author: str
    files_changed: int
    review_state: ReviewState
    review_text: str
    metrics: ReviewMetrics = field(default_factory=ReviewMetrics)
    mentioned: bool = False
    comment_id: int | None = None
    timestamp: str = field(default_factory=utc_now)  # ISO-8601 UTC
    effectiveness: ReviewEffectiveness | None = None

    def __post_init__(self):
        self.timestamp = normalize_timestamp(self.timestamp)

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.repository, self.pr_number, self.timestamp)

    @property
    def approved(self) -> bool:
        return self.review_state == ReviewState.MERGE


@dataclass
class ApprovalTransition:
    """A change of outcome between two consecutive reviews of the same PR."""

    timestamp: str
    repository: str
    pr_number: int
    from_state: ReviewState
    to_state: ReviewState
    trigger: TriggerType = TriggerType.REVIEW

    def __post_init__(self):
        self.timestamp = normalize_timestamp(self.timestamp)


@dataclass
class ReviewHistory:
    """Everything known about one PR, derived from its snapshots on demand."""

    repository: str
    pr_number: int
    pr_title: str
    pr_author: str
    first_review_at: str
    last_review_at: str
    snapshots: list[ReviewSnapshot] = field(default_factory=list)
    approval_changes: int = 0
    mention_count: int = 0


@dataclass
class StorageStats:
    total_reviews: int = 0
    oldest_review: str | None = None
    newest_review: str | None = None
    approval_rate: float = 0.0


@dataclass
class ReviewInsights:
    """Aggregate analytics over every stored review of a repository."""

    total_reviews: int = 0
    average_processing_time: float = 0.0
    average_issues_found: float = 0.0
    effectiveness_rate: float = 0.0
    state_breakdown: dict[str, int] = field(default_factory=dict)
