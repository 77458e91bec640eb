"""Abstract store interface.

Every storage backend (JSON file, SQLite/libSQL, relational server, in-memory)
implements this interface. Callers depend on BaseStore, not on a concrete
backend, so backends are swappable without touching the tracker, the
validator or the CLI.

BaseStore holds no state. The handful of concrete methods below are default
behaviours expressed purely in terms of the abstract ones.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from reviewtrail_store.models import ReviewInsights

if TYPE_CHECKING:
    from reviewtrail_store.models import (
        ApprovalTransition,
        ReviewEffectiveness,
        ReviewSnapshot,
        StorageStats,
    )


class BaseStore(ABC):
    """Pluggable persistence layer for review history.

    Read methods never raise: a storage fault is logged and resolved to an
    empty result. Write methods raise a StorageError so the caller decides
    whether the failure matters (it usually does not).
    """

    # True when transaction() rolls back every write of a failed block.
    transactional = False

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the backing store. Idempotent.

        Raises StorageUnavailable if the target is unreachable or unwritable.
        """

    @abstractmethod
    def save_review(self, repository: str, snapshot: ReviewSnapshot) -> bool:
        """Append a snapshot. Returns False if an identical (repository, PR, timestamp) already exists."""

    @abstractmethod
    def get_review_history(self, repository: str, pr_number: int) -> list[ReviewSnapshot]:
        """Return every snapshot of a PR, oldest first. Empty list if none."""

    @abstractmethod
    def save_approval_transition(self, transition: ApprovalTransition) -> None:
        """Append an approval transition."""

    @abstractmethod
    def get_approval_transitions(self, repository: str, pr_number: int) -> list[ApprovalTransition]:
        """Return the transitions of a PR, oldest first."""

    @abstractmethod
    def get_stats(self, repository: str) -> StorageStats:
        """Aggregate the reviews currently persisted for a repository."""

    @abstractmethod
    def get_all_reviews(self, repository: str, limit: int | None = None) -> list[ReviewSnapshot]:
        """Return the reviews of a repository, newest first, truncated to ``limit``."""

    @abstractmethod
    def update_effectiveness(
        self, repository: str, pr_number: int, timestamp: str, effectiveness: ReviewEffectiveness
    ) -> None:
        """Attach feedback to an existing snapshot. Raises RecordNotFound if there is none."""

    @abstractmethod
    def health_check(self) -> bool:
        """Cheap liveness check. Never raises."""

    def cleanup(self, repository: str, keep_last: int) -> int:
        """Evict all but the ``keep_last`` most recent reviews; returns how many were removed.

        Only backends with a hard retention limit do anything here.
        """
        return 0

    def get_review_insights(self, repository: str) -> ReviewInsights:
        """Aggregate analytics over every stored review of a repository."""
        reviews = self.get_all_reviews(repository)
        if not reviews:
            return ReviewInsights()

        total = len(reviews)
        rated = [r.effectiveness.rate for r in reviews if r.effectiveness is not None]
        breakdown = Counter(r.review_state.value for r in reviews)
        return ReviewInsights(
            total_reviews=total,
            average_processing_time=round(sum(r.metrics.processing_time for r in reviews) / total),
            average_issues_found=round(sum(r.metrics.issues.total for r in reviews) / total, 1),
            effectiveness_rate=round(sum(rated) / len(rated), 2) if rated else 0.0,
            state_breakdown=dict(breakdown),
        )

    @contextmanager
    def transaction(self) -> Iterator[BaseStore]:
        """Group several writes.

        Backends without transactions just run the block, so a failure part way
        through leaves the earlier writes in place.
        """
        yield self

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Default is a no-op so callers can always call close() safely.
        """
