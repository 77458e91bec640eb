"""In-memory store — nothing survives the process.

Used as the substitute store in tests and as the factory's last resort when
not even the file backend can be initialized. Holding an in-memory store
rather than None lets callers always go through the same interface.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

from reviewtrail_store.base import BaseStore
from reviewtrail_store.errors import RecordNotFound
from reviewtrail_store.models import StorageStats, normalize_timestamp, parse_timestamp

if TYPE_CHECKING:
    from reviewtrail_store.models import ApprovalTransition, ReviewEffectiveness, ReviewSnapshot


class MemoryStore(BaseStore):
    """Keeps snapshots and transitions in per-repository lists, unbounded."""

    def __init__(self):
        self._reviews: dict[str, list[ReviewSnapshot]] = {}
        self._transitions: dict[str, list[ApprovalTransition]] = {}

    def initialize(self) -> None:
        pass  # nothing to prepare

    def save_review(self, repository: str, snapshot: ReviewSnapshot) -> bool:
        reviews = self._reviews.setdefault(repository, [])
        if any(r.pr_number == snapshot.pr_number and r.timestamp == snapshot.timestamp for r in reviews):
            return False
        stored = copy.deepcopy(snapshot)
        stored.repository = repository
        reviews.append(stored)
        reviews.sort(key=lambda r: parse_timestamp(r.timestamp))
        return True

    def get_review_history(self, repository: str, pr_number: int) -> list[ReviewSnapshot]:
        return [copy.deepcopy(r) for r in self._reviews.get(repository, []) if r.pr_number == pr_number]

    def save_approval_transition(self, transition: ApprovalTransition) -> None:
        transitions = self._transitions.setdefault(transition.repository, [])
        transitions.append(copy.deepcopy(transition))
        transitions.sort(key=lambda t: parse_timestamp(t.timestamp))

    def get_approval_transitions(self, repository: str, pr_number: int) -> list[ApprovalTransition]:
        return [copy.deepcopy(t) for t in self._transitions.get(repository, []) if t.pr_number == pr_number]

    def get_stats(self, repository: str) -> StorageStats:
        reviews = self._reviews.get(repository, [])
        if not reviews:
            return StorageStats()
        return StorageStats(
            total_reviews=len(reviews),
            oldest_review=reviews[0].timestamp,
            newest_review=reviews[-1].timestamp,
            approval_rate=sum(1 for r in reviews if r.approved) / len(reviews),
        )

    def get_all_reviews(self, repository: str, limit: int | None = None) -> list[ReviewSnapshot]:
        reviews = [copy.deepcopy(r) for r in reversed(self._reviews.get(repository, []))]
        return reviews[:limit] if limit is not None else reviews

    def update_effectiveness(
        self, repository: str, pr_number: int, timestamp: str, effectiveness: ReviewEffectiveness
    ) -> None:
        timestamp = normalize_timestamp(timestamp)
        for review in self._reviews.get(repository, []):
            if review.pr_number == pr_number and review.timestamp == timestamp:
                review.effectiveness = copy.deepcopy(effectiveness)
                return
        raise RecordNotFound(f"no review of {repository}#{pr_number} at {timestamp}")

    def health_check(self) -> bool:
        return True
