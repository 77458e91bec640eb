"""Approval transition tracking.

The tracker is the only place that decides whether a new review changed a
PR's outcome. Stores just persist what they are given, so the behaviour is
identical whichever backend is active.

Two related but different notions live here:
- an *approval transition* is recorded whenever two consecutive reviews of a
  PR have different outcomes (MERGE -> DONT_MERGE, DONT_MERGE ->
  MERGE_AFTER_CHANGES, ...);
- the *approval change count* of a ReviewHistory only counts crossings of the
  approved / not-approved boundary, where approved means exactly MERGE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from reviewtrail_store.errors import RecordNotFound, StorageError
from reviewtrail_store.models import (
    ApprovalTransition,
    ReviewHistory,
    ReviewSnapshot,
    ReviewState,
    TriggerType,
    parse_timestamp,
)

if TYPE_CHECKING:
    from reviewtrail_store.base import BaseStore
    from reviewtrail_store.models import ReviewEffectiveness

logger = logging.getLogger(__name__)


@dataclass
class RecordResult:
    saved: bool
    transition: ApprovalTransition | None = None


def is_approved(state: ReviewState) -> bool:
    return state == ReviewState.MERGE


def count_approval_changes(snapshots: list[ReviewSnapshot]) -> int:
    """Count how often consecutive snapshots cross the approved/not-approved boundary.

    DONT_MERGE -> MERGE_AFTER_CHANGES is not a change: both are "not approved".
    """
    if len(snapshots) < 2:
        return 0

    changes = 0
    approved = is_approved(snapshots[0].review_state)
    for snapshot in snapshots[1:]:
        current = is_approved(snapshot.review_state)
        if current != approved:
            changes += 1
            approved = current
    return changes


def classify_trigger(snapshot: ReviewSnapshot, new_commit: bool = False) -> TriggerType:
    if snapshot.mentioned:
        return TriggerType.MENTION
    if new_commit:
        return TriggerType.COMMIT
    return TriggerType.REVIEW


def detect_transition(
    previous: ReviewSnapshot, current: ReviewSnapshot, trigger: TriggerType = TriggerType.REVIEW
) -> ApprovalTransition | None:
    """Return the transition between two consecutive reviews of a PR, or None if the outcome is unchanged."""
    if previous.review_state == current.review_state:
        return None
    return ApprovalTransition(
        timestamp=current.timestamp,
        repository=current.repository,
        pr_number=current.pr_number,
        from_state=previous.review_state,
        to_state=current.review_state,
        trigger=trigger,
    )


def build_review_history(snapshots: list[ReviewSnapshot]) -> ReviewHistory | None:
    """Summarise a PR's snapshots. Returns None when there are none."""
    if not snapshots:
        return None

    unique: dict[tuple, ReviewSnapshot] = {}
    for snapshot in snapshots:
        unique.setdefault(snapshot.key, snapshot)
    ordered = sorted(unique.values(), key=lambda s: parse_timestamp(s.timestamp))

    first, last = ordered[0], ordered[-1]
    return ReviewHistory(
        repository=first.repository,
        pr_number=first.pr_number,
        pr_title=first.pr_title,
        pr_author=first.pr_author,
        first_review_at=first.timestamp,
        last_review_at=last.timestamp,
        snapshots=ordered,
        approval_changes=count_approval_changes(ordered),
        mention_count=sum(1 for s in ordered if s.mentioned),
    )


def _previous_review(history: list[ReviewSnapshot], snapshot: ReviewSnapshot) -> ReviewSnapshot | None:
    current = parse_timestamp(snapshot.timestamp)
    earlier = [s for s in history if parse_timestamp(s.timestamp) < current]
    return earlier[-1] if earlier else None


def record_review(
    store: BaseStore, repository: str, snapshot: ReviewSnapshot, new_commit: bool = False
) -> RecordResult:
    """Persist a new snapshot and, if its outcome differs from the previous review, the transition.

    Both writes share one store transaction. Failures are logged and never
    propagate into the review pipeline. A failed snapshot write is reported as
    ``saved=False``. If only the transition write fails, a transactional store
    rolls the snapshot back too (``saved=False``); any other store keeps the
    snapshot, so the result is ``saved=True`` with no transition.
    """
    transition = None
    try:
        previous = _previous_review(store.get_review_history(repository, snapshot.pr_number), snapshot)
        if previous is not None:
            transition = detect_transition(previous, snapshot, classify_trigger(snapshot, new_commit))
            if transition is not None:
                transition.repository = repository

        with store.transaction():
            saved = store.save_review(repository, snapshot)
            if saved and transition is not None:
                try:
                    store.save_approval_transition(transition)
                except StorageError as e:
                    if store.transactional:
                        raise
                    logger.warning(
                        "Recorded review for PR #%s but not its approval transition: %s", snapshot.pr_number, e
                    )
                    transition = None
    except Exception as e:
        logger.warning("Failed to record review for PR #%s: %s", snapshot.pr_number, e)
        return RecordResult(saved=False)

    if not saved:
        return RecordResult(saved=False)
    if transition is not None:
        logger.info(
            "Approval state changed for PR #%s: %s -> %s (%s)",
            snapshot.pr_number,
            transition.from_state.value,
            transition.to_state.value,
            transition.trigger.value,
        )
    return RecordResult(saved=True, transition=transition)


def annotate_effectiveness(
    store: BaseStore, repository: str, pr_number: int, timestamp: str, effectiveness: ReviewEffectiveness
) -> bool:
    """Attach developer feedback to a stored review. Returns False if it could not be stored."""
    try:
        store.update_effectiveness(repository, pr_number, timestamp, effectiveness)
    except RecordNotFound:
        logger.info("No stored review of PR #%s at %s to annotate", pr_number, timestamp)
        return False
    except Exception as e:
        logger.warning("Failed to update review effectiveness: %s", e)
        return False
    return True
