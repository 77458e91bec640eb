"""FileStore — zero-infrastructure review history in a single JSON document.

Why a flat JSON file as the default store:
- Works everywhere: no database, no credentials, just a writable directory
  (``.contributor/`` in the checked-out repository).
- Human-readable: the document can be committed alongside the code and
  inspected in a PR diff.
- Bounded: a hard cap of reviews per repository keeps the document small
  enough to load and rewrite on every save.

Data format: ``<storage_dir>/review-data.json`` holds one object keyed by
repository::

    {"owner/repo": {"repository": "owner/repo",
                    "reviews": [...],        # ascending by timestamp
                    "transitions": [...],    # ascending by timestamp
                    "last_updated": "..."}}

Every save loads and rewrites the whole document. There is no cross-process
locking: two pipeline runs writing at the same moment can lose an update.
Writes go through a temporary file and ``os.replace`` so a killed process
never leaves a truncated document behind.
"""

from __future__ import annotations

import bisect
import json
import logging
import os
import tempfile
from pathlib import Path

from reviewtrail_store.base import BaseStore
from reviewtrail_store.errors import RecordNotFound, StorageError, StorageUnavailable
from reviewtrail_store.models import (
    ApprovalTransition,
    IssueCounts,
    ReviewEffectiveness,
    ReviewMetrics,
    ReviewSnapshot,
    ReviewState,
    StorageStats,
    TriggerType,
    normalize_timestamp,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

DATA_FILENAME = "review-data.json"
DEFAULT_MAX_REVIEWS = 100
DEFAULT_MAX_TRANSITIONS = 500


class FileStore(BaseStore):
    """Stores review history in a JSON document with FIFO retention.

    Reviews are capped at ``max_reviews`` per repository and transitions at
    ``max_transitions``; the oldest entries are evicted first, in the same
    write that pushed the array over the cap.
    """

    def __init__(
        self,
        storage_dir: str | os.PathLike = ".contributor",
        max_reviews: int = DEFAULT_MAX_REVIEWS,
        max_transitions: int = DEFAULT_MAX_TRANSITIONS,
    ):
        self._dir = Path(storage_dir)
        self._data_file = self._dir / DATA_FILENAME
        self._max_reviews = max_reviews
        self._max_transitions = max_transitions

    @property
    def data_file(self) -> Path:
        return self._data_file

    @property
    def max_reviews(self) -> int:
        return self._max_reviews

    def initialize(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"cannot create {self._dir}: {e}") from e
        if not os.access(self._dir, os.W_OK):
            raise StorageUnavailable(f"{self._dir} is not writable")
        logger.info("File storage initialized in %s", self._dir)

    def save_review(self, repository: str, snapshot: ReviewSnapshot) -> bool:
        document = self._read_document()
        entry = _entry(document, repository)
        reviews = entry["reviews"]

        record = snapshot_to_dict(snapshot)
        record["repository"] = repository
        try:
            keys = [_sort_key(r) for r in reviews]
        except (KeyError, ValueError) as e:
            raise StorageError(f"invalid timestamp in review data: {e}") from e

        stored_at = _sort_key(record)
        for existing, key in zip(reviews, keys):
            if existing.get("pr_number") == snapshot.pr_number and key == stored_at:
                logger.debug("Review for PR #%s at %s already stored", snapshot.pr_number, snapshot.timestamp)
                return False
        reviews.insert(bisect.bisect_right(keys, stored_at), record)

        removed = _evict_oldest(reviews, self._max_reviews)
        if removed:
            logger.info("Removed %d old review(s) to maintain %d review limit", removed, self._max_reviews)
        entry["last_updated"] = utc_now()
        self._write_document(document)
        logger.info(
            "Saved review for PR #%s (%d/%d reviews stored)", snapshot.pr_number, len(reviews), self._max_reviews
        )
        return True

    def get_review_history(self, repository: str, pr_number: int) -> list[ReviewSnapshot]:
        try:
            reviews = self._load_reviews(repository)
        except StorageError as e:
            logger.warning("Failed to load review history: %s", e)
            return []
        return [r for r in reviews if r.pr_number == pr_number]

    def save_approval_transition(self, transition: ApprovalTransition) -> None:
        document = self._read_document()
        entry = _entry(document, transition.repository)
        transitions = entry["transitions"]
        transitions.append(transition_to_dict(transition))
        try:
            transitions.sort(key=_sort_key)
        except (KeyError, ValueError) as e:
            raise StorageError(f"invalid timestamp in transition data: {e}") from e
        _evict_oldest(transitions, self._max_transitions)
        entry["last_updated"] = utc_now()
        self._write_document(document)

    def get_approval_transitions(self, repository: str, pr_number: int) -> list[ApprovalTransition]:
        try:
            entry = self._read_document().get(repository) or {}
            transitions = [transition_from_dict(t) for t in entry.get("transitions", [])]
        except (StorageError, KeyError, TypeError, ValueError) as e:
            logger.warning("Failed to load approval transitions: %s", e)
            return []
        transitions = [t for t in transitions if t.pr_number == pr_number]
        return sorted(transitions, key=lambda t: parse_timestamp(t.timestamp))

    def get_stats(self, repository: str) -> StorageStats:
        try:
            reviews = self._load_reviews(repository)
        except StorageError as e:
            logger.warning("Failed to get stats: %s", e)
            return StorageStats()
        if not reviews:
            return StorageStats()
        approved = sum(1 for r in reviews if r.approved)
        return StorageStats(
            total_reviews=len(reviews),
            oldest_review=reviews[0].timestamp,
            newest_review=reviews[-1].timestamp,
            approval_rate=approved / len(reviews),
        )

    def get_all_reviews(self, repository: str, limit: int | None = None) -> list[ReviewSnapshot]:
        try:
            reviews = self._load_reviews(repository)
        except StorageError as e:
            logger.warning("Failed to get all reviews: %s", e)
            return []
        reviews.reverse()
        return reviews[:limit] if limit is not None else reviews

    def update_effectiveness(
        self, repository: str, pr_number: int, timestamp: str, effectiveness: ReviewEffectiveness
    ) -> None:
        timestamp = normalize_timestamp(timestamp)
        document = self._read_document()
        entry = document.get(repository) or {}
        for record in entry.get("reviews", []):
            if record.get("pr_number") == pr_number and _stored_timestamp(record) == timestamp:
                record["effectiveness"] = _effectiveness_to_dict(effectiveness)
                entry["last_updated"] = utc_now()
                self._write_document(document)
                return
        raise RecordNotFound(f"no review of {repository}#{pr_number} at {timestamp}")

    def cleanup(self, repository: str, keep_last: int) -> int:
        try:
            document = self._read_document()
            entry = document.get(repository)
            if not entry:
                return 0
            removed = _evict_oldest(entry["reviews"], keep_last)
            if removed:
                entry["last_updated"] = utc_now()
                self._write_document(document)
                logger.info("Cleaned up %d old review(s), kept last %d", removed, keep_last)
            return removed
        except StorageError as e:
            logger.warning("Failed to cleanup reviews: %s", e)
            return 0

    def health_check(self) -> bool:
        return self._dir.is_dir()

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def _load_reviews(self, repository: str) -> list[ReviewSnapshot]:
        """Return a repository's reviews, oldest first."""
        entry = self._read_document().get(repository) or {}
        try:
            reviews = [snapshot_from_dict(r, repository) for r in entry.get("reviews", [])]
            return sorted(reviews, key=lambda r: parse_timestamp(r.timestamp))
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"invalid review data for {repository}: {e}") from e

    def _read_document(self) -> dict:
        """Read the whole JSON document, or {} if it does not exist yet.

        A corrupt document raises rather than reading as empty so that the
        next write does not silently replace it.
        """
        try:
            content = self._data_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"cannot read {self._data_file}: {e}") from e
        try:
            document = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            raise StorageError(f"{self._data_file} is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise StorageError(f"{self._data_file} does not contain a JSON object")
        return document

    def _write_document(self, document: dict) -> None:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self._dir, prefix=".review-data-", suffix=".tmp", delete=False
            ) as tmp:
                tmp_path = tmp.name
                json.dump(document, tmp, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, self._data_file)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(f"failed to write {self._data_file}: {e}") from e


def _entry(document: dict, repository: str) -> dict:
    entry = document.setdefault(repository, {})
    entry.setdefault("repository", repository)
    entry.setdefault("reviews", [])
    entry.setdefault("transitions", [])
    return entry


def _sort_key(record: dict):
    return parse_timestamp(record["timestamp"])


def _stored_timestamp(record: dict) -> str | None:
    try:
        return normalize_timestamp(record["timestamp"])
    except (KeyError, AttributeError, ValueError):
        return None


def _evict_oldest(records: list, cap: int) -> int:
    """Trim an ascending list in place down to its ``cap`` newest entries."""
    excess = len(records) - max(cap, 0)
    if excess <= 0:
        return 0
    del records[:excess]
    return excess


# ----------------------------------------------------------------------
# Serialization (shared with the migration routine)
# ----------------------------------------------------------------------


def snapshot_to_dict(snapshot: ReviewSnapshot) -> dict:
    issues = snapshot.metrics.issues
    return {
        "timestamp": snapshot.timestamp,
        "repository": snapshot.repository,
        "pr_number": snapshot.pr_number,
        "pr_title": snapshot.pr_title,
        "pr_author": snapshot.pr_author,
        "files_changed": snapshot.files_changed,
        "review_state": snapshot.review_state.value,
        "review_text": snapshot.review_text,
        "mentioned": snapshot.mentioned,
        "comment_id": snapshot.comment_id,
        "metrics": {
            "processing_time": snapshot.metrics.processing_time,
            "issues": {"high": issues.high, "medium": issues.medium, "low": issues.low},
            "rules_applied": snapshot.metrics.rules_applied,
            "patterns_detected": snapshot.metrics.patterns_detected,
        },
        "effectiveness": _effectiveness_to_dict(snapshot.effectiveness) if snapshot.effectiveness else None,
    }


def snapshot_from_dict(d: dict, repository: str | None = None) -> ReviewSnapshot:
    metrics = d.get("metrics") or {}
    issues = metrics.get("issues") or {}
    eff = d.get("effectiveness")
    return ReviewSnapshot(
        repository=repository or d.get("repository", ""),
        pr_number=int(d.get("pr_number", 0)),
        pr_title=d.get("pr_title", ""),
        pr_author=d.get("pr_author", ""),
        files_changed=d.get("files_changed", 0),
        review_state=ReviewState.parse(d.get("review_state")),
        review_text=d.get("review_text", ""),
        mentioned=bool(d.get("mentioned", False)),
        comment_id=d.get("comment_id"),
        timestamp=d["timestamp"],
        metrics=ReviewMetrics(
            processing_time=metrics.get("processing_time", 0),
            issues=IssueCounts(
                high=issues.get("high", 0),
                medium=issues.get("medium", 0),
                low=issues.get("low", 0),
            ),
            rules_applied=metrics.get("rules_applied", 0),
            patterns_detected=metrics.get("patterns_detected", 0),
        ),
        effectiveness=ReviewEffectiveness(
            implemented_suggestions=eff.get("implemented_suggestions", 0),
            total_suggestions=eff.get("total_suggestions", 0),
            developer_feedback=eff.get("developer_feedback"),
            follow_up_required=bool(eff.get("follow_up_required", False)),
        )
        if eff
        else None,
    )


def transition_to_dict(transition: ApprovalTransition) -> dict:
    return {
        "timestamp": transition.timestamp,
        "repository": transition.repository,
        "pr_number": transition.pr_number,
        "from_state": transition.from_state.value,
        "to_state": transition.to_state.value,
        "trigger": transition.trigger.value,
    }


def transition_from_dict(d: dict) -> ApprovalTransition:
    return ApprovalTransition(
        timestamp=d["timestamp"],
        repository=d.get("repository", ""),
        pr_number=int(d.get("pr_number", 0)),
        from_state=ReviewState.parse(d.get("from_state")),
        to_state=ReviewState.parse(d.get("to_state")),
        trigger=TriggerType.parse(d.get("trigger")),
    )


def _effectiveness_to_dict(effectiveness: ReviewEffectiveness) -> dict:
    return {
        "implemented_suggestions": effectiveness.implemented_suggestions,
        "total_suggestions": effectiveness.total_suggestions,
        "developer_feedback": effectiveness.developer_feedback,
        "follow_up_required": effectiveness.follow_up_required,
    }
