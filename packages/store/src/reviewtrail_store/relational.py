"""RelationalStore — review history in a server database (PostgreSQL) via SQLAlchemy.

Two connection strings, as handed out by hosted Postgres providers:
- ``pooled_url``: the connection-pooler endpoint (PgBouncer). Every query
  goes through it. The engine keeps no client-side pool of its own
  (NullPool) because each CI job is a short-lived process.
- ``direct_url``: a direct connection, used only for schema creation which
  poolers in transaction mode cannot run. Defaults to ``pooled_url``.

The schema is fully typed and normalized (no JSON blobs) so StorageStats and
ReviewInsights are computed with server-side aggregates.

This backend is storage only. Approval transitions are detected by the
caller (reviewtrail_core.tracker), exactly as for every other backend.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    case,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from reviewtrail_store.base import BaseStore
from reviewtrail_store.errors import RecordNotFound, StorageError, StorageUnavailable
from reviewtrail_store.models import (
    ApprovalTransition,
    IssueCounts,
    ReviewEffectiveness,
    ReviewInsights,
    ReviewMetrics,
    ReviewSnapshot,
    ReviewState,
    StorageStats,
    TriggerType,
    normalize_timestamp,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

review_snapshots = Table(
    "review_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("timestamp", String(64), nullable=False),
    Column("repository", String(255), nullable=False),
    Column("pr_number", Integer, nullable=False),
    Column("pr_title", Text, nullable=False),
    Column("pr_author", String(255), nullable=False),
    Column("files_changed", Integer, nullable=False, default=0),
    Column("review_state", String(32), nullable=False),
    Column("review_text", Text, nullable=False),
    Column("processing_time", Float, nullable=False, default=0),
    Column("issues_high", Integer, nullable=False, default=0),
    Column("issues_medium", Integer, nullable=False, default=0),
    Column("issues_low", Integer, nullable=False, default=0),
    Column("rules_applied", Integer, nullable=False, default=0),
    Column("patterns_detected", Integer, nullable=False, default=0),
    Column("mentioned", Boolean, nullable=False, default=False),
    Column("comment_id", Integer, nullable=True),
    Column("implemented_suggestions", Integer, nullable=True),
    Column("total_suggestions", Integer, nullable=True),
    Column("developer_feedback", String(16), nullable=True),
    Column("follow_up_required", Boolean, nullable=True),
    UniqueConstraint("repository", "pr_number", "timestamp", name="uq_review_identity"),
    Index("idx_review_repo_pr", "repository", "pr_number"),
    Index("idx_review_timestamp", "timestamp"),
)

approval_transitions = Table(
    "approval_transitions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("timestamp", String(64), nullable=False),
    Column("repository", String(255), nullable=False),
    Column("pr_number", Integer, nullable=False),
    Column("from_state", String(32), nullable=False),
    Column("to_state", String(32), nullable=False),
    Column("trigger_type", String(16), nullable=False),
    Index("idx_transition_repo_pr", "repository", "pr_number"),
)


def _connect_args(url: str, timeout: float) -> dict:
    if url.startswith("sqlite"):
        return {"timeout": timeout}
    if url.startswith("postgres"):
        return {"connect_timeout": int(timeout)}
    return {}


def _normalize_url(url: str) -> str:
    # Hosted providers hand out postgres:// which SQLAlchemy no longer accepts.
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://") :]
    return url


class RelationalStore(BaseStore):
    """Stores review history in a relational database with unlimited retention."""

    transactional = True

    def __init__(self, pooled_url: str, direct_url: str | None = None, timeout: float = 30.0):
        self._pooled_url = _normalize_url(pooled_url)
        self._direct_url = _normalize_url(direct_url or pooled_url)
        self._timeout = timeout
        self._engine: Engine | None = None
        self._conn: Connection | None = None  # open while inside transaction()

    def _create_engine(self, url: str) -> Engine:
        return create_engine(
            url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=_connect_args(url, self._timeout),
        )

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise StorageError("relational storage not initialized")
        return self._engine

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        """Yield the open transaction's connection, or a fresh one committed on exit."""
        if self._conn is not None:
            yield self._conn
            return
        with self._require_engine().begin() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[RelationalStore]:
        """Run a block of writes on one connection and commit them together.

        Any exception rolls the whole block back and is re-raised.
        """
        if self._conn is not None:
            yield self
            return
        try:
            with self._require_engine().begin() as conn:
                self._conn = conn
                try:
                    yield self
                finally:
                    self._conn = None
        except SQLAlchemyError as e:
            raise StorageError(f"relational transaction failed: {e}") from e

    def initialize(self) -> None:
        logger.info("Initializing relational storage")
        try:
            direct = self._create_engine(self._direct_url)
            try:
                metadata.create_all(direct)
            finally:
                direct.dispose()
            if self._engine is None:
                self._engine = self._create_engine(self._pooled_url)
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, ImportError) as e:
            raise StorageUnavailable(f"failed to initialize relational storage: {e}") from e
        logger.info("Relational storage initialized")

    def save_review(self, repository: str, snapshot: ReviewSnapshot) -> bool:
        issues = snapshot.metrics.issues
        eff = snapshot.effectiveness
        values = {
            "timestamp": snapshot.timestamp,
            "repository": repository,
            "pr_number": snapshot.pr_number,
            "pr_title": snapshot.pr_title,
            "pr_author": snapshot.pr_author,
            "files_changed": snapshot.files_changed,
            "review_state": snapshot.review_state.value,
            "review_text": snapshot.review_text,
            "processing_time": snapshot.metrics.processing_time,
            "issues_high": issues.high,
            "issues_medium": issues.medium,
            "issues_low": issues.low,
            "rules_applied": snapshot.metrics.rules_applied,
            "patterns_detected": snapshot.metrics.patterns_detected,
            "mentioned": snapshot.mentioned,
            "comment_id": snapshot.comment_id,
            "implemented_suggestions": eff.implemented_suggestions if eff else None,
            "total_suggestions": eff.total_suggestions if eff else None,
            "developer_feedback": eff.developer_feedback if eff else None,
            "follow_up_required": eff.follow_up_required if eff else None,
        }
        c = review_snapshots.c
        existing = select(c.id).where(
            c.repository == repository, c.pr_number == snapshot.pr_number, c.timestamp == snapshot.timestamp
        )
        try:
            with self._begin() as conn:
                duplicate = conn.execute(existing).first() is not None
                if not duplicate:
                    conn.execute(review_snapshots.insert().values(**values))
        except IntegrityError:
            # Lost a race against another writer inserting the same snapshot.
            duplicate = True
        except SQLAlchemyError as e:
            raise StorageError(f"failed to save review: {e}") from e
        if duplicate:
            logger.debug("Review for PR #%s at %s already stored", snapshot.pr_number, snapshot.timestamp)
            return False
        logger.info("Saved review for PR #%s to relational storage", snapshot.pr_number)
        return True

    def get_review_history(self, repository: str, pr_number: int) -> list[ReviewSnapshot]:
        query = (
            select(review_snapshots)
            .where(review_snapshots.c.repository == repository, review_snapshots.c.pr_number == pr_number)
            .order_by(review_snapshots.c.timestamp, review_snapshots.c.id)
        )
        try:
            with self._require_engine().connect() as conn:
                rows = conn.execute(query).mappings().all()
        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Failed to get PR history: %s", e)
            return []
        return [self._row_to_snapshot(r) for r in rows]

    def save_approval_transition(self, transition: ApprovalTransition) -> None:
        try:
            with self._begin() as conn:
                conn.execute(
                    approval_transitions.insert().values(
                        timestamp=transition.timestamp,
                        repository=transition.repository,
                        pr_number=transition.pr_number,
                        from_state=transition.from_state.value,
                        to_state=transition.to_state.value,
                        trigger_type=transition.trigger.value,
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"failed to record approval transition: {e}") from e
        logger.info("Recorded approval transition: %s -> %s", transition.from_state.value, transition.to_state.value)

    def get_approval_transitions(self, repository: str, pr_number: int) -> list[ApprovalTransition]:
        t = approval_transitions.c
        query = (
            select(approval_transitions)
            .where(t.repository == repository, t.pr_number == pr_number)
            .order_by(t.timestamp, t.id)
        )
        try:
            with self._require_engine().connect() as conn:
                rows = conn.execute(query).mappings().all()
        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Failed to get approval transitions: %s", e)
            return []
        return [
            ApprovalTransition(
                timestamp=r["timestamp"],
                repository=r["repository"],
                pr_number=r["pr_number"],
                from_state=ReviewState.parse(r["from_state"]),
                to_state=ReviewState.parse(r["to_state"]),
                trigger=TriggerType.parse(r["trigger_type"]),
            )
            for r in rows
        ]

    def get_stats(self, repository: str) -> StorageStats:
        c = review_snapshots.c
        query = select(
            func.count().label("total"),
            func.min(c.timestamp).label("oldest"),
            func.max(c.timestamp).label("newest"),
            func.sum(case((c.review_state == ReviewState.MERGE.value, 1), else_=0)).label("approved"),
        ).where(c.repository == repository)
        try:
            with self._require_engine().connect() as conn:
                row = conn.execute(query).mappings().one()
        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Failed to get stats: %s", e)
            return StorageStats()
        total = row["total"] or 0
        if not total:
            return StorageStats()
        return StorageStats(
            total_reviews=total,
            oldest_review=row["oldest"],
            newest_review=row["newest"],
            approval_rate=(row["approved"] or 0) / total,
        )

    def get_all_reviews(self, repository: str, limit: int | None = None) -> list[ReviewSnapshot]:
        c = review_snapshots.c
        query = select(review_snapshots).where(c.repository == repository).order_by(c.timestamp.desc(), c.id.desc())
        if limit is not None:
            query = query.limit(limit)
        try:
            with self._require_engine().connect() as conn:
                rows = conn.execute(query).mappings().all()
        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Failed to load reviews: %s", e)
            return []
        return [self._row_to_snapshot(r) for r in rows]

    def get_review_insights(self, repository: str) -> ReviewInsights:
        c = review_snapshots.c
        averages = select(
            func.count().label("total"),
            func.avg(c.processing_time).label("avg_time"),
            func.avg(c.issues_high + c.issues_medium + c.issues_low).label("avg_issues"),
        ).where(c.repository == repository)
        rated = c.implemented_suggestions.isnot(None) & c.total_suggestions.isnot(None)
        effectiveness = select(
            func.avg(
                c.implemented_suggestions * 1.0 / case((c.total_suggestions > 0, c.total_suggestions), else_=1)
            ).label("rate")
        ).where(c.repository == repository, rated)
        breakdown = (
            select(c.review_state, func.count().label("count"))
            .where(c.repository == repository)
            .group_by(c.review_state)
        )
        try:
            with self._require_engine().connect() as conn:
                row = conn.execute(averages).mappings().one()
                if not row["total"]:
                    return ReviewInsights()
                rate = conn.execute(effectiveness).scalar()
                states = conn.execute(breakdown).all()
        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Failed to generate review insights: %s", e)
            return ReviewInsights()
        return ReviewInsights(
            total_reviews=row["total"],
            average_processing_time=round(float(row["avg_time"] or 0)),
            average_issues_found=round(float(row["avg_issues"] or 0), 1),
            effectiveness_rate=round(float(rate or 0), 2),
            state_breakdown={state: count for state, count in states},
        )

    def update_effectiveness(
        self, repository: str, pr_number: int, timestamp: str, effectiveness: ReviewEffectiveness
    ) -> None:
        timestamp = normalize_timestamp(timestamp)
        c = review_snapshots.c
        statement = (
            review_snapshots.update()
            .where(c.repository == repository, c.pr_number == pr_number, c.timestamp == timestamp)
            .values(
                implemented_suggestions=effectiveness.implemented_suggestions,
                total_suggestions=effectiveness.total_suggestions,
                developer_feedback=effectiveness.developer_feedback,
                follow_up_required=effectiveness.follow_up_required,
            )
        )
        try:
            with self._begin() as conn:
                updated = conn.execute(statement).rowcount
        except SQLAlchemyError as e:
            raise StorageError(f"failed to update review effectiveness: {e}") from e
        if not updated:
            raise RecordNotFound(f"no review of {repository}#{pr_number} at {timestamp}")
        logger.info("Updated effectiveness for %s#%s", repository, pr_number)

    def health_check(self) -> bool:
        if self._engine is None:
            return False
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    @staticmethod
    def _row_to_snapshot(row) -> ReviewSnapshot:
        effectiveness = None
        if row["implemented_suggestions"] is not None and row["total_suggestions"] is not None:
            effectiveness = ReviewEffectiveness(
                implemented_suggestions=row["implemented_suggestions"],
                total_suggestions=row["total_suggestions"],
                developer_feedback=row["developer_feedback"],
                follow_up_required=bool(row["follow_up_required"]),
            )
        return ReviewSnapshot(
            timestamp=row["timestamp"],
            repository=row["repository"],
            pr_number=row["pr_number"],
            pr_title=row["pr_title"],
            pr_author=row["pr_author"],
            files_changed=row["files_changed"],
            review_state=ReviewState.parse(row["review_state"]),
            review_text=row["review_text"],
            metrics=ReviewMetrics(
                processing_time=row["processing_time"],
                issues=IssueCounts(high=row["issues_high"], medium=row["issues_medium"], low=row["issues_low"]),
                rules_applied=row["rules_applied"],
                patterns_detected=row["patterns_detected"],
            ),
            mentioned=bool(row["mentioned"]),
            comment_id=row["comment_id"],
            effectiveness=effectiveness,
        )
