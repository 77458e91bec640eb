"""SQLiteStore — unlimited review history in a SQLite/libSQL database.

Why SQLite as the upgrade from the JSON file:
- No retention cap: the table grows without rewriting anything.
- Indexed queries on (repository, pr_number) and timestamp instead of a
  full document parse per read.
- Local-first: the database file lives next to the JSON document in
  ``.contributor/``, and can optionally be replicated to a remote libSQL
  (Turso) database for team-wide history.

Modes, chosen from SQLiteConfig:
  local   — ``file:<path>``; the standard library sqlite3 driver.
  synced  — local file plus ``sync_url`` and ``auth_token`` (embedded
            replica); libsql driver, ``sync()`` after every committed write.
  remote  — any ``REMOTE_SCHEMES`` URL (libsql, http(s), ws(s)); libsql driver, no local file.

Schema:
  review_snapshots      — one row per snapshot; severity counts flattened
                          into three integer columns.
  approval_transitions  — append-only transition log.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

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
)

logger = logging.getLogger(__name__)

DB_FILENAME = "reviews.db"

REMOTE_SCHEMES = ("libsql://", "https://", "http://", "wss://", "ws://")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS review_snapshots (
        id                      INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp               TEXT NOT NULL,
        repository              TEXT NOT NULL,
        pr_number               INTEGER NOT NULL,
        pr_title                TEXT NOT NULL,
        pr_author               TEXT NOT NULL,
        files_changed           INTEGER NOT NULL DEFAULT 0,
        review_state            TEXT NOT NULL,
        review_text             TEXT NOT NULL,
        processing_time         REAL NOT NULL DEFAULT 0,
        issues_high             INTEGER NOT NULL DEFAULT 0,
        issues_medium           INTEGER NOT NULL DEFAULT 0,
        issues_low              INTEGER NOT NULL DEFAULT 0,
        rules_applied           INTEGER NOT NULL DEFAULT 0,
        patterns_detected       INTEGER NOT NULL DEFAULT 0,
        mentioned               INTEGER NOT NULL DEFAULT 0,
        comment_id              INTEGER,
        implemented_suggestions INTEGER,
        total_suggestions       INTEGER,
        developer_feedback      TEXT,
        follow_up_required      INTEGER,
        created_at              TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_review_repo_pr ON review_snapshots (repository, pr_number)",
    "CREATE INDEX IF NOT EXISTS idx_review_timestamp ON review_snapshots (timestamp)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_review_identity ON review_snapshots (repository, pr_number, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS approval_transitions (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp   TEXT NOT NULL,
        repository  TEXT NOT NULL,
        pr_number   INTEGER NOT NULL,
        from_state  TEXT NOT NULL,
        to_state    TEXT NOT NULL,
        trigger_type TEXT NOT NULL,
        created_at  TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transition_repo_pr ON approval_transitions (repository, pr_number)",
)

_INSERT_REVIEW = """
    INSERT INTO review_snapshots
      (timestamp, repository, pr_number, pr_title, pr_author, files_changed,
       review_state, review_text, processing_time, issues_high, issues_medium,
       issues_low, rules_applied, patterns_detected, mentioned, comment_id,
       implemented_suggestions, total_suggestions, developer_feedback, follow_up_required)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


@dataclass
class SQLiteConfig:
    url: str
    auth_token: str | None = None
    sync_url: str | None = None
    timeout: float = 30.0

    @property
    def mode(self) -> str:
        if self.sync_url:
            return "synced"
        if self.url.startswith(REMOTE_SCHEMES):
            return "remote"
        return "local"

    @property
    def path(self) -> str:
        """Local database path with any ``file:`` prefix removed."""
        return self.url[len("file:") :] if self.url.startswith("file:") else self.url


class SQLiteStore(BaseStore):
    """Stores review history in a SQLite database, optionally replicated via libSQL."""

    transactional = True

    def __init__(self, config: SQLiteConfig):
        self._config = config
        self._conn = None
        self._in_transaction = False

    @property
    def mode(self) -> str:
        return self._config.mode

    def initialize(self) -> None:
        logger.info("Initializing SQLite storage (mode: %s)", self.mode)
        try:
            if self._conn is None:
                self._conn = self._connect()
            for statement in _SCHEMA:
                self._conn.execute(statement)
            self._conn.commit()
        except Exception as e:
            raise StorageUnavailable(f"failed to initialize SQLite storage: {e}") from e
        self._sync()
        logger.info("SQLite storage initialized (%s)", self._config.path if self.mode != "remote" else "remote")

    def _connect(self):
        if self.mode == "local":
            path = self._config.path
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            # Autocommit; multi-statement writes go through transaction().
            return sqlite3.connect(path, timeout=self._config.timeout, isolation_level=None)

        try:
            import libsql
        except ImportError:
            raise ImportError("libsql is required for synced or remote SQLite storage. Install reviewtrail[libsql].")

        if self.mode == "synced":
            Path(self._config.path).parent.mkdir(parents=True, exist_ok=True)
            logger.info("Embedded replica sync enabled: %s", self._config.sync_url)
            return libsql.connect(
                self._config.path, sync_url=self._config.sync_url, auth_token=self._config.auth_token or ""
            )
        return libsql.connect(self._config.url, auth_token=self._config.auth_token or "")

    def _require_conn(self):
        if self._conn is None:
            raise StorageError("SQLite storage not initialized")
        return self._conn

    def _sync(self) -> None:
        """Push local changes to the remote replica. Failures are logged, never raised."""
        if self.mode != "synced" or self._conn is None:
            return
        try:
            self._conn.sync()
            logger.debug("Synced to remote libSQL instance")
        except Exception as e:
            logger.warning("libSQL sync failed: %s", e)

    def _write(self, sql: str, params: tuple) -> None:
        conn = self._require_conn()
        try:
            conn.execute(sql, params)
            if not self._in_transaction:
                conn.commit()
        except Exception as e:
            raise StorageError(f"SQLite write failed: {e}") from e
        if not self._in_transaction:
            self._sync()

    def _query(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = self._require_conn().execute(sql, params)
        columns = [c[0] for c in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    @contextmanager
    def transaction(self) -> Iterator[SQLiteStore]:
        """Run a block of writes between BEGIN and COMMIT, syncing once afterwards.

        Any exception rolls the whole block back and is re-raised.
        """
        conn = self._require_conn()
        if self._in_transaction:
            yield self
            return
        try:
            conn.execute("BEGIN")
        except Exception as e:
            raise StorageError(f"could not start transaction: {e}") from e
        self._in_transaction = True
        try:
            yield self
            conn.execute("COMMIT")
        except BaseException:
            try:
                conn.execute("ROLLBACK")
            except Exception as rollback_error:
                logger.warning("Rollback failed: %s", rollback_error)
            raise
        finally:
            self._in_transaction = False
        self._sync()

    def save_review(self, repository: str, snapshot: ReviewSnapshot) -> bool:
        try:
            exists = self._query(
                "SELECT 1 FROM review_snapshots WHERE repository=? AND pr_number=? AND timestamp=?",
                (repository, snapshot.pr_number, snapshot.timestamp),
            )
        except Exception as e:
            raise StorageError(f"SQLite read failed: {e}") from e
        if exists:
            logger.debug("Review for PR #%s at %s already stored", snapshot.pr_number, snapshot.timestamp)
            return False

        issues = snapshot.metrics.issues
        eff = snapshot.effectiveness
        self._write(
            _INSERT_REVIEW,
            (
                snapshot.timestamp,
                repository,
                snapshot.pr_number,
                snapshot.pr_title,
                snapshot.pr_author,
                snapshot.files_changed,
                snapshot.review_state.value,
                snapshot.review_text,
                snapshot.metrics.processing_time,
                issues.high,
                issues.medium,
                issues.low,
                snapshot.metrics.rules_applied,
                snapshot.metrics.patterns_detected,
                1 if snapshot.mentioned else 0,
                snapshot.comment_id,
                eff.implemented_suggestions if eff else None,
                eff.total_suggestions if eff else None,
                eff.developer_feedback if eff else None,
                (1 if eff.follow_up_required else 0) if eff else None,
            ),
        )
        logger.info("Saved review for PR #%s to SQLite", snapshot.pr_number)
        return True

    def get_review_history(self, repository: str, pr_number: int) -> list[ReviewSnapshot]:
        try:
            rows = self._query(
                "SELECT * FROM review_snapshots WHERE repository=? AND pr_number=? ORDER BY timestamp, id",
                (repository, pr_number),
            )
        except Exception as e:
            logger.warning("Failed to get review history from SQLite: %s", e)
            return []
        return [self._row_to_snapshot(r) for r in rows]

    def save_approval_transition(self, transition: ApprovalTransition) -> None:
        self._write(
            """
            INSERT INTO approval_transitions
              (timestamp, repository, pr_number, from_state, to_state, trigger_type)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                transition.timestamp,
                transition.repository,
                transition.pr_number,
                transition.from_state.value,
                transition.to_state.value,
                transition.trigger.value,
            ),
        )

    def get_approval_transitions(self, repository: str, pr_number: int) -> list[ApprovalTransition]:
        try:
            rows = self._query(
                "SELECT * FROM approval_transitions WHERE repository=? AND pr_number=? ORDER BY timestamp, id",
                (repository, pr_number),
            )
        except Exception as e:
            logger.warning("Failed to get approval transitions from SQLite: %s", e)
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
        try:
            rows = self._query(
                """
                SELECT COUNT(*) AS total,
                       MIN(timestamp) AS oldest,
                       MAX(timestamp) AS newest,
                       SUM(CASE WHEN review_state = 'MERGE' THEN 1 ELSE 0 END) AS approved
                FROM review_snapshots
                WHERE repository = ?
                """,
                (repository,),
            )
        except Exception as e:
            logger.warning("Failed to get stats from SQLite: %s", e)
            return StorageStats()
        row = rows[0] if rows else {}
        total = row.get("total") or 0
        if not total:
            return StorageStats()
        return StorageStats(
            total_reviews=total,
            oldest_review=row["oldest"],
            newest_review=row["newest"],
            approval_rate=(row["approved"] or 0) / total,
        )

    def get_all_reviews(self, repository: str, limit: int | None = None) -> list[ReviewSnapshot]:
        sql = "SELECT * FROM review_snapshots WHERE repository = ? ORDER BY timestamp DESC, id DESC"
        params: tuple = (repository,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (repository, limit)
        try:
            rows = self._query(sql, params)
        except Exception as e:
            logger.warning("Failed to get all reviews from SQLite: %s", e)
            return []
        return [self._row_to_snapshot(r) for r in rows]

    def update_effectiveness(
        self, repository: str, pr_number: int, timestamp: str, effectiveness: ReviewEffectiveness
    ) -> None:
        timestamp = normalize_timestamp(timestamp)
        try:
            rows = self._query(
                "SELECT id FROM review_snapshots WHERE repository=? AND pr_number=? AND timestamp=?",
                (repository, pr_number, timestamp),
            )
        except Exception as e:
            raise StorageError(f"SQLite read failed: {e}") from e
        if not rows:
            raise RecordNotFound(f"no review of {repository}#{pr_number} at {timestamp}")
        self._write(
            """
            UPDATE review_snapshots
            SET implemented_suggestions = ?, total_suggestions = ?,
                developer_feedback = ?, follow_up_required = ?
            WHERE id = ?
            """,
            (
                effectiveness.implemented_suggestions,
                effectiveness.total_suggestions,
                effectiveness.developer_feedback,
                1 if effectiveness.follow_up_required else 0,
                rows[0]["id"],
            ),
        )

    def health_check(self) -> bool:
        if self._conn is None:
            return False
        try:
            self._conn.execute("SELECT 1").fetchall()
            return True
        except Exception:
            return False

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @staticmethod
    def _row_to_snapshot(row: dict) -> ReviewSnapshot:
        effectiveness = None
        if row.get("implemented_suggestions") is not None and row.get("total_suggestions") is not None:
            effectiveness = ReviewEffectiveness(
                implemented_suggestions=row["implemented_suggestions"],
                total_suggestions=row["total_suggestions"],
                developer_feedback=row.get("developer_feedback"),
                follow_up_required=bool(row.get("follow_up_required")),
            )
        return ReviewSnapshot(
            timestamp=row["timestamp"],
            repository=row["repository"],
            pr_number=row["pr_number"],
            pr_title=row["pr_title"] or "",
            pr_author=row["pr_author"] or "",
            files_changed=row["files_changed"],
            review_state=ReviewState.parse(row["review_state"]),
            review_text=row["review_text"] or "",
            metrics=ReviewMetrics(
                processing_time=row["processing_time"],
                issues=IssueCounts(high=row["issues_high"], medium=row["issues_medium"], low=row["issues_low"]),
                rules_applied=row["rules_applied"],
                patterns_detected=row["patterns_detected"],
            ),
            mentioned=row["mentioned"] == 1,
            comment_id=row.get("comment_id"),
            effectiveness=effectiveness,
        )


def create_local_sqlite_store(storage_dir: str = ".contributor", timeout: float = 30.0) -> SQLiteStore:
    """Local-only store in ``<storage_dir>/reviews.db``."""
    return SQLiteStore(SQLiteConfig(url=f"file:{Path(storage_dir) / DB_FILENAME}", timeout=timeout))


def create_synced_sqlite_store(storage_dir: str, sync_url: str, auth_token: str) -> SQLiteStore:
    """Embedded replica: local ``reviews.db`` kept in sync with a remote libSQL database."""
    return SQLiteStore(
        SQLiteConfig(url=f"file:{Path(storage_dir) / DB_FILENAME}", auth_token=auth_token, sync_url=sync_url)
    )


def create_remote_sqlite_store(url: str, auth_token: str) -> SQLiteStore:
    """Talk to the remote libSQL database directly, with no local file."""
    return SQLiteStore(SQLiteConfig(url=url, auth_token=auth_token))
