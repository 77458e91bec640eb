"""One-shot migration of the JSON file store into a SQL-capable store.

Runs when a SQL backend is selected and ``review-data.json`` still exists.
Every review (and transition) is replayed through the target store. Records
the target already holds are skipped; records that fail are logged and
skipped. Only after the full pass is the JSON document renamed to
``review-data.json.backup``, which is also what keeps the migration from
running twice. A run whose rename failed can be repeated without creating
duplicates.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from reviewtrail_store.errors import MigrationPartialFailure, StorageError
from reviewtrail_store.file import snapshot_from_dict, transition_from_dict

if TYPE_CHECKING:
    from reviewtrail_store.base import BaseStore
    from reviewtrail_store.models import ApprovalTransition

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


@dataclass
class MigrationReport:
    migrated: int = 0
    skipped: int = 0  # already present in the target
    failed: int = 0
    transitions_migrated: int = 0
    transitions_skipped: int = 0  # already present in the target
    backup_path: Path | None = None


def migrate_file_store(target: BaseStore, data_file: str | os.PathLike, strict: bool = False) -> MigrationReport:
    """Copy every record of a JSON file store into ``target``.

    Returns an empty report when there is nothing to migrate. With
    ``strict=True`` a MigrationPartialFailure is raised after the migration
    has completed (and the document has been renamed) if any record failed.
    """
    source = Path(data_file)
    report = MigrationReport()
    if not source.exists():
        return report

    logger.info("Found existing file storage at %s, migrating", source)
    try:
        document = json.loads(source.read_text(encoding="utf-8") or "{}")
    except (OSError, json.JSONDecodeError) as e:
        # Leave the document where it is so nothing is lost.
        logger.warning("Failed to read %s, skipping migration: %s", source, e)
        return report
    if not isinstance(document, dict):
        logger.warning("%s does not contain a JSON object, skipping migration", source)
        return report

    for repository, entry in document.items():
        entry = entry or {}
        for raw in entry.get("reviews", []):
            try:
                snapshot = snapshot_from_dict(raw, repository)
                if target.save_review(repository, snapshot):
                    report.migrated += 1
                else:
                    report.skipped += 1
            except (StorageError, KeyError, TypeError, ValueError) as e:
                report.failed += 1
                logger.warning("Failed to migrate review of %s: %s", repository, e)
        known: dict[int, set[tuple]] = {}  # pr_number -> identities already in the target
        for raw in entry.get("transitions", []):
            try:
                transition = transition_from_dict(raw)
                transition.repository = transition.repository or repository
                pr_number = transition.pr_number
                if pr_number not in known:
                    existing = target.get_approval_transitions(transition.repository, pr_number)
                    known[pr_number] = {_transition_identity(t) for t in existing}
                identity = _transition_identity(transition)
                if identity in known[pr_number]:
                    report.transitions_skipped += 1
                    continue
                target.save_approval_transition(transition)
                known[pr_number].add(identity)
                report.transitions_migrated += 1
            except (StorageError, KeyError, TypeError, ValueError) as e:
                report.failed += 1
                logger.warning("Failed to migrate approval transition of %s: %s", repository, e)

    logger.info("Migrated %d review(s) from file storage", report.migrated)

    backup = source.with_name(source.name + BACKUP_SUFFIX)
    try:
        os.replace(source, backup)
        report.backup_path = backup
        logger.info("Backed up file storage to %s", backup)
    except OSError as e:
        logger.warning("Failed to back up %s: %s", source, e)

    if strict and report.failed:
        raise MigrationPartialFailure(failed=report.failed, migrated=report.migrated)
    return report


def _transition_identity(transition: ApprovalTransition) -> tuple:
    return (transition.timestamp, transition.from_state, transition.to_state, transition.trigger)
