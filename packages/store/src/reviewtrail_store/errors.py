"""Storage error taxonomy.

Only ``StorageUnavailable`` is meant to travel far: the factory catches it and
degrades to the file backend. The others are raised to the immediate caller,
which logs them and carries on.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base class for every persistence failure."""


class StorageUnavailable(StorageError):
    """The backend cannot be initialized (unwritable directory, refused connection, bad credentials)."""


class RecordNotFound(StorageError):
    """No stored snapshot matches the requested identity."""


class MigrationPartialFailure(StorageError):
    """Some records could not be transferred; the migration itself still completed."""

    def __init__(self, failed: int, migrated: int):
        super().__init__(f"{failed} record(s) failed to migrate ({migrated} migrated)")
        self.failed = failed
        self.migrated = migrated
