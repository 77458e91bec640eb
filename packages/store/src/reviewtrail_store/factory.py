"""Store factory — builds the configured backend with a safe fallback.

Store selection hierarchy:
  storage directory not writable  → FileStore (nothing else is attempted)
  store: sqlite + remote creds    → SQLiteStore, synced (or remote) mode
  store: sqlite                   → SQLiteStore, local mode
  store: relational + DATABASE_URL → RelationalStore
  (default / any failure above)   → FileStore
  FileStore cannot initialize     → MemoryStore, history is not persisted

A SQL backend chosen for the first time absorbs any existing JSON file store
through the migration routine. The factory never raises: a storage problem
must not stop the review pipeline.

The factory takes a plain config dict (see reviewtrail_core.config) so the
store package does not depend on the config file format.
"""

from __future__ import annotations

import logging
from pathlib import Path

from reviewtrail_store.base import BaseStore
from reviewtrail_store.errors import StorageUnavailable
from reviewtrail_store.file import DATA_FILENAME, DEFAULT_MAX_REVIEWS, DEFAULT_MAX_TRANSITIONS, FileStore
from reviewtrail_store.memory import MemoryStore
from reviewtrail_store.migration import migrate_file_store
from reviewtrail_store.relational import RelationalStore
from reviewtrail_store.sqlite import (
    REMOTE_SCHEMES,
    SQLiteStore,
    create_local_sqlite_store,
    create_remote_sqlite_store,
    create_synced_sqlite_store,
)

logger = logging.getLogger(__name__)

_WRITE_TEST_FILENAME = ".reviewtrail-write-test"


def check_storage_directory(storage_dir: str) -> bool:
    """Return True if the storage directory exists (or can be created) and is writable."""
    directory = Path(storage_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        marker = directory / _WRITE_TEST_FILENAME
        marker.write_text("test")
        marker.unlink()
        return True
    except OSError as e:
        logger.error("Failed to access %s: %s", directory, e)
        return False


def create_store(config: dict) -> BaseStore:
    """Instantiate and initialize the configured store."""
    store_type = (config.get("store") or "file").lower()
    storage_dir = config.get("storage_dir") or ".contributor"

    if not check_storage_directory(storage_dir):
        logger.warning("%s is not accessible, falling back to file storage", storage_dir)
        return _create_file_store(config)

    if store_type in ("sqlite", "relational"):
        store = None
        try:
            store = _build_sql_store(config, store_type)
            if store is not None:
                store.initialize()
                if not store.health_check():
                    raise StorageUnavailable(f"{describe_store(store)} health check failed")
                migrate_file_store(store, Path(storage_dir) / DATA_FILENAME)
                logger.info("Using %s", describe_store(store))
                return store
        except Exception as e:
            logger.warning("Failed to initialize %s storage: %s", store_type, e)
            logger.warning("Falling back to file storage")
            if store is not None:
                store.close()
    elif store_type != "file":
        logger.warning("Unknown store %r, using file storage", store_type)

    return _create_file_store(config)


def _build_sql_store(config: dict, store_type: str) -> BaseStore | None:
    storage_dir = config.get("storage_dir") or ".contributor"
    timeout = float(config.get("timeout") or 30)

    if store_type == "relational":
        database_url = config.get("database_url")
        if not database_url:
            logger.warning("store: relational requires DATABASE_URL")
            return None
        return RelationalStore(database_url, config.get("direct_database_url"), timeout=timeout)

    url = config.get("turso_url")
    token = config.get("turso_auth_token")
    mode = config.get("sqlite_mode")

    if mode != "local" and url and url.startswith(REMOTE_SCHEMES):
        if not token:
            logger.warning("TURSO_DATABASE_URL is set but TURSO_AUTH_TOKEN is missing, using local SQLite")
        elif mode == "remote":
            logger.info("Using remote-only SQLite storage")
            return create_remote_sqlite_store(url, token)
        else:
            logger.info("Using synced SQLite storage (local replica + remote sync)")
            return create_synced_sqlite_store(storage_dir, url, token)

    logger.info("No remote SQLite credentials, using local SQLite storage")
    return create_local_sqlite_store(storage_dir, timeout=timeout)


def _create_file_store(config: dict) -> BaseStore:
    store = FileStore(
        config.get("storage_dir") or ".contributor",
        max_reviews=int(config.get("max_reviews") or DEFAULT_MAX_REVIEWS),
        max_transitions=int(config.get("max_transitions") or DEFAULT_MAX_TRANSITIONS),
    )
    try:
        store.initialize()
    except StorageUnavailable as e:
        logger.error("File storage unavailable (%s); review history will not be persisted", e)
        return MemoryStore()
    logger.info("Using file storage (%s)", store.data_file)
    return store


def describe_store(store: BaseStore) -> str:
    """Human-readable label for logs and CLI output."""
    if isinstance(store, SQLiteStore):
        return f"SQLite storage, {store.mode} mode (unlimited history)"
    if isinstance(store, RelationalStore):
        return "Relational storage (unlimited history)"
    if isinstance(store, FileStore):
        return f"File storage ({store.max_reviews} reviews limit)"
    if isinstance(store, MemoryStore):
        return "In-memory storage (not persisted)"
    return "Unknown storage"
