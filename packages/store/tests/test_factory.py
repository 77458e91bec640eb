"""Tests for store selection and fallback."""

from __future__ import annotations

import pytest

from reviewtrail_store.errors import StorageUnavailable
from reviewtrail_store.factory import _build_sql_store, check_storage_directory, create_store, describe_store
from reviewtrail_store.file import FileStore
from reviewtrail_store.memory import MemoryStore
from reviewtrail_store.models import ReviewSnapshot, ReviewState
from reviewtrail_store.relational import RelationalStore
from reviewtrail_store.sqlite import SQLiteStore


def _make_config(tmp_path, **overrides):
    config = {
        "store": "file",
        "storage_dir": str(tmp_path / ".contributor"),
        "max_reviews": 100,
        "max_transitions": 500,
        "sqlite_mode": None,
        "timeout": 5,
        "turso_url": None,
        "turso_auth_token": None,
        "database_url": None,
        "direct_database_url": None,
    }
    config.update(overrides)
    return config


def _make_snapshot(pr_number=1, timestamp="2024-03-01T09:00:00+00:00"):
    return ReviewSnapshot(
        repository="owner/repo",
        pr_number=pr_number,
        pr_title="Fix auth bug",
        pr_author="alice",
        files_changed=1,
        review_state=ReviewState.MERGE,
        review_text="LGTM",
        timestamp=timestamp,
    )


class TestCheckStorageDirectory:
    def test_creates_missing_directory(self, tmp_path):
        target = tmp_path / "a" / "b"
        assert check_storage_directory(str(target)) is True
        assert target.is_dir()
        assert list(target.iterdir()) == []

    def test_path_occupied_by_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        assert check_storage_directory(str(blocker / "sub")) is False


class TestCreateStore:
    def test_default_is_file_store(self, tmp_path):
        store = create_store(_make_config(tmp_path))
        assert isinstance(store, FileStore)
        assert store.max_reviews == 100

    def test_file_store_respects_configured_cap(self, tmp_path):
        store = create_store(_make_config(tmp_path, max_reviews=5))
        assert isinstance(store, FileStore)
        assert store.max_reviews == 5

    def test_sqlite_without_credentials_is_local(self, tmp_path):
        store = create_store(_make_config(tmp_path, store="sqlite"))
        assert isinstance(store, SQLiteStore)
        assert store.mode == "local"
        assert (tmp_path / ".contributor" / "reviews.db").exists()
        store.close()

    def test_relational_store(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'relational.db'}"
        store = create_store(_make_config(tmp_path, store="relational", database_url=url))
        assert isinstance(store, RelationalStore)
        store.close()

    def test_relational_without_database_url_falls_back(self, tmp_path):
        store = create_store(_make_config(tmp_path, store="relational"))
        assert isinstance(store, FileStore)

    def test_sql_initialize_failure_falls_back(self, mocker, tmp_path):
        mocker.patch.object(SQLiteStore, "initialize", side_effect=StorageUnavailable("locked"))
        store = create_store(_make_config(tmp_path, store="sqlite"))
        assert isinstance(store, FileStore)

    def test_failed_health_check_falls_back(self, mocker, tmp_path):
        mocker.patch.object(SQLiteStore, "health_check", return_value=False)
        close = mocker.spy(SQLiteStore, "close")
        store = create_store(_make_config(tmp_path, store="sqlite"))
        assert isinstance(store, FileStore)
        close.assert_called_once()

    def test_unwritable_directory_forces_file_store(self, mocker, tmp_path):
        mocker.patch("reviewtrail_store.factory.check_storage_directory", return_value=False)
        store = create_store(_make_config(tmp_path, store="sqlite"))
        assert isinstance(store, FileStore)

    def test_unknown_store_type_uses_file_store(self, tmp_path):
        store = create_store(_make_config(tmp_path, store="mongodb"))
        assert isinstance(store, FileStore)

    def test_memory_store_when_file_store_unavailable(self, mocker, tmp_path):
        mocker.patch.object(FileStore, "initialize", side_effect=StorageUnavailable("read-only"))
        store = create_store(_make_config(tmp_path))
        assert isinstance(store, MemoryStore)

    def test_sqlite_absorbs_existing_file_store(self, tmp_path):
        legacy = FileStore(tmp_path / ".contributor")
        legacy.initialize()
        legacy.save_review("owner/repo", _make_snapshot(pr_number=1))
        legacy.save_review("owner/repo", _make_snapshot(pr_number=2))

        store = create_store(_make_config(tmp_path, store="sqlite"))
        assert isinstance(store, SQLiteStore)
        assert store.get_stats("owner/repo").total_reviews == 2
        assert not (tmp_path / ".contributor" / "review-data.json").exists()
        assert (tmp_path / ".contributor" / "review-data.json.backup").exists()
        store.close()


class TestBuildSQLStore:
    def test_remote_url_with_token_is_synced(self, tmp_path):
        config = _make_config(tmp_path, turso_url="libsql://reviews.turso.io", turso_auth_token="tok")
        store = _build_sql_store(config, "sqlite")
        assert store.mode == "synced"

    @pytest.mark.parametrize("url", ["http://127.0.0.1:8080", "ws://127.0.0.1:8080", "https://reviews.turso.io"])
    def test_every_remote_scheme_is_synced(self, tmp_path, url):
        config = _make_config(tmp_path, turso_url=url, turso_auth_token="tok")
        store = _build_sql_store(config, "sqlite")
        assert store.mode == "synced"

    def test_remote_only_mode(self, tmp_path):
        config = _make_config(
            tmp_path, turso_url="libsql://reviews.turso.io", turso_auth_token="tok", sqlite_mode="remote"
        )
        store = _build_sql_store(config, "sqlite")
        assert store.mode == "remote"

    def test_remote_url_without_token_is_local(self, tmp_path):
        config = _make_config(tmp_path, turso_url="libsql://reviews.turso.io")
        store = _build_sql_store(config, "sqlite")
        assert store.mode == "local"

    def test_forced_local_mode_ignores_credentials(self, tmp_path):
        config = _make_config(
            tmp_path, turso_url="libsql://reviews.turso.io", turso_auth_token="tok", sqlite_mode="local"
        )
        store = _build_sql_store(config, "sqlite")
        assert store.mode == "local"


class TestDescribeStore:
    def test_labels(self, tmp_path):
        assert describe_store(FileStore(tmp_path)) == "File storage (100 reviews limit)"
        assert describe_store(MemoryStore()) == "In-memory storage (not persisted)"
        assert "local mode" in describe_store(_build_sql_store(_make_config(tmp_path), "sqlite"))
