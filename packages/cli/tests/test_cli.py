"""Tests for the CLI entry point."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from reviewtrail_cli.cli import main
from reviewtrail_store.memory import MemoryStore
from reviewtrail_store.models import StorageStats


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in (
        "REVIEWTRAIL_CONFIG",
        "REVIEWTRAIL_STORE",
        "TURSO_DATABASE_URL",
        "TURSO_AUTH_TOKEN",
        "DATABASE_URL",
        "DIRECT_DATABASE_URL",
    ):
        monkeypatch.delenv(var, raising=False)


def _make_snapshot_dict(state="MERGE", hour=10, pr_number=42, **extra):
    snapshot = {
        "repository": "owner/repo",
        "pr_number": pr_number,
        "pr_title": "Fix login bug",
        "pr_author": "alice",
        "files_changed": 2,
        "review_state": state,
        "review_text": "Needs better error handling around the session cookie.",
        "timestamp": f"2024-05-01T{hour:02d}:00:00+00:00",
        "metrics": {"processing_time": 14, "issues": {"high": 0, "medium": 1, "low": 1}},
    }
    snapshot.update(extra)
    return snapshot


def _write_snapshot(tmp_path, name="snapshot.json", **kwargs):
    path = tmp_path / name
    path.write_text(json.dumps(_make_snapshot_dict(**kwargs)))
    return str(path)


def _invoke(tmp_path, *args, store="file"):
    base = [
        "--config",
        str(tmp_path / "missing.yml"),
        "--storage-dir",
        str(tmp_path / ".contributor"),
        "--store",
        store,
    ]
    return CliRunner().invoke(main, base + list(args))


class TestRecord:
    def test_records_snapshot(self, tmp_path):
        result = _invoke(tmp_path, "record", _write_snapshot(tmp_path))

        assert result.exit_code == 0, result.output
        assert "Recorded review of PR #42" in result.output
        assert (tmp_path / ".contributor" / "review-data.json").exists()

    def test_reports_approval_transition(self, tmp_path):
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "first.json", state="MERGE", hour=10))
        result = _invoke(tmp_path, "record", _write_snapshot(tmp_path, "second.json", state="DONT_MERGE", hour=11))

        assert result.exit_code == 0, result.output
        assert "Approval changed" in result.output

    def test_new_commit_trigger(self, tmp_path):
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "first.json", state="MERGE", hour=10))
        result = _invoke(
            tmp_path,
            "record",
            _write_snapshot(tmp_path, "second.json", state="DONT_MERGE", hour=11),
            "--new-commit",
        )

        assert "(commit)" in result.output

    def test_duplicate_is_not_recorded(self, tmp_path):
        snapshot = _write_snapshot(tmp_path)
        _invoke(tmp_path, "record", snapshot)
        result = _invoke(tmp_path, "record", snapshot)

        assert result.exit_code == 0
        assert "not recorded" in result.output

    def test_repo_option_overrides_snapshot(self, tmp_path):
        _invoke(tmp_path, "record", _write_snapshot(tmp_path), "--repo", "owner/other")
        result = _invoke(tmp_path, "history", "--repo", "owner/other")

        assert "#42" in result.output

    def test_missing_repository(self, tmp_path):
        path = tmp_path / "snapshot.json"
        snapshot = _make_snapshot_dict()
        del snapshot["repository"]
        path.write_text(json.dumps(snapshot))

        result = _invoke(tmp_path, "record", str(path))
        assert result.exit_code != 0
        assert "repository" in result.output

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text("{nope")

        result = _invoke(tmp_path, "record", str(path))
        assert result.exit_code != 0


class TestHistory:
    def test_no_records(self, tmp_path):
        result = _invoke(tmp_path, "history", "--repo", "owner/repo")

        assert result.exit_code == 0
        assert "No review records found" in result.output

    def test_lists_recent_reviews(self, tmp_path):
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "a.json", pr_number=41, hour=9))
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "b.json", pr_number=42, hour=10))

        result = _invoke(tmp_path, "history", "--repo", "owner/repo")
        assert result.exit_code == 0, result.output
        assert "#41" in result.output
        assert "#42" in result.output

    def test_pr_markdown_log(self, tmp_path):
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "a.json", state="MERGE", hour=10))
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "b.json", state="DONT_MERGE", hour=11))

        result = _invoke(tmp_path, "history", "--repo", "owner/repo", "--pr", "42", "--markdown")
        assert result.exit_code == 0, result.output
        assert "# PR #42: Fix login bug" in result.output
        assert "Total Reviews: 2" in result.output
        assert "Approval Changes: 1 time" in result.output

    def test_pr_without_records(self, tmp_path):
        result = _invoke(tmp_path, "history", "--repo", "owner/repo", "--pr", "7")
        assert "No review records found for PR #7" in result.output

    def test_markdown_requires_pr(self, tmp_path):
        result = _invoke(tmp_path, "history", "--repo", "owner/repo", "--markdown")
        assert result.exit_code != 0


class TestStats:
    def test_no_records(self, tmp_path):
        result = _invoke(tmp_path, "stats", "--repo", "owner/repo")
        assert "No review records found" in result.output

    def test_summary(self, tmp_path):
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "a.json", pr_number=1, state="MERGE", hour=10))
        _invoke(tmp_path, "record", _write_snapshot(tmp_path, "b.json", pr_number=2, state="DONT_MERGE", hour=11))

        result = _invoke(tmp_path, "stats", "--repo", "owner/repo")
        assert result.exit_code == 0, result.output
        assert "Total reviews:    2" in result.output
        assert "Approval rate:    50.0%" in result.output
        assert "DONT_MERGE" in result.output


class TestInsights:
    def test_cold_start(self, tmp_path):
        result = _invoke(
            tmp_path, "insights", "--repo", "owner/repo", "--pr", "42", "--title", "Fix login bug", "--author", "alice"
        )
        assert result.exit_code == 0, result.output
        assert "Building historical baseline" in result.output

    def test_markdown_with_history(self, tmp_path):
        for i in range(1, 4):
            _invoke(tmp_path, "record", _write_snapshot(tmp_path, f"{i}.json", pr_number=i, hour=9 + i))

        result = _invoke(
            tmp_path,
            "insights",
            "--repo",
            "owner/repo",
            "--pr",
            "42",
            "--title",
            "Fix login bug",
            "--author",
            "alice",
            "--seed",
            "5",
            "--markdown",
        )
        assert result.exit_code == 0, result.output
        assert "## 📊 Historical Context" in result.output
        assert "Found 3 similar PRs in history" in result.output
        assert "**error handling** (found in 3 reviews)" in result.output


class TestMigrate:
    def test_requires_sql_store(self, tmp_path):
        result = _invoke(tmp_path, "migrate")
        assert result.exit_code != 0
        assert "SQL store" in result.output

    def test_nothing_to_migrate(self, tmp_path):
        result = _invoke(tmp_path, "migrate", store="sqlite")
        assert result.exit_code == 0, result.output
        assert "nothing to migrate" in result.output

    def test_imports_document(self, tmp_path):
        legacy = tmp_path / "legacy.json"
        legacy.write_text(
            json.dumps({"owner/repo": {"reviews": [_make_snapshot_dict(hour=10), _make_snapshot_dict(hour=11)]}})
        )

        result = _invoke(tmp_path, "migrate", "--source", str(legacy), store="sqlite")
        assert result.exit_code == 0, result.output
        assert "Migrated 2 review(s)" in result.output
        assert (tmp_path / "legacy.json.backup").exists()

    def test_strict_partial_failure_exits_non_zero(self, tmp_path):
        bad = _make_snapshot_dict(hour=11)
        del bad["timestamp"]
        legacy = tmp_path / "legacy.json"
        legacy.write_text(json.dumps({"owner/repo": {"reviews": [_make_snapshot_dict(hour=10), bad]}}))

        result = _invoke(tmp_path, "migrate", "--source", str(legacy), "--strict", store="sqlite")
        assert result.exit_code == 1
        assert "1 record(s) failed to migrate" in result.output


class TestStoreLifecycle:
    def test_store_closed_after_command(self, mocker, tmp_path):
        store = MagicMock(spec=MemoryStore)
        store.get_stats.return_value = StorageStats()
        mocker.patch("reviewtrail_cli.cli.create_store", return_value=store)

        result = _invoke(tmp_path, "stats", "--repo", "owner/repo")

        assert result.exit_code == 0, result.output
        store.close.assert_called_once()

    def test_cli_options_reach_factory(self, mocker, tmp_path):
        create_store = mocker.patch("reviewtrail_cli.cli.create_store", return_value=MemoryStore())

        _invoke(tmp_path, "stats", "--repo", "owner/repo", store="sqlite")

        config = create_store.call_args.args[0]
        assert config["store"] == "sqlite"
        assert config["storage_dir"] == str(tmp_path / ".contributor")

    def test_invalid_config_file(self, tmp_path):
        cfg = tmp_path / "bad.yml"
        cfg.write_text("- not\n- a mapping\n")

        result = CliRunner().invoke(main, ["--config", str(cfg), "stats", "--repo", "owner/repo"])
        assert result.exit_code != 0
        assert "Could not load" in result.output
