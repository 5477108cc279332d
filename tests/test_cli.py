from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from ghfeed.cli import main
from ghfeed.github import RateLimitBucket, RateLimitStatus
from ghfeed.labels import AUTHORED, PR
from ghfeed.store import Store


@pytest.fixture
def home(tmp_path, monkeypatch):
    config_dir = tmp_path / "ghfeed-home"
    monkeypatch.setenv("GHFEED_HOME", str(config_dir))
    monkeypatch.chdir(tmp_path)
    # Empty values keep the .env template from leaking into os.environ
    for name in ("GITHUB_ACTIVITY_TOKEN", "GITHUB_TOKEN", "GITHUB_USERNAME", "GITHUB_USER", "ALLOWED_REPOS"):
        monkeypatch.setenv(name, "")
    return config_dir


def test_cli_help_lists_options_and_commands():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for text in ("--time", "--local", "--links", "--ll", "--clean", "--allowed-repos", "init", "cache"):
        assert text in result.output


def test_init_creates_config(home):
    runner = CliRunner()
    result = runner.invoke(main, ["init"])

    assert result.exit_code == 0
    assert (home / ".env").exists()
    assert (home / "ghfeed.yml").exists()
    assert (home / "ghfeed.db").exists()

    result = runner.invoke(main, ["init"])
    assert "Skipped" in result.output


def test_cache_stats_and_clear(home):
    home.mkdir(parents=True)
    store = Store(db_path=home / "ghfeed.db")
    store.save_item(PR, "o", "r", {"number": 1, "updated_at": "2024-05-01T10:00:00Z"}, AUTHORED)

    runner = CliRunner()
    result = runner.invoke(main, ["cache"])
    assert result.exit_code == 0
    assert "Pull requests: 1" in result.output

    result = runner.invoke(main, ["cache", "--clear"])
    assert result.exit_code == 0
    assert store.stats().pull_requests == 0


def test_missing_credentials_is_a_configuration_error(home):
    runner = CliRunner()
    result = runner.invoke(main, [])

    assert result.exit_code == 1
    assert "Configuration Error" in result.output
    assert "username is required" in result.output


def test_invalid_time_range(home):
    runner = CliRunner()
    result = runner.invoke(main, ["--local", "--time", "tomorrow"])

    assert result.exit_code == 1
    assert "invalid time range format" in result.output


def test_local_mode_with_empty_cache(home):
    runner = CliRunner()
    result = runner.invoke(main, ["--ll"])

    assert result.exit_code == 0
    assert "No open activity found" in result.output


def test_local_mode_shows_cached_items_with_links(home):
    home.mkdir(parents=True)
    updated = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    Store(db_path=home / "ghfeed.db").save_item(PR, "o", "r", {
        "number": 7,
        "title": "Add feed",
        "state": "open",
        "user": {"login": "alice"},
        "html_url": "https://github.com/o/r/pull/7",
        "updated_at": updated,
    }, AUTHORED)

    runner = CliRunner()
    result = runner.invoke(main, ["--ll"])

    assert result.exit_code == 0
    assert "OPEN PULL REQUESTS:" in result.output
    assert "o/r#7 - Add feed" in result.output
    assert "🔗 https://github.com/o/r/pull/7" in result.output


def test_clean_removes_cache(home):
    home.mkdir(parents=True)
    Store(db_path=home / "ghfeed.db").save_item(PR, "o", "r", {"number": 1}, AUTHORED)

    runner = CliRunner()
    result = runner.invoke(main, ["--local", "--clean"])

    assert result.exit_code == 0
    assert "Database cache cleaned successfully" in result.output
    assert Store(db_path=home / "ghfeed.db").stats().pull_requests == 0


def test_rate_limited_run_is_skipped(home, monkeypatch):
    monkeypatch.setenv("GITHUB_USERNAME", "alice")
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")
    exhausted = RateLimitStatus(
        core=RateLimitBucket(limit=5000, remaining=0, reset=None),
        search=RateLimitBucket(limit=30, remaining=30, reset=None),
    )

    with patch("ghfeed.cli.GitHubClient") as client_cls:
        client_cls.return_value.check_rate_limit.return_value = exhausted
        runner = CliRunner()
        result = runner.invoke(main, [])

    assert result.exit_code == 0
    assert "Skipping this cycle due to rate limit" in result.output
    client_cls.return_value.search_page.assert_not_called()
