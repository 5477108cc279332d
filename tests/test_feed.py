from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from ghfeed.config import FeedConfig
from ghfeed.feed import build_report, check_rate_limit, run_feed
from ghfeed.github import RateLimitBucket, RateLimitError, RateLimitStatus, SearchPage
from ghfeed.labels import AUTHORED, COMMENTED, ISSUE, MENTIONED, PR, REVIEWED
from ghfeed.models import record_from_item
from ghfeed.store import Store


def recent(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")


def item(number: int, *, pr: bool, days: int = 1, state: str = "open", body: str = "", merged: bool = False) -> dict:
    data = {
        "number": number,
        "title": f"Item {number}",
        "state": state,
        "body": body,
        "user": {"login": "alice"},
        "html_url": f"https://github.com/o/r/{'pull' if pr else 'issues'}/{number}",
        "repository_url": "https://api.github.com/repos/o/r",
        "updated_at": recent(days),
    }
    if pr:
        data["pull_request"] = {"merged_at": recent(days) if merged else None}
    return data


def status(core_remaining: int = 5000, search_remaining: int = 30) -> RateLimitStatus:
    return RateLimitStatus(
        core=RateLimitBucket(limit=5000, remaining=core_remaining, reset=datetime.now(timezone.utc)),
        search=RateLimitBucket(limit=30, remaining=search_remaining, reset=None),
    )


class QualifierClient:
    """Returns canned items for any query containing a qualifier such as "author:"."""

    def __init__(self, results: dict[str, list[dict]]):
        self.results = results
        self.check_rate_limit = Mock(return_value=status())
        self.list_pull_comments = Mock(return_value=[])

    def search_page(self, query: str, page: int = 1) -> SearchPage:
        items: list[dict] = []
        for qualifier, found in self.results.items():
            if qualifier in query:
                items.extend(found)
        return SearchPage(items=items, has_next_page=False)


def test_build_report_partitions_and_sorts():
    prs = [
        record_from_item(PR, item(1, pr=True, days=3), AUTHORED),
        record_from_item(PR, item(2, pr=True, days=1), REVIEWED),
        record_from_item(PR, item(3, pr=True, state="closed"), AUTHORED),
        record_from_item(PR, item(4, pr=True, state="closed", merged=True), AUTHORED),
    ]
    issues = [
        record_from_item(ISSUE, item(5, pr=False, days=5), MENTIONED),
        record_from_item(ISSUE, item(6, pr=False, days=2), MENTIONED),
        record_from_item(ISSUE, item(7, pr=False, state="closed"), COMMENTED),
    ]

    report = build_report(prs, issues)

    assert [pr.number for pr in report.open_prs] == [2, 1]
    assert [pr.number for pr in report.closed_prs] == [3]
    assert [pr.number for pr in report.merged_prs] == [4]
    assert [i.number for i in report.open_issues] == [6, 5]
    assert [i.number for i in report.closed_issues] == [7]
    assert not report.is_empty


def test_empty_report():
    report = build_report([], [])
    assert report.is_empty
    assert report.pr_count == 0


def test_check_rate_limit_exhausted():
    client = Mock()
    client.check_rate_limit.return_value = status(search_remaining=0)

    with pytest.raises(RateLimitError):
        check_rate_limit(client)


def test_check_rate_limit_warns_when_low(caplog):
    client = Mock()
    client.check_rate_limit.return_value = status(core_remaining=100, search_remaining=3)

    with caplog.at_level(logging.WARNING, logger="ghfeed.feed"):
        check_rate_limit(client)

    assert "Core API rate limit running low (100 remaining)" in caplog.text
    assert "Search API rate limit running low (3 remaining)" in caplog.text


def test_run_feed_online(tmp_path):
    store = Store(db_path=tmp_path / "ghfeed.db")
    client = QualifierClient({
        "is:pr author:": [item(10, pr=True, body="Fixes #5")],
        "is:pr mentions:": [item(10, pr=True, body="Fixes #5"), item(11, pr=True, state="closed")],
        "is:issue mentions:": [item(5, pr=False), item(6, pr=False)],
        "is:issue commenter:": [item(6, pr=False)],
    })
    config = FeedConfig(username="alice", token="ghp_x", time_range="1m")

    report = run_feed(config, client, store)

    client.check_rate_limit.assert_called_once()
    assert [(pr.number, pr.label) for pr in report.open_prs] == [(10, AUTHORED)]
    assert [i.number for i in report.open_prs[0].linked_issues] == [5]
    assert [pr.number for pr in report.closed_prs] == [11]
    assert [(i.number, i.label) for i in report.open_issues] == [(6, COMMENTED)]
    assert report.persist_failures == 0
    assert (report.pr_count, report.issue_count) == (2, 2)

    # Everything is now available offline
    assert store.get_item_with_label(PR, "o", "r", 10).label == AUTHORED


def test_run_feed_skips_cycle_when_rate_limited(tmp_path):
    client = QualifierClient({})
    client.check_rate_limit.return_value = status(core_remaining=0)
    config = FeedConfig(username="alice", token="ghp_x")

    with pytest.raises(RateLimitError):
        run_feed(config, client, Store(db_path=tmp_path / "ghfeed.db"))


def test_run_feed_offline_matches_online(tmp_path):
    store = Store(db_path=tmp_path / "ghfeed.db")
    online = QualifierClient({
        "is:pr author:": [item(10, pr=True)],
        "is:issue author:": [item(5, pr=False)],
    })
    online.list_pull_comments.return_value = [{"id": 1, "body": "closes #5"}]
    run_feed(FeedConfig(username="alice", token="ghp_x"), online, store)

    offline_client = Mock()
    report = run_feed(FeedConfig(local_mode=True), offline_client, store)

    offline_client.check_rate_limit.assert_not_called()
    offline_client.search_page.assert_not_called()
    assert [pr.number for pr in report.open_prs] == [10]
    assert [i.number for i in report.open_prs[0].linked_issues] == [5]
    assert report.open_issues == []


def test_run_feed_offline_respects_window(tmp_path):
    store = Store(db_path=tmp_path / "ghfeed.db")
    store.save_item(PR, "o", "r", item(1, pr=True, days=2), AUTHORED)
    store.save_item(PR, "o", "r", item(2, pr=True, days=20), AUTHORED)

    report = run_feed(FeedConfig(local_mode=True, time_range="1w"), None, store)

    assert [pr.number for pr in report.open_prs] == [1]
