"""
One feed run: merge both record kinds, link issues to PRs, partition for display.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .config import FeedConfig
from .crossref import CrossReferenceDetector
from .github import RateLimitError, RateLimitStatus
from .labels import ISSUE, PR
from .merge import PR_CATEGORIES, ISSUE_CATEGORIES, ActivityMerger, ProgressSink, issue_queries, pr_queries
from .models import ActivityRecord, IssueActivity, PullRequestActivity


logger = logging.getLogger(__name__)

# One search (or cache scan) per category before pagination is known
INITIAL_PROGRESS_TOTAL = len(PR_CATEGORIES) + len(ISSUE_CATEGORIES)

SEARCH_LOW_WATERMARK = 5


@dataclass
class FeedReport:
    """Partitioned feed, each list sorted by updated_at (newest first)."""
    open_prs: list[PullRequestActivity] = field(default_factory=list)
    closed_prs: list[PullRequestActivity] = field(default_factory=list)
    merged_prs: list[PullRequestActivity] = field(default_factory=list)
    open_issues: list[IssueActivity] = field(default_factory=list)
    closed_issues: list[IssueActivity] = field(default_factory=list)
    persist_failures: int = 0
    pr_count: int = 0
    issue_count: int = 0
    duration: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not (self.open_prs or self.closed_prs or self.merged_prs or self.open_issues or self.closed_issues)


def _newest_first(records: list[Any]) -> list[Any]:
    return sorted(records, key=ActivityRecord.sort_key, reverse=True)


def build_report(
    prs: list[PullRequestActivity],
    standalone_issues: list[IssueActivity],
    issue_count: int | None = None,
) -> FeedReport:
    """Sort and split merged records into the display sections."""
    report = FeedReport(
        pr_count=len(prs),
        issue_count=len(standalone_issues) if issue_count is None else issue_count,
    )

    for pr in _newest_first(prs):
        pr.linked_issues = _newest_first(pr.linked_issues)
        if not pr.is_closed:
            report.open_prs.append(pr)
        elif pr.is_merged:
            report.merged_prs.append(pr)
        else:
            report.closed_prs.append(pr)

    for issue in _newest_first(standalone_issues):
        if issue.is_closed:
            report.closed_issues.append(issue)
        else:
            report.open_issues.append(issue)

    return report


def check_rate_limit(client: Any) -> RateLimitStatus:
    """
    Check remaining API quota before a run.

    Raises:
        RateLimitError: if the core or search quota is exhausted
        GitHubAPIError: if the status could not be fetched
    """
    status = client.check_rate_limit()
    core, search = status.core, status.search

    logger.debug(
        f"Rate Limits - Core: {core.remaining}/{core.limit}, Search: {search.remaining}/{search.limit}"
    )

    for name, bucket in (("Core", core), ("Search", search)):
        if bucket.remaining == 0:
            reset = f", resets at {bucket.reset:%H:%M:%S}" if bucket.reset else ""
            logger.warning(f"{name} API rate limit exceeded{reset}")
            raise RateLimitError(int(bucket.reset.timestamp()) if bucket.reset else None)

    if 0 < core.remaining < core.limit // 5:
        logger.warning(f"Core API rate limit running low ({core.remaining} remaining)")
    if 0 < search.remaining < SEARCH_LOW_WATERMARK:
        logger.warning(f"Search API rate limit running low ({search.remaining} remaining)")

    return status


async def collect_activity(
    config: FeedConfig,
    client: Any,
    store: Any,
    progress: ProgressSink | None = None,
) -> FeedReport:
    """Merge PRs and issues concurrently, then cross-reference them."""
    start = time.monotonic()
    cutoff = datetime.now(timezone.utc) - config.window

    shared = dict(
        store=store,
        client=client,
        offline=config.local_mode,
        cutoff=cutoff,
        repo_filter=config.is_repo_allowed,
        concurrency=config.concurrency,
        progress=progress,
    )
    pr_merger = ActivityMerger(PR, fetch_details=config.fetch_details, **shared)
    issue_merger = ActivityMerger(ISSUE, **shared)

    logger.debug("Running search queries...")
    prs, issues = await asyncio.gather(
        pr_merger.run(pr_queries(config.username, cutoff)),
        issue_merger.run(issue_queries(config.username, cutoff)),
    )

    logger.debug("Checking cross-references between PRs and issues...")
    detector = CrossReferenceDetector(
        store,
        client,
        offline=config.local_mode,
        concurrency=config.concurrency,
        progress=progress,
    )
    standalone = await detector.link(prs, issues)

    report = build_report(prs, standalone, issue_count=len(issues))
    report.persist_failures = pr_merger.persist_failures + issue_merger.persist_failures + detector.persist_failures
    report.duration = time.monotonic() - start

    logger.debug(f"Total fetch time: {report.duration * 1000:.0f}ms")
    logger.debug(f"Found {report.pr_count} unique PRs and {report.issue_count} unique issues")
    if store is not None:
        try:
            stats = store.stats()
            logger.debug(
                f"Database stats: {stats.pull_requests} PRs, {stats.issues} issues, {stats.comments} comments"
            )
        except sqlite3.Error as e:
            logger.debug(f"Could not read database stats: {e}")

    return report


def run_feed(
    config: FeedConfig,
    client: Any,
    store: Any,
    progress: ProgressSink | None = None,
) -> FeedReport:
    """
    Run one feed cycle.

    Online runs check the rate limit first and raise RateLimitError instead
    of starting a cycle that cannot complete.
    """
    if not config.local_mode:
        check_rate_limit(client)
    return asyncio.run(collect_activity(config, client, store, progress))
