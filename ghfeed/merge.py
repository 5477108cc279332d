"""
Concurrent merge of overlapping search categories.

Each involvement category ("Authored", "Reviewed", ...) runs as its own task.
Every item a category surfaces is merged into one shared mapping keyed by
owner/repo#number:

- the first category to claim a key builds the record, compares it with the
  cached copy to set `has_updates`, and persists it with its label
- a later category only replaces the label when it has a strictly higher
  priority, and persists the new label

All claims happen under one asyncio.Lock, so the outcome does not depend on
the order in which categories finish. Remote calls and cache access run in
worker threads.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from .config import DEFAULT_CONCURRENCY
from .github import GitHubAPIError
from .labels import (
    ASSIGNED,
    AUTHORED,
    COMMENTED,
    ISSUE,
    MENTIONED,
    PR,
    REVIEW_REQUESTED,
    REVIEWED,
    should_replace,
)
from .models import (
    ActivityRecord,
    MalformedItemError,
    is_pull_request_item,
    parse_repository_url,
    parse_timestamp,
    record_from_item,
    split_item_key,
)


logger = logging.getLogger(__name__)

PR_CATEGORIES = (
    (REVIEWED, "is:pr reviewed-by:{username}"),
    (REVIEW_REQUESTED, "is:pr review-requested:{username}"),
    (AUTHORED, "is:pr author:{username}"),
    (ASSIGNED, "is:pr assignee:{username}"),
    (COMMENTED, "is:pr commenter:{username}"),
    (MENTIONED, "is:pr mentions:{username}"),
)

ISSUE_CATEGORIES = (
    (AUTHORED, "is:issue author:{username}"),
    (MENTIONED, "is:issue mentions:{username}"),
    (ASSIGNED, "is:issue assignee:{username}"),
    (COMMENTED, "is:issue commenter:{username}"),
)


class ProgressSink(Protocol):
    def increment(self, n: int = 1) -> None: ...
    def add_to_total(self, n: int) -> None: ...


@dataclass(frozen=True)
class CategoryQuery:
    """One involvement category and the search query that finds it."""
    label: str
    query: str


def date_filter(since: datetime) -> str:
    return f"updated:>={since.strftime('%Y-%m-%d')}"


def _build_queries(categories: tuple[tuple[str, str], ...], username: str, since: datetime) -> list[CategoryQuery]:
    suffix = date_filter(since)
    return [
        CategoryQuery(label=label, query=f"{template.format(username=username)} {suffix}")
        for label, template in categories
    ]


def pr_queries(username: str, since: datetime) -> list[CategoryQuery]:
    """The six pull request categories, scoped to items updated since `since`."""
    return _build_queries(PR_CATEGORIES, username, since)


def issue_queries(username: str, since: datetime) -> list[CategoryQuery]:
    """The four issue categories, scoped to items updated since `since`."""
    return _build_queries(ISSUE_CATEGORIES, username, since)


class ActivityMerger:
    """
    Fan-out/fan-in merger for one record kind (pull requests or issues).

    Args:
        kind: labels.PR or labels.ISSUE
        store: Cache used for update detection, persistence and offline mode
        client: GitHub client (unused when offline)
        offline: Rebuild categories from the cache instead of searching
        cutoff: Oldest updated_at kept when rebuilding from the cache
        repo_filter: Predicate on (owner, repo); items failing it are dropped
        fetch_details: Fetch full details for closed pull requests (merged state)
        concurrency: Maximum number of categories running at once
        progress: Optional progress counter
    """

    def __init__(
        self,
        kind: str,
        store: Any = None,
        client: Any = None,
        *,
        offline: bool = False,
        cutoff: datetime | None = None,
        repo_filter: Callable[[str, str], bool] | None = None,
        fetch_details: bool = False,
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: ProgressSink | None = None,
    ):
        if kind not in (PR, ISSUE):
            raise ValueError(f"Unknown record kind: {kind}")
        self.kind = kind
        self.store = store
        self.client = client
        self.offline = offline
        self.cutoff = cutoff
        self.repo_filter = repo_filter
        self.fetch_details = fetch_details
        self.concurrency = max(1, concurrency)
        self.progress = progress

        self.records: dict[str, ActivityRecord] = {}
        self.persist_failures = 0
        self._lock = asyncio.Lock()

    async def run(self, queries: list[CategoryQuery]) -> list[ActivityRecord]:
        """Run every category concurrently and return the merged records."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(query: CategoryQuery) -> None:
            async with semaphore:
                await self._collect(query)

        await asyncio.gather(*(_bounded(query) for query in queries))
        return list(self.records.values())

    async def _collect(self, query: CategoryQuery) -> None:
        try:
            if self.offline:
                found = await self._collect_cached(query)
            else:
                found = await self._collect_remote(query)
        except GitHubAPIError as e:
            logger.warning(f"[{query.label}] Search failed: {e}")
            return
        except sqlite3.Error as e:
            logger.warning(f"[{query.label}] Error loading from database: {e}")
            return

        if found:
            logger.debug(f"  [{query.label}] Complete: {found} {self.kind}s found")

    # =========================================================================
    # Sources
    # =========================================================================

    async def _collect_remote(self, query: CategoryQuery) -> int:
        if self.client is None:
            raise ValueError("A GitHub client is required outside offline mode")

        total = 0
        page = 1
        while True:
            logger.debug(f"  [{query.label}] Searching page {page} with query: {query.query}")
            try:
                result = await asyncio.to_thread(self.client.search_page, query.query, page)
            finally:
                self._tick()

            if page == 1 and result.has_next_page and result.last_page and result.last_page > 1:
                self._grow(result.last_page - 1)

            found = 0
            for item in result.items:
                if await self._merge_remote_item(query.label, item):
                    found += 1
            total += found
            logger.debug(f"  [{query.label}] Page {page}: found {found} new {self.kind}s (total: {total})")

            if not result.has_next_page:
                return total
            page += 1

    async def _collect_cached(self, query: CategoryQuery) -> int:
        if self.store is None:
            return 0

        logger.debug(f"  [{query.label}] Loading from database...")
        cached_items = await asyncio.to_thread(self.store.list_items_with_labels, self.kind)
        self._tick()

        total = 0
        for cached in cached_items:
            # Only items whose current label is this category
            if cached.label != query.label:
                continue
            try:
                owner, repo, _ = split_item_key(cached.key)
                record = record_from_item(self.kind, cached.item, query.label, owner, repo)
            except MalformedItemError as e:
                logger.warning(f"[{query.label}] Skipping cached item {cached.key}: {e}")
                continue

            if record.updated_at is None or (self.cutoff is not None and record.updated_at < self.cutoff):
                continue
            if not self._allowed(owner, repo):
                continue

            async with self._lock:
                if self._claim_cached(record):
                    total += 1
        return total

    # =========================================================================
    # Merge
    # =========================================================================

    def _allowed(self, owner: str, repo: str) -> bool:
        return self.repo_filter is None or self.repo_filter(owner, repo)

    def _belongs_here(self, item: dict[str, Any]) -> bool:
        # PRs and issues share numbering within a repo; only the link metadata tells them apart
        return is_pull_request_item(item) == (self.kind == PR)

    async def _merge_remote_item(self, label: str, item: dict[str, Any]) -> bool:
        if not self._belongs_here(item):
            return False

        try:
            owner, repo = parse_repository_url(item.get("repository_url"))
        except MalformedItemError as e:
            logger.warning(f"[{label}] Skipping item: {e}")
            return False

        if not self._allowed(owner, repo):
            return False

        number = item.get("number")
        if not isinstance(number, int):
            logger.warning(f"[{label}] Skipping item without a number in {owner}/{repo}")
            return False

        record = record_from_item(self.kind, item, label, owner, repo)

        # Only the claimer of a key writes it, so an unclaimed key still has its prior cached copy
        has_updates = False
        if record.key not in self.records:
            has_updates = await asyncio.to_thread(self._detect_updates, record, label)

        async with self._lock:
            existing = self.records.get(record.key)
            if existing is not None:
                return await self._relabel(existing, label)
            record.has_updates = has_updates
            self.records[record.key] = record
            await self._persist(record)
            self._grow(1)
            self._tick()

        if self._needs_details(record):
            await self._fetch_details(record)
        return True

    def _claim_cached(self, record: ActivityRecord) -> bool:
        existing = self.records.get(record.key)
        if existing is not None:
            if not should_replace(existing.label, record.label, self.kind):
                return False
            logger.debug(
                f"  [{record.label}] Updating label for {record.key} from {existing.label} "
                f"to {record.label} (higher priority)"
            )
        self.records[record.key] = record
        return True

    async def _relabel(self, existing: ActivityRecord, label: str) -> bool:
        """Upgrade the label of an already claimed record. Caller holds the lock."""
        if not should_replace(existing.label, label, self.kind):
            return False
        logger.debug(
            f"  [{label}] Updating label for {existing.key} from {existing.label} to {label} (higher priority)"
        )
        existing.label = label
        await self._persist(existing)
        return True

    def _detect_updates(self, record: ActivityRecord, label: str) -> bool:
        """Compare a freshly fetched record with its cached copy."""
        if self.store is None:
            return False

        try:
            cached = self.store.get_item_with_label(self.kind, record.owner, record.repo, record.number)
        except sqlite3.Error as e:
            logger.debug(f"  [{label}] Cache read failed for {record.key}: {e}")
            cached = None

        cached_at = parse_timestamp(cached.item.get("updated_at")) if cached else None
        if cached_at is None:
            logger.debug(f"  [{label}] New {self.kind} (not in DB): {record.key}")
            return True

        if record.updated_at is not None and record.updated_at > cached_at:
            logger.debug(
                f"  [{label}] Update detected: {record.key} "
                f"(API: {record.updated_at:%Y-%m-%d %H:%M:%S} > DB: {cached_at:%Y-%m-%d %H:%M:%S})"
            )
            return True

        logger.debug(f"  [{label}] No update: {record.key}")
        return False

    async def _persist(self, record: ActivityRecord) -> None:
        """Write the record with its current label. Caller holds the lock."""
        if self.store is None or self.offline:
            return
        try:
            await asyncio.to_thread(self.store.save_item, self.kind, record.owner, record.repo, record.raw, record.label)
        except sqlite3.Error as e:
            self.persist_failures += 1
            logger.debug(f"  [DB] Warning: Failed to save {self.kind} {record.key}: {e}")

    # =========================================================================
    # Details
    # =========================================================================

    def _needs_details(self, record: ActivityRecord) -> bool:
        return self.fetch_details and self.kind == PR and record.is_closed and self.client is not None

    async def _fetch_details(self, record: ActivityRecord) -> None:
        """Fill in merged state for a closed pull request; search results do not carry it."""
        self._grow(1)
        try:
            detail = await asyncio.to_thread(self.client.get_pull, record.owner, record.repo, record.number)
        except GitHubAPIError as e:
            logger.debug(f"  Could not fetch details for {record.key}: {e}")
            return
        finally:
            self._tick()

        item = dict(record.raw)
        item["merged"] = bool(detail.get("merged"))
        item["merged_at"] = detail.get("merged_at")
        if detail.get("body") is not None:
            item["body"] = detail["body"]

        async with self._lock:
            record.apply_item(item)
            await self._persist(record)

    # =========================================================================
    # Progress
    # =========================================================================

    def _tick(self) -> None:
        if self.progress is not None:
            self.progress.increment()

    def _grow(self, n: int) -> None:
        if self.progress is not None:
            self.progress.add_to_total(n)
