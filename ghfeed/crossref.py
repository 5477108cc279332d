"""
Link issues to the pull requests that reference them.

A pull request and an issue in the same repository are linked when:
1. the PR body mentions the issue number, or
2. the issue body mentions the PR number, or
3. one of the PR's review comments mentions the issue number.

The comment check is the slow path: comments come from the cache when
offline, otherwise from GitHub (and are cached for later offline runs).
Pairs are checked concurrently; links are applied by a single collector
task reading from a queue.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections import defaultdict
from typing import Any

from .config import DEFAULT_CONCURRENCY
from .github import GitHubAPIError
from .merge import ProgressSink
from .mentions import mentions
from .models import IssueActivity, PullRequestActivity


logger = logging.getLogger(__name__)


class CrossReferenceDetector:
    """Pairwise PR/issue reference detection for one run."""

    def __init__(
        self,
        store: Any = None,
        client: Any = None,
        *,
        offline: bool = False,
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: ProgressSink | None = None,
    ):
        self.store = store
        self.client = client
        self.offline = offline
        self.concurrency = max(1, concurrency)
        self.progress = progress

        self.persist_failures = 0
        self.linked_keys: set[str] = set()
        self._comments: dict[str, asyncio.Task[list[str]]] = {}

    async def are_cross_referenced(self, pr: PullRequestActivity, issue: IssueActivity) -> bool:
        """Return True if the pull request and the issue reference each other."""
        if pr.owner != issue.owner or pr.repo != issue.repo:
            return False

        logger.debug(f"  Checking cross-reference: PR {pr.key} <-> Issue {issue.key}")

        if mentions(pr.body, issue.number, pr.owner, pr.repo):
            return True

        if mentions(issue.body, pr.number, issue.owner, issue.repo):
            return True

        for body in await self._comment_bodies(pr):
            if mentions(body, issue.number, pr.owner, pr.repo):
                return True

        return False

    async def link(
        self,
        prs: list[PullRequestActivity],
        issues: list[IssueActivity],
    ) -> list[IssueActivity]:
        """
        Attach referencing issues to each pull request's `linked_issues`.

        Only pairs from the same repository are checked. An issue may be
        linked to several pull requests.

        Returns:
            The standalone issues (linked to no pull request), in input order
        """
        prs_by_repo: dict[tuple[str, str], list[PullRequestActivity]] = defaultdict(list)
        for pr in prs:
            prs_by_repo[(pr.owner, pr.repo)].append(pr)

        results: asyncio.Queue[tuple[PullRequestActivity, IssueActivity] | None] = asyncio.Queue()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _collect() -> None:
            while True:
                result = await results.get()
                if result is None:
                    return
                pr, issue = result
                pr.linked_issues.append(issue)
                self.linked_keys.add(issue.key)
                logger.debug(f"  Linked {pr.key} <-> {issue.key}")

        async def _check(pr: PullRequestActivity, issue: IssueActivity) -> None:
            async with semaphore:
                if await self.are_cross_referenced(pr, issue):
                    await results.put((pr, issue))

        collector = asyncio.create_task(_collect())
        try:
            await asyncio.gather(*(
                _check(pr, issue)
                for issue in issues
                for pr in prs_by_repo.get((issue.owner, issue.repo), [])
            ))
        finally:
            await results.put(None)
            await collector

        return [issue for issue in issues if issue.key not in self.linked_keys]

    # =========================================================================
    # Comments
    # =========================================================================

    async def _comment_bodies(self, pr: PullRequestActivity) -> list[str]:
        """Comment bodies for a pull request, loaded at most once per run."""
        task = self._comments.get(pr.key)
        if task is None:
            task = asyncio.ensure_future(self._load_comments(pr))
            self._comments[pr.key] = task
        return await task

    async def _load_comments(self, pr: PullRequestActivity) -> list[str]:
        if self.offline:
            if self.store is None:
                return []
            try:
                comments = await asyncio.to_thread(self.store.get_pr_comments, pr.owner, pr.repo, pr.number)
            except sqlite3.Error as e:
                logger.debug(f"  Warning: Could not fetch comments from database for {pr.key}: {e}")
                return []
            return [comment.get("body") or "" for comment in comments]

        if self.client is None:
            return []

        self._grow(1)
        try:
            comments = await asyncio.to_thread(self.client.list_pull_comments, pr.owner, pr.repo, pr.number)
        except GitHubAPIError as e:
            logger.debug(f"  Warning: Could not fetch comments for {pr.key}: {e}")
            return []
        finally:
            self._tick()

        if self.store is not None and comments:
            self.persist_failures += await asyncio.to_thread(self._save_comments, pr, comments)

        return [comment.get("body") or "" for comment in comments]

    def _save_comments(self, pr: PullRequestActivity, comments: list[dict[str, Any]]) -> int:
        failures = 0
        for comment in comments:
            try:
                self.store.save_pr_comment(pr.owner, pr.repo, pr.number, comment)
            except sqlite3.Error as e:
                failures += 1
                logger.debug(f"  [DB] Warning: Failed to save PR comment for {pr.key}: {e}")
        return failures

    def _tick(self) -> None:
        if self.progress is not None:
            self.progress.increment()

    def _grow(self, n: int) -> None:
        if self.progress is not None:
            self.progress.add_to_total(n)
