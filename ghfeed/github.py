"""
GitHub REST API client for ghfeed.

Covers the handful of endpoints the feed needs:
- Issue search (returns both issues and pull requests)
- Pull request details
- Issue details and review comments on a pull request
- Rate limit status

Every request goes through `_request`, which retries transient failures
with exponential backoff and waits out rate limiting.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator
from urllib.parse import parse_qs, urlparse

import requests

from . import __version__
from .config import DEFAULT_API_URL


logger = logging.getLogger(__name__)

SEARCH_PER_PAGE = 100
DEFAULT_PER_PAGE = 100
MAX_RETRIES = 5
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0
MAX_ERROR_BACKOFF = 5.0
RATE_LIMIT_BACKOFF_FACTOR = 2.0
ERROR_BACKOFF_FACTOR = 1.5


class GitHubAPIError(Exception):
    """Error from GitHub API."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(GitHubAPIError):
    """Rate limit exceeded."""
    def __init__(self, reset_time: int | None = None, retry_after: float | None = None):
        super().__init__("GitHub API rate limit exceeded", 403)
        self.reset_time = reset_time
        self.retry_after = retry_after


@dataclass
class SearchPage:
    """One page of issue search results."""
    items: list[dict[str, Any]]
    has_next_page: bool
    last_page: int | None = None
    total_count: int = 0


@dataclass
class RateLimitBucket:
    limit: int
    remaining: int
    reset: datetime | None


@dataclass
class RateLimitStatus:
    core: RateLimitBucket
    search: RateLimitBucket
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


def _page_from_url(url: str | None) -> int | None:
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get("page")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


def _parse_bucket(data: dict[str, Any]) -> RateLimitBucket:
    reset = data.get("reset")
    return RateLimitBucket(
        limit=int(data.get("limit", 0)),
        remaining=int(data.get("remaining", 0)),
        reset=datetime.fromtimestamp(reset, tz=timezone.utc) if reset else None,
    )


class GitHubClient:
    """GitHub REST API client with pagination, retries and rate limit handling."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str = DEFAULT_API_URL,
        max_retries: int = MAX_RETRIES,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.session = requests.Session()

        if self.token:
            self.session.headers["Authorization"] = f"Bearer {self.token}"

        self.session.headers["Accept"] = "application/vnd.github+json"
        self.session.headers["X-GitHub-Api-Version"] = "2022-11-28"
        self.session.headers["User-Agent"] = f"ghfeed/{__version__}"

    def _send(self, method: str, url: str, params: dict[str, Any] | None = None) -> requests.Response:
        """Make a single request and translate failures into GitHubAPIError."""
        try:
            response = self.session.request(method, url, params=params, timeout=30)
        except requests.RequestException as e:
            raise GitHubAPIError(f"Request failed: {e}")

        if response.status_code in (403, 429):
            remaining = response.headers.get("X-RateLimit-Remaining")
            retry_after = response.headers.get("Retry-After")
            if remaining == "0" or retry_after is not None or response.status_code == 429:
                reset_time = int(response.headers.get("X-RateLimit-Reset", 0)) or None
                raise RateLimitError(reset_time, float(retry_after) if retry_after else None)

        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API error: {response.status_code} - {response.text}",
                response.status_code,
            )

        return response

    def _json(self, response: requests.Response, operation: str = "") -> Any:
        """Decode a response body, treating non-JSON content as an API error."""
        try:
            return response.json()
        except ValueError as e:
            raise GitHubAPIError(f"[{operation}] Invalid JSON in response: {e}", response.status_code)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        operation: str = "",
    ) -> requests.Response:
        """Make an API request with retry and rate limit handling."""
        url = f"{self.base_url}{endpoint}"
        operation = operation or endpoint
        backoff = INITIAL_BACKOFF

        for attempt in range(1, self.max_retries + 1):
            try:
                return self._send(method, url, params)
            except RateLimitError as e:
                if attempt == self.max_retries:
                    raise
                wait = min(e.retry_after or backoff, MAX_BACKOFF)
                logger.debug(f"[{operation}] Rate limit hit (attempt {attempt}), waiting {wait:.1f}s before retry...")
                backoff *= RATE_LIMIT_BACKOFF_FACTOR
            except GitHubAPIError as e:
                # Client errors other than rate limiting will not succeed on retry
                if e.status_code is not None and e.status_code < 500:
                    raise
                if attempt == self.max_retries:
                    raise
                wait = min(backoff / 2, MAX_ERROR_BACKOFF)
                logger.debug(f"[{operation}] Error (attempt {attempt}): {e}, waiting {wait:.1f}s before retry...")
                backoff *= ERROR_BACKOFF_FACTOR
            time.sleep(wait)

        raise GitHubAPIError("Max retries exceeded")

    def _paginate(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        operation: str = "",
    ) -> Iterator[dict[str, Any]]:
        """Iterate through paginated API results."""
        params = dict(params or {})
        params.setdefault("per_page", DEFAULT_PER_PAGE)
        page = 1

        while True:
            params["page"] = page
            response = self._request("GET", endpoint, params=params, operation=f"{operation}-page{page}")
            items = self._json(response, operation)

            if not items:
                break

            yield from items

            if "next" not in response.links:
                break

            page += 1

    def search_page(self, query: str, page: int = 1) -> SearchPage:
        """
        Fetch one page of issue search results, most recently updated first.

        Args:
            query: GitHub search query (e.g. "is:pr author:alice updated:>=2024-01-01")
            page: 1-based page number

        Returns:
            SearchPage with the items and pagination info from the Link header
        """
        params = {
            "q": query,
            "per_page": SEARCH_PER_PAGE,
            "page": page,
            "sort": "updated",
            "order": "desc",
        }
        response = self._request("GET", "/search/issues", params=params, operation=f"search-page{page}")
        data = self._json(response, "search")
        links = response.links

        return SearchPage(
            items=list(data.get("items") or []),
            has_next_page="next" in links,
            last_page=_page_from_url(links.get("last", {}).get("url")),
            total_count=int(data.get("total_count") or 0),
        )

    def get_pull(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        """Get full details for a pull request."""
        response = self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}", operation=f"PR#{number}")
        return self._json(response, f"PR#{number}")

    def list_pull_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        """List review comments on a pull request."""
        return list(self._paginate(
            f"/repos/{owner}/{repo}/pulls/{number}/comments",
            operation=f"Comments-PR#{number}",
        ))

    def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        response = self._request("GET", f"/repos/{owner}/{repo}/issues/{number}", operation=f"Issue#{number}")
        return self._json(response, f"Issue#{number}")

    def check_rate_limit(self) -> RateLimitStatus:
        """Check current rate limit status."""
        response = self._request("GET", "/rate_limit", operation="RateLimitCheck")
        data = self._json(response, "RateLimitCheck")
        resources = data.get("resources", {})
        return RateLimitStatus(
            core=_parse_bucket(resources.get("core", {})),
            search=_parse_bucket(resources.get("search", {})),
            raw=data,
        )
