"""
Activity records for pull requests and issues.

Records are built from raw GitHub search items (the issues search endpoint
returns both kinds; pull requests carry a "pull_request" key). The raw item
is kept so it can be written back to the cache unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .labels import ISSUE, PR


class MalformedItemError(ValueError):
    """A search item is missing fields needed to identify it."""


def build_item_key(owner: str, repo: str, number: int) -> str:
    """Key format shared by the merge maps and the cache: owner/repo#number."""
    return f"{owner}/{repo}#{number}"


def build_comment_key(owner: str, repo: str, number: int, comment_type: str, comment_id: int) -> str:
    return f"{owner}/{repo}#{number}/{comment_type}/{comment_id}"


def split_item_key(key: str) -> tuple[str, str, int]:
    """Inverse of build_item_key."""
    owner, _, rest = key.partition("/")
    repo, _, number = rest.partition("#")
    if not owner or not repo or not number.isdigit():
        raise MalformedItemError(f"Invalid item key: {key}")
    return owner, repo, int(number)


def parse_repository_url(url: str | None) -> tuple[str, str]:
    """Extract (owner, repo) from an API repository URL like .../repos/owner/repo."""
    parts = [p for p in (url or "").rstrip("/").split("/") if p]
    if len(parts) < 2:
        raise MalformedItemError(f"Invalid repository URL format: {url}")
    return parts[-2], parts[-1]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a GitHub ISO 8601 timestamp into an aware datetime, or None if it is not one."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_pull_request_item(item: dict[str, Any]) -> bool:
    """Search items carry pull_request link metadata only when they are PRs."""
    return item.get("pull_request") is not None


@dataclass
class ActivityRecord:
    """One GitHub item plus the user's relationship to it."""
    owner: str
    repo: str
    number: int
    label: str
    title: str = ""
    state: str = ""
    author: str = ""
    html_url: str = ""
    body: str = ""
    updated_at: datetime | None = None
    has_updates: bool = False
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    kind = PR

    @property
    def key(self) -> str:
        return build_item_key(self.owner, self.repo, self.number)

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    def sort_key(self) -> datetime:
        return self.updated_at or datetime.min.replace(tzinfo=timezone.utc)

    def apply_item(self, item: dict[str, Any]) -> None:
        """Refresh the displayed fields from a raw item."""
        user = item.get("user") or {}
        self.title = item.get("title") or ""
        self.state = item.get("state") or ""
        self.author = user.get("login") or ""
        self.html_url = item.get("html_url") or ""
        self.body = item.get("body") or ""
        self.updated_at = parse_timestamp(item.get("updated_at"))
        self.raw = item


@dataclass
class PullRequestActivity(ActivityRecord):
    """A pull request and the issues found to reference it."""
    merged: bool = False
    linked_issues: list["IssueActivity"] = field(default_factory=list)

    kind = PR

    @property
    def is_merged(self) -> bool:
        return self.merged

    def apply_item(self, item: dict[str, Any]) -> None:
        super().apply_item(item)
        pull_request = item.get("pull_request") or {}
        self.merged = bool(item.get("merged") or item.get("merged_at") or pull_request.get("merged_at"))


@dataclass
class IssueActivity(ActivityRecord):
    """A standalone or linked issue."""

    kind = ISSUE


RECORD_TYPES: dict[str, type[ActivityRecord]] = {
    PR: PullRequestActivity,
    ISSUE: IssueActivity,
}


def record_from_item(
    kind: str,
    item: dict[str, Any],
    label: str,
    owner: str | None = None,
    repo: str | None = None,
) -> ActivityRecord:
    """
    Build an ActivityRecord from a raw search or cached item.

    Owner and repo are taken from repository_url unless given.

    Raises:
        MalformedItemError: if the item cannot be identified
    """
    if owner is None or repo is None:
        owner, repo = parse_repository_url(item.get("repository_url"))

    number = item.get("number")
    if not isinstance(number, int):
        raise MalformedItemError(f"Item in {owner}/{repo} has no number")

    record = RECORD_TYPES[kind](owner=owner, repo=repo, number=number, label=label)
    record.apply_item(item)
    return record
