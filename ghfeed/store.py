"""
SQLite-backed key-value cache for ghfeed.

Schema:
- schema_version: Current schema version
- kv: JSON values keyed by (bucket, key)

Buckets:
- pull_requests: {"item": <search item>, "label": <label>} keyed by owner/repo#number
- issues: same shape as pull_requests
- comments: review comments keyed by owner/repo#number/pr_review_comment/<id>

Entries written by older versions stored the bare item without a label;
they are read back with an empty label.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generator, Iterator

from .config import get_db_path
from .labels import ISSUE, PR
from .models import build_comment_key, build_item_key


logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1

PULL_REQUESTS_BUCKET = "pull_requests"
ISSUES_BUCKET = "issues"
COMMENTS_BUCKET = "comments"

BUCKETS = (PULL_REQUESTS_BUCKET, ISSUES_BUCKET, COMMENTS_BUCKET)

BUCKET_FOR_KIND = {
    PR: PULL_REQUESTS_BUCKET,
    ISSUE: ISSUES_BUCKET,
}

PR_REVIEW_COMMENT = "pr_review_comment"

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS kv (
    bucket TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (bucket, key)
);
"""


@dataclass
class CachedItem:
    """A cached PR or issue with the label it was stored under."""
    key: str
    item: dict[str, Any]
    label: str


@dataclass
class StoreStats:
    pull_requests: int
    issues: int
    comments: int


def _unwrap(value: Any) -> tuple[dict[str, Any], str] | None:
    """Split a stored value into (item, label), accepting the legacy unlabelled format."""
    if not isinstance(value, dict):
        return None
    if isinstance(value.get("item"), dict):
        return value["item"], value.get("label") or ""
    if "number" in value:
        return value, ""
    return None


class Store:
    """Key-value cache on top of a single SQLite file."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = get_db_path()
        self.db_path = db_path
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Ensure database schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connection."""
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Raw key-value access
    # =========================================================================

    def get(self, bucket: str, key: str) -> Any | None:
        """Return the decoded value for key, or None if absent or unreadable."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE bucket = ? AND key = ?",
                (bucket, key),
            ).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed cache entry {bucket}/{key}")
            return None

    def put(self, bucket: str, key: str, value: Any) -> None:
        """Insert or overwrite a value."""
        payload = json.dumps(value)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv (bucket, key, value) VALUES (?, ?, ?)
                ON CONFLICT(bucket, key) DO UPDATE SET value = excluded.value
                """,
                (bucket, key, payload),
            )

    def scan_all(self, bucket: str) -> Iterator[tuple[str, Any]]:
        """Iterate over every decodable (key, value) pair in a bucket."""
        return self._scan(bucket, "SELECT key, value FROM kv WHERE bucket = ? ORDER BY key", (bucket,))

    def scan_prefix(self, bucket: str, prefix: str) -> Iterator[tuple[str, Any]]:
        """Iterate over (key, value) pairs whose key starts with prefix."""
        return self._scan(
            bucket,
            "SELECT key, value FROM kv WHERE bucket = ? AND substr(key, 1, length(?)) = ? ORDER BY key",
            (bucket, prefix, prefix),
        )

    def _scan(self, bucket: str, query: str, params: tuple[Any, ...]) -> Iterator[tuple[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        for row in rows:
            try:
                yield row["key"], json.loads(row["value"])
            except json.JSONDecodeError:
                logger.warning(f"Ignoring malformed cache entry {bucket}/{row['key']}")

    def stats(self) -> StoreStats:
        """Count entries per bucket."""
        with self._connect() as conn:
            rows = conn.execute("SELECT bucket, COUNT(1) AS n FROM kv GROUP BY bucket").fetchall()
        counts = {row["bucket"]: int(row["n"]) for row in rows}
        return StoreStats(
            pull_requests=counts.get(PULL_REQUESTS_BUCKET, 0),
            issues=counts.get(ISSUES_BUCKET, 0),
            comments=counts.get(COMMENTS_BUCKET, 0),
        )

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv")

    # =========================================================================
    # Pull requests and issues
    # =========================================================================

    def save_item(self, kind: str, owner: str, repo: str, item: dict[str, Any], label: str) -> None:
        """Save a PR or issue together with its current label."""
        key = build_item_key(owner, repo, item["number"])
        self.put(BUCKET_FOR_KIND[kind], key, {"item": item, "label": label})
        logger.debug(f"[DB] Saved {kind} {key} with label {label}")

    def get_item_with_label(self, kind: str, owner: str, repo: str, number: int) -> CachedItem | None:
        key = build_item_key(owner, repo, number)
        unwrapped = _unwrap(self.get(BUCKET_FOR_KIND[kind], key))
        if unwrapped is None:
            return None
        item, label = unwrapped
        return CachedItem(key=key, item=item, label=label)

    def list_items_with_labels(self, kind: str) -> list[CachedItem]:
        """Load every cached PR or issue."""
        bucket = BUCKET_FOR_KIND[kind]
        cached: list[CachedItem] = []
        for key, value in self.scan_all(bucket):
            unwrapped = _unwrap(value)
            if unwrapped is None:
                logger.warning(f"Ignoring unreadable {kind} entry {key}")
                continue
            item, label = unwrapped
            cached.append(CachedItem(key=key, item=item, label=label))
        logger.debug(f"[DB] Loaded {len(cached)} {kind} entries from {bucket}")
        return cached

    # =========================================================================
    # Comments
    # =========================================================================

    def save_pr_comment(self, owner: str, repo: str, number: int, comment: dict[str, Any]) -> None:
        key = build_comment_key(owner, repo, number, PR_REVIEW_COMMENT, int(comment.get("id") or 0))
        self.put(COMMENTS_BUCKET, key, comment)
        logger.debug(f"[DB] Saved PR comment {key}")

    def get_pr_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        prefix = f"{build_item_key(owner, repo, number)}/{PR_REVIEW_COMMENT}/"
        return [value for _, value in self.scan_prefix(COMMENTS_BUCKET, prefix) if isinstance(value, dict)]
