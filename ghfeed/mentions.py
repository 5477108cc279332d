"""
Detect textual references to an issue or pull request number.

A text references number N of owner/repo when it contains:
- an issue or pull URL for owner/repo with number N (any host)
- the short form "#N"
- a closing keyword followed by "#N" ("fixes #N", "closes #N", ...)

Matching is case-insensitive and the number must not be followed by another
digit, so "#420" does not reference 42.
"""

from __future__ import annotations

import re


CLOSING_KEYWORDS = (
    "fixes",
    "fix",
    "closes",
    "close",
    "resolves",
    "resolve",
    "fixed",
    "closed",
    "resolved",
)


def _url_pattern(number: int, owner: str, repo: str) -> re.Pattern[str]:
    return re.compile(
        rf"/{re.escape(owner)}/{re.escape(repo)}/(?:issues|pull)/{number}(?!\d)",
        re.IGNORECASE,
    )


def _closing_pattern(number: int) -> re.Pattern[str]:
    keywords = "|".join(CLOSING_KEYWORDS)
    return re.compile(rf"\b(?:{keywords})\s+#{number}(?!\d)", re.IGNORECASE)


def _short_pattern(number: int) -> re.Pattern[str]:
    return re.compile(rf"#{number}(?!\d)")


def mentions(text: str | None, number: int, owner: str, repo: str) -> bool:
    """Return True if `text` references `number` in owner/repo."""
    if not text:
        return False
    if _url_pattern(number, owner, repo).search(text):
        return True
    if _closing_pattern(number).search(text):
        return True
    # Bare "#N" also covers every closing keyword form
    return bool(_short_pattern(number).search(text))

