"""
Involvement labels and their priorities.

Every search category produces a label ("Authored", "Reviewed", ...). When
several categories report the same item, the label with the lowest priority
number wins. Pull requests and issues use separate tables.
"""

from __future__ import annotations

from typing import Iterable


AUTHORED = "Authored"
ASSIGNED = "Assigned"
REVIEWED = "Reviewed"
REVIEW_REQUESTED = "Review Requested"
COMMENTED = "Commented"
MENTIONED = "Mentioned"

PR = "pr"
ISSUE = "issue"

PR_LABEL_PRIORITY: dict[str, int] = {
    AUTHORED: 1,
    ASSIGNED: 2,
    REVIEWED: 3,
    REVIEW_REQUESTED: 4,
    COMMENTED: 5,
    MENTIONED: 6,
}

# No "Involved" tier: there is no involves:<user> issue query.
ISSUE_LABEL_PRIORITY: dict[str, int] = {
    AUTHORED: 1,
    ASSIGNED: 2,
    COMMENTED: 3,
    MENTIONED: 4,
}

UNKNOWN_PRIORITY = 999

_TABLES = {
    PR: PR_LABEL_PRIORITY,
    ISSUE: ISSUE_LABEL_PRIORITY,
}


def label_priority(label: str, kind: str = PR) -> int:
    """Return the priority of a label (1 is most important, unknown labels rank last)."""
    return _TABLES[kind].get(label, UNKNOWN_PRIORITY)


def should_replace(current: str, new: str, kind: str = PR) -> bool:
    """Return True if `new` should replace `current` as the item's label."""
    if not current:
        return True
    return label_priority(new, kind) < label_priority(current, kind)


def resolve_label(labels: Iterable[str], kind: str = PR) -> str:
    """Fold a sequence of labels down to the one that should be displayed."""
    resolved = ""
    for label in labels:
        if should_replace(resolved, label, kind):
            resolved = label
    return resolved
