"""
Terminal rendering for the activity feed.

Line format:
    [● ][-- STATE ]YYYY/MM/DD LABEL user owner/repo#n - title
       🔗 https://github.com/owner/repo/pull/n   (with --links)

The update marker is shown for items that changed since the last run.
Issues nested under a pull request carry their state.
"""

from __future__ import annotations

import click

from .feed import FeedReport
from .labels import ASSIGNED, AUTHORED, COMMENTED, MENTIONED, REVIEW_REQUESTED, REVIEWED
from .models import ActivityRecord, IssueActivity, PullRequestActivity


SEPARATOR = "-" * 42
UPDATE_ICON = "● "
EMPTY_DATE = " " * 10
BAR_WIDTH = 50

LABEL_COLORS = {
    AUTHORED: "cyan",
    MENTIONED: "yellow",
    ASSIGNED: "magenta",
    COMMENTED: "blue",
    REVIEWED: "green",
    REVIEW_REQUESTED: "red",
    "Involved": "bright_black",
    "Recent Activity": "bright_cyan",
}

USER_COLORS = (
    "bright_green",
    "bright_yellow",
    "bright_blue",
    "bright_magenta",
    "bright_cyan",
    "bright_red",
    "green",
    "yellow",
    "blue",
    "magenta",
    "cyan",
)

STATE_COLORS = {
    "open": "green",
    "closed": "red",
    "merged": "magenta",
}

FNV32_OFFSET = 0x811C9DC5
FNV32_PRIME = 0x01000193


def fnv1a_32(data: bytes) -> int:
    h = FNV32_OFFSET
    for byte in data:
        h ^= byte
        h = (h * FNV32_PRIME) & 0xFFFFFFFF
    return h


def label_color(label: str) -> str:
    return LABEL_COLORS.get(label, "white")


def user_color(username: str) -> str:
    """Stable per-user colour, so the same login always looks the same."""
    return USER_COLORS[fnv1a_32(username.encode("utf-8")) % len(USER_COLORS)]


def state_color(state: str) -> str:
    return STATE_COLORS.get(state, "white")


def format_item(record: ActivityRecord, nested: bool = False, show_links: bool = False) -> list[str]:
    """Render one PR or issue as its display line(s)."""
    date = record.updated_at.strftime("%Y/%m/%d") if record.updated_at else EMPTY_DATE

    prefix = ""
    link_indent = "   "
    if nested and record.state:
        prefix = f"-- {click.style(record.state.upper(), fg=state_color(record.state))} "
        link_indent = "      "

    icon = click.style(UPDATE_ICON, fg="yellow", bold=True) if record.has_updates else ""

    lines = [
        f"{icon}{prefix}{date} "
        f"{click.style(record.label.upper(), fg=label_color(record.label))} "
        f"{click.style(record.author, fg=user_color(record.author))} "
        f"{record.repo_full_name}#{record.number} - {record.title}"
    ]
    if show_links and record.html_url:
        lines.append(f"{link_indent}🔗 {record.html_url}")
    return lines


def _section(title: str, color: str, lines: list[str], first: bool) -> list[str]:
    header = [] if first else [""]
    return header + [click.style(title, fg=color, bold=True), SEPARATOR] + lines


def _pr_lines(prs: list[PullRequestActivity], show_links: bool) -> list[str]:
    lines: list[str] = []
    for pr in prs:
        lines.extend(format_item(pr, show_links=show_links))
        for issue in pr.linked_issues:
            lines.extend(format_item(issue, nested=True, show_links=show_links))
    return lines


def _issue_lines(issues: list[IssueActivity], show_links: bool) -> list[str]:
    lines: list[str] = []
    for issue in issues:
        lines.extend(format_item(issue, show_links=show_links))
    return lines


def render_report(report: FeedReport, show_links: bool = False, debug: bool = False) -> str:
    """Render the whole feed as text (with ANSI styles)."""
    lines: list[str] = []

    if report.is_empty:
        lines.append("No open activity found")
    else:
        sections = [
            ("OPEN PULL REQUESTS:", "bright_green", _pr_lines(report.open_prs, show_links)),
            (
                "CLOSED/MERGED PULL REQUESTS:",
                "bright_red",
                _pr_lines(
                    sorted(report.closed_prs + report.merged_prs, key=ActivityRecord.sort_key, reverse=True),
                    show_links,
                ),
            ),
            ("OPEN ISSUES:", "bright_green", _issue_lines(report.open_issues, show_links)),
            ("CLOSED ISSUES:", "bright_red", _issue_lines(report.closed_issues, show_links)),
        ]
        for title, color, section_lines in sections:
            if section_lines:
                lines.extend(_section(title, color, section_lines, first=not lines))

    if report.persist_failures:
        lines.append("")
        lines.append(
            f"{click.style('Warning:', fg='yellow', bold=True)} {report.persist_failures} "
            "database write error(s) occurred. Offline mode may be incomplete."
        )
        if not debug:
            lines.append("Run with --debug to see detailed error messages.")

    return "\n".join(lines)


class Progress:
    """Single-line progress bar redrawn in place while fetching."""

    def __init__(self, total: int = 0, enabled: bool = True):
        self.current = 0
        self.total = total
        self.enabled = enabled

    def increment(self, n: int = 1) -> None:
        self.current += n
        self.display()

    def add_to_total(self, n: int) -> None:
        self.total += n
        self.display()

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(self.current / self.total * 100, 100.0)

    def bar(self) -> tuple[str, str]:
        """Return (bar text, colour) for the current percentage."""
        percentage = self.percentage
        filled = int(percentage / 2)
        chars = []
        for i in range(BAR_WIDTH):
            if i < filled:
                chars.append("=")
            elif i == filled:
                chars.append(">")
            else:
                chars.append(" ")

        if percentage < 33:
            color = "red"
        elif percentage < 66:
            color = "yellow"
        else:
            color = "green"
        return "".join(chars), color

    def render(self) -> str:
        bar, color = self.bar()
        return (
            f"\r[{click.style(bar, fg=color)}] "
            f"{click.style(str(self.current), fg='cyan')}/{click.style(str(self.total), fg='cyan')} "
            f"({click.style(f'{self.percentage:.0f}%', fg=color)}) "
        )

    def display(self) -> None:
        if self.enabled:
            click.echo(self.render(), nl=False)

    def clear(self) -> None:
        if self.enabled:
            click.echo("\r" + " " * 80 + "\r", nl=False)
