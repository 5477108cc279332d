from __future__ import annotations

import click

from ghfeed.feed import FeedReport
from ghfeed.labels import AUTHORED, ISSUE, MENTIONED, PR
from ghfeed.models import record_from_item
from ghfeed.render import Progress, fnv1a_32, format_item, label_color, render_report, user_color


def _record(kind: str, number: int, state: str = "open", label: str = AUTHORED, has_updates: bool = False):
    item = {
        "number": number,
        "title": f"Title {number}",
        "state": state,
        "user": {"login": "alice"},
        "html_url": f"https://github.com/o/r/issues/{number}",
        "updated_at": "2024-05-01T10:00:00Z",
    }
    record = record_from_item(kind, item, label, "o", "r")
    record.has_updates = has_updates
    return record


def plain(lines) -> str:
    return click.unstyle("\n".join(lines) if isinstance(lines, list) else lines)


def test_fnv1a_known_values():
    assert fnv1a_32(b"") == 0x811C9DC5
    assert fnv1a_32(b"a") == 0xE40C292C


def test_user_color_is_stable():
    assert user_color("alice") == user_color("alice")
    assert label_color(AUTHORED) == "cyan"
    assert label_color("Something else") == "white"


def test_format_item_line():
    line = plain(format_item(_record(PR, 12)))
    assert line == "2024/05/01 AUTHORED alice o/r#12 - Title 12"


def test_format_item_update_marker_and_link():
    lines = format_item(_record(PR, 12, has_updates=True), show_links=True)
    assert plain(lines[0]).startswith("● 2024/05/01")
    assert plain(lines[1]) == "   🔗 https://github.com/o/r/issues/12"


def test_nested_issue_shows_state():
    lines = format_item(_record(ISSUE, 3, state="closed"), nested=True, show_links=True)
    assert plain(lines[0]).startswith("-- CLOSED 2024/05/01 AUTHORED")
    assert plain(lines[1]).startswith("      🔗 ")


def test_render_empty_report():
    assert plain(render_report(FeedReport())) == "No open activity found"


def test_render_sections_and_nesting():
    pr = _record(PR, 10)
    pr.linked_issues.append(_record(ISSUE, 5, label=MENTIONED))
    report = FeedReport(
        open_prs=[pr],
        merged_prs=[_record(PR, 11, state="closed")],
        closed_issues=[_record(ISSUE, 6, state="closed")],
    )

    output = plain(render_report(report))

    assert output.splitlines() == [
        "OPEN PULL REQUESTS:",
        "-" * 42,
        "2024/05/01 AUTHORED alice o/r#10 - Title 10",
        "-- OPEN 2024/05/01 MENTIONED alice o/r#5 - Title 5",
        "",
        "CLOSED/MERGED PULL REQUESTS:",
        "-" * 42,
        "2024/05/01 AUTHORED alice o/r#11 - Title 11",
        "",
        "CLOSED ISSUES:",
        "-" * 42,
        "2024/05/01 AUTHORED alice o/r#6 - Title 6",
    ]


def test_render_persist_failure_warning():
    output = plain(render_report(FeedReport(persist_failures=2)))
    assert "Warning: 2 database write error(s) occurred. Offline mode may be incomplete." in output
    assert "Run with --debug" in output

    debug_output = plain(render_report(FeedReport(persist_failures=2), debug=True))
    assert "Run with --debug" not in debug_output


def test_progress_bar():
    progress = Progress(total=2, enabled=False)
    assert progress.bar() == (">" + " " * 49, "red")

    progress.increment()
    bar, color = progress.bar()
    assert bar == "=" * 25 + ">" + " " * 24
    assert color == "yellow"

    progress.increment()
    assert progress.bar() == ("=" * 50, "green")
    assert "2/2" in click.unstyle(progress.render())


def test_progress_with_zero_total():
    progress = Progress(total=0, enabled=False)
    assert progress.percentage == 0.0


def test_closed_and_merged_prs_share_date_order():
    closed = _record(PR, 1, state="closed")
    merged = record_from_item(PR, {
        "number": 2,
        "title": "Title 2",
        "state": "closed",
        "merged": True,
        "user": {"login": "alice"},
        "updated_at": "2024-05-09T10:00:00Z",
    }, AUTHORED, "o", "r")

    output = plain(render_report(FeedReport(closed_prs=[closed], merged_prs=[merged])))

    assert output.splitlines()[2:] == [
        "2024/05/09 AUTHORED alice o/r#2 - Title 2",
        "2024/05/01 AUTHORED alice o/r#1 - Title 1",
    ]
