from __future__ import annotations

from ghfeed.mentions import CLOSING_KEYWORDS, _closing_pattern, mentions


def test_closing_keyword():
    assert mentions("fixes #42", 42, "o", "r")


def test_every_closing_keyword():
    for keyword in CLOSING_KEYWORDS:
        assert mentions(f"This {keyword} #7 for good", 7, "o", "r"), keyword


def test_short_form():
    assert mentions("See #42 for details", 42, "o", "r")
    assert mentions("#42", 42, "o", "r")
    assert mentions("(#42).", 42, "o", "r")


def test_issue_and_pull_urls():
    assert mentions("https://platform/o/r/issues/42", 42, "o", "r")
    assert mentions("see https://github.com/o/r/pull/42#discussion_r1", 42, "o", "r")


def test_case_insensitive():
    assert mentions("CLOSES #42", 42, "o", "r")
    assert mentions("https://github.com/Owner/Repo/issues/42", 42, "owner", "repo")


def test_number_boundary():
    assert not mentions("#420", 42, "o", "r")
    assert not mentions("https://github.com/o/r/issues/421", 42, "o", "r")


def test_url_for_other_repo_does_not_match():
    assert not mentions("https://github.com/other/r/issues/42", 42, "o", "r")


def test_empty_text():
    assert not mentions("", 42, "o", "r")
    assert not mentions(None, 42, "o", "r")


def test_no_reference():
    assert not mentions("Refactor the parser", 42, "o", "r")
    assert not mentions("issue 42", 42, "o", "r")


def test_closing_keyword_form_matches_on_its_own():
    assert _closing_pattern(42).search("This Resolves  #42")
    assert not _closing_pattern(42).search("See #42")
    assert not _closing_pattern(42).search("prefixes #42")
