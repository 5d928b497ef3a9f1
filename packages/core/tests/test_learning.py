"""Tests for skipped-issue categorisation."""

import pytest

from prwarden_core.learning import categorize
from prwarden_core.models import Issue, Severity


def _issue(body, severity=Severity.NITPICK):
    return Issue(id=1, severity=severity, file_path="src/auth.rs", line_number=3, body=body)


@pytest.mark.parametrize(
    "body, expected",
    [
        ("unused import `os` in auth.rs", "unused imports"),
        ("Unused imports: `sys`, `re`", "unused imports"),
        ("The import `json` is never used", "unused imports"),
        ("unused variable `tmp`", "unused variables"),
        ("Typo in comment: 'recieve'", "typos"),
        ("Consider renaming `x` to something descriptive", "naming"),
        ("Missing docstring for public function", "missing documentation"),
        ("Trailing whitespace on this line", "formatting"),
        ("Magic number 86400 should be a constant", "magic numbers"),
        ("Add type hints to the signature", "type hints"),
        ("Remove the debug print statement", "logging"),
        ("This code is unreachable after the return", "dead code"),
    ],
)
def test_known_categories(body, expected):
    assert categorize(_issue(body)) == expected


def test_location_and_identifier_do_not_matter():
    a = categorize(_issue("unused import `os` in auth.rs"))
    b = categorize(_issue("unused import `collections` in src/other/util.py"))
    assert a == b == "unused imports"


def test_skip_reason_takes_precedence():
    issue = _issue("Unused import `os`")
    assert categorize(issue, skip_reason="we never flag typos here") == "typos"


def test_unmatched_text_reduced_to_leading_words():
    issue = _issue("Prefer early returns over deeply nested conditionals in handlers")
    assert categorize(issue) == "prefer early returns over deeply nested"


def test_unmatched_text_is_deterministic():
    issue = _issue("Prefer early returns!")
    assert categorize(issue) == categorize(issue) == "prefer early returns"


def test_empty_body_falls_back_to_severity():
    assert categorize(_issue("`x`", severity=Severity.NITPICK)) == "nitpick"
