"""Tests for issue list parsing."""

import json

import pytest

from prwarden_core.issues import load_issues, parse_issue_line, parse_issues_json
from prwarden_core.models import Severity, SubmissionState


class TestParseIssuesJson:
    def test_basic_list(self):
        raw = json.dumps(
            [
                {"file": "src/a.py", "line": 3, "severity": "critical", "comment": "SQL injection"},
                {"path": "src/b.py", "line_number": "9", "body": "Rename this"},
            ]
        )
        issues = parse_issues_json(raw)
        assert [i.id for i in issues] == [1, 2]
        assert issues[0].severity is Severity.CRITICAL
        assert issues[0].location == "src/a.py:3"
        assert issues[1].severity is Severity.SUGGESTION
        assert issues[1].line_number == 9
        assert all(i.submission_state is SubmissionState.PENDING for i in issues)

    def test_fenced_json(self):
        raw = '```json\n[{"file": "a.py", "line": 1, "comment": "use `with`"}]\n```'
        [issue] = parse_issues_json(raw)
        assert issue.body == "use `with`"

    def test_incomplete_entries_skipped(self):
        raw = json.dumps(
            [
                {"file": "a.py", "comment": "no line"},
                {"file": "a.py", "line": 0, "comment": "line zero"},
                {"file": "a.py", "line": "x", "comment": "bad line"},
                {"file": "a.py", "line": 2, "comment": "ok"},
            ]
        )
        [issue] = parse_issues_json(raw)
        assert issue.id == 1
        assert issue.line_number == 2

    def test_start_id(self):
        raw = json.dumps([{"file": "a.py", "line": 1, "comment": "x"}])
        assert parse_issues_json(raw, start_id=5)[0].id == 5

    @pytest.mark.parametrize("raw", ["not json", '{"file": "a.py"}', "[1, 2]"])
    def test_rejects_non_lists(self, raw):
        with pytest.raises(ValueError):
            parse_issues_json(raw)


class TestParseIssueLine:
    def test_with_severity(self):
        issue = parse_issue_line("src/auth.py:42 critical Token is logged", 3)
        assert issue.id == 3
        assert issue.severity is Severity.CRITICAL
        assert issue.file_path == "src/auth.py"
        assert issue.line_number == 42
        assert issue.body == "Token is logged"

    def test_without_severity(self):
        issue = parse_issue_line("src/auth.py:7 Consider a constant here", 1)
        assert issue.severity is Severity.SUGGESTION
        assert issue.body == "Consider a constant here"

    @pytest.mark.parametrize("text", ["no location here", "src/a.py:0 nit zero", "src/a.py: text"])
    def test_malformed(self, text):
        with pytest.raises(ValueError):
            parse_issue_line(text, 1)


class TestLoadIssues:
    def test_line_file(self, tmp_path):
        path = tmp_path / "issues.txt"
        path.write_text("# review notes\n\nsrc/a.py:1 nit spacing\nsrc/b.py:2 critical leak\n")
        issues = load_issues(path)
        assert [(i.id, i.severity) for i in issues] == [(1, Severity.NITPICK), (2, Severity.CRITICAL)]

    def test_json_file(self, tmp_path):
        path = tmp_path / "issues.json"
        path.write_text(json.dumps([{"file": "a.py", "line": 4, "comment": "x"}]))
        [issue] = load_issues(path)
        assert issue.line_number == 4
