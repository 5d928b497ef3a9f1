"""Building Issue lists from operator input or agent output.

Two input shapes are accepted:

- A JSON list, optionally wrapped in a ```json fence, of objects with
  ``file`` (or ``path``/``file_path``), ``line``, ``severity`` and ``comment``
  (or ``body``).
- Plain lines of the form ``path:line severity text``; the severity word is
  optional and defaults to suggestion.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from prwarden_core.models import Issue, Severity

logger = logging.getLogger(__name__)

_LINE_RE = re.compile(r"^(?P<path>[^\s:]+):(?P<line>\d+)\s+(?P<rest>.+)$")
_SEVERITY_WORDS = ("critical", "blocker", "major", "error", "suggestion", "minor", "nitpick", "nit", "style", "trivial")


def _strip_fence(raw: str) -> str:
    # Only the outer fence; backticks inside comment text are left alone.
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
    return re.sub(r"\s*```$", "", cleaned.strip())


def _first(item: dict, *keys):
    for key in keys:
        if item.get(key) not in (None, ""):
            return item[key]
    return None


def parse_issues_json(raw: str, start_id: int = 1) -> list[Issue]:
    """Parse a JSON issue list. Raises ValueError when the text is not one."""
    try:
        data = json.loads(_strip_fence(raw))
    except json.JSONDecodeError as e:
        raise ValueError(f"Issue list is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise ValueError("Issue list must be a JSON array")

    issues: list[Issue] = []
    for item in data:
        if not isinstance(item, dict):
            raise ValueError(f"Issue entries must be objects, got {item!r}")
        path = _first(item, "file", "path", "file_path")
        line = _first(item, "line", "line_number")
        body = _first(item, "comment", "body", "message")
        if not path or line is None or not body:
            logger.warning("Ignoring incomplete issue entry: %s", item)
            continue
        try:
            line_number = int(line)
        except (TypeError, ValueError):
            logger.warning("Ignoring issue entry with non-numeric line: %s", item)
            continue
        if line_number < 1:
            logger.warning("Ignoring issue entry with line < 1: %s", item)
            continue
        issues.append(
            Issue(
                id=start_id + len(issues),
                severity=Severity.parse(item.get("severity")),
                file_path=str(path),
                line_number=line_number,
                body=str(body).strip(),
            )
        )
    return issues


def parse_issue_line(text: str, issue_id: int) -> Issue:
    """Parse one ``path:line severity text`` line. Raises ValueError if malformed."""
    match = _LINE_RE.match(text.strip())
    if not match:
        raise ValueError(f"Expected 'path:line severity text', got {text.strip()!r}")
    line_number = int(match.group("line"))
    if line_number < 1:
        raise ValueError("Line numbers start at 1")
    rest = match.group("rest").strip()
    word, _, remainder = rest.partition(" ")
    if word.lower() in _SEVERITY_WORDS and remainder.strip():
        severity, body = Severity.parse(word), remainder.strip()
    else:
        severity, body = Severity.SUGGESTION, rest
    return Issue(id=issue_id, severity=severity, file_path=match.group("path"), line_number=line_number, body=body)


def load_issues(path: str | Path) -> list[Issue]:
    """Load issues from a file holding either a JSON list or one issue per line."""
    text = Path(path).read_text(encoding="utf-8")
    if _strip_fence(text).lstrip().startswith("["):
        return parse_issues_json(text)
    issues: list[Issue] = []
    for raw_line in text.splitlines():
        if not raw_line.strip() or raw_line.lstrip().startswith("#"):
            continue
        issues.append(parse_issue_line(raw_line, len(issues) + 1))
    return issues
