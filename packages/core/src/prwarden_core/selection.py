"""Selection expressions over 1-based issue ordinals.

Recognised forms::

    all            every issue
    critical       issues with severity CRITICAL
    none           no issue (everything is skipped)
    1,3,5-7        explicit ordinals and inclusive ranges
    quit | q       cancel the session
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from prwarden_core.errors import InvalidSelection
from prwarden_core.models import Issue, Severity

_RANGE_RE = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_CANCEL_WORDS = ("quit", "q", "cancel", "exit")


@dataclass(frozen=True)
class Selection:
    """Parsed selection: the chosen issue ids, or a cancellation request."""

    ids: frozenset[int] = frozenset()
    cancelled: bool = False

    def __contains__(self, issue_id: int) -> bool:
        return issue_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)


CANCEL = Selection(cancelled=True)


def parse_selection(expr: str, issues: Sequence[Issue]) -> Selection:
    """Parse ``expr`` against ``issues``; raises InvalidSelection on bad input.

    Ordinals refer to positions in ``issues`` (1-based), which is the order the
    operator was shown.
    """
    text = (expr or "").strip().lower()
    if not text:
        raise InvalidSelection("Empty selection. Use all, critical, none, a list like 1,3,5-7, or quit.")

    if text in _CANCEL_WORDS:
        return CANCEL
    if text == "all":
        return Selection(frozenset(issue.id for issue in issues))
    if text == "none":
        return Selection()
    if text == "critical":
        return Selection(frozenset(issue.id for issue in issues if issue.severity is Severity.CRITICAL))

    count = len(issues)
    ordinals: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            raise InvalidSelection(f"Empty item in selection {expr!r}")
        match = _RANGE_RE.match(part)
        if match:
            low, high = int(match.group(1)), int(match.group(2))
            if low > high:
                raise InvalidSelection(f"Range {part!r} is backwards")
        elif part.isdigit():
            low = high = int(part)
        else:
            raise InvalidSelection(f"Cannot understand {part!r}; expected a number or a range like 5-7")
        if low < 1 or high > count:
            raise InvalidSelection(f"{part!r} is out of range; there are {count} issue(s)")
        ordinals.update(range(low, high + 1))

    return Selection(frozenset(issues[n - 1].id for n in ordinals))
