"""GuidelineStore: learned review guidelines in a human-editable Markdown file.

File layout (both sections optional, anything else in the file is preserved):

    # Review guidelines

    ## Focus

    Free-form text describing what reviews should concentrate on.

    ## Skip

    - unused imports
    - typos in comments

Only the feedback-learning step appends to the Skip section, and only bullets
that are not already present (compared case-insensitively). Operators may edit
the file by hand at any time; writes hold an exclusive lock and replace the
file atomically so a hand edit is never interleaved with an append.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from prwarden_store.locking import atomic_write_text, exclusive_lock

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^(#{1,2})\s+(.*?)\s*$")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.*?)\s*$")

_TEMPLATE = "# Review guidelines\n\n## Focus\n\n\n## Skip\n\n"


@dataclass
class Guidelines:
    focus: str = ""
    skip: list[str] = field(default_factory=list)

    def has_skip(self, category: str) -> bool:
        wanted = normalize_category(category)
        return any(normalize_category(c) == wanted for c in self.skip)


def normalize_category(category: str) -> str:
    return " ".join(category.split()).casefold()


def parse_guidelines(text: str) -> Guidelines:
    """Extract the Focus text and Skip bullets from guideline Markdown."""
    focus_lines: list[str] = []
    skip: list[str] = []
    section = None
    for line in text.splitlines():
        heading = _HEADING_RE.match(line)
        if heading:
            title = heading.group(2).strip().lower()
            section = title if heading.group(1) == "##" and title in ("focus", "skip") else None
            continue
        if section == "focus":
            focus_lines.append(line)
        elif section == "skip":
            bullet = _BULLET_RE.match(line)
            if bullet and bullet.group(1):
                skip.append(bullet.group(1))
    return Guidelines(focus="\n".join(focus_lines).strip(), skip=skip)


def _append_to_skip_section(text: str, categories: list[str]) -> str:
    bullets = [f"- {c}" for c in categories]
    lines = text.splitlines()

    start = None
    for i, line in enumerate(lines):
        heading = _HEADING_RE.match(line)
        if heading and heading.group(1) == "##" and heading.group(2).strip().lower() == "skip":
            start = i
            break

    if start is None:
        body = text.rstrip("\n")
        prefix = body + "\n\n" if body else ""
        return prefix + "## Skip\n\n" + "\n".join(bullets) + "\n"

    end = len(lines)
    for j in range(start + 1, len(lines)):
        if _HEADING_RE.match(lines[j]):
            end = j
            break

    insert_at = end
    while insert_at > start + 1 and not lines[insert_at - 1].strip():
        insert_at -= 1
    if insert_at == start + 1:
        # Empty section: keep one blank line under the heading.
        bullets = [""] + bullets
    trailer = [""] if end < len(lines) else []
    new_lines = lines[:insert_at] + bullets + trailer + lines[end:]
    return "\n".join(new_lines).rstrip("\n") + "\n"


class GuidelineStore:
    """Process-wide, file-backed set of skip categories plus focus text."""

    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def read_text(self) -> str:
        if not self._path.exists():
            return ""
        return self._path.read_text(encoding="utf-8")

    def load(self) -> Guidelines:
        return parse_guidelines(self.read_text())

    def ensure_exists(self) -> bool:
        """Create the file from the empty template. Returns False if it already existed."""
        with exclusive_lock(self._path, timeout=10):
            if self._path.exists():
                return False
            atomic_write_text(self._path, _TEMPLATE)
        return True

    def skip_categories(self) -> list[str]:
        return self.load().skip

    def add_skip_categories(self, categories: list[str]) -> list[str]:
        """Append categories not already present. Returns the ones actually added.

        Appending an already-present category is a no-op; nothing is written
        when every category is already known.
        """
        with exclusive_lock(self._path, timeout=10):
            text = self.read_text()
            known = {normalize_category(c) for c in parse_guidelines(text).skip}
            added: list[str] = []
            for category in categories:
                label = " ".join(category.split())
                key = normalize_category(label)
                if not key or key in known:
                    continue
                known.add(key)
                added.append(label)
            if not added:
                return []
            atomic_write_text(self._path, _append_to_skip_section(text or _TEMPLATE, added))
        logger.info("Added %d skip categor%s to %s", len(added), "y" if len(added) == 1 else "ies", self._path)
        return added
