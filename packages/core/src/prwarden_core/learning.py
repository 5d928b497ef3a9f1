"""Feedback categorisation for skipped issues.

``categorize`` turns a skipped issue (and optionally the operator's reason for
skipping it) into a short reusable label such as "unused imports", independent
of the file, line or identifier involved. It is a pure function: the same input
always yields the same label, so deduplication against the guideline store is
deterministic.
"""

from __future__ import annotations

import re

from prwarden_core.models import Issue

# Checked in order; the first pattern that matches wins.
_SYNONYMS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bunused (import|imports|module)\b|\bimport\w* (is |are )?(never |not )?used\b"), "unused imports"),
    (re.compile(r"\bunused (variable|var|local|parameter|param|argument|arg)s?\b"), "unused variables"),
    (re.compile(r"\bdead code\b|\bunreachable\b|\bcommented[- ]out code\b"), "dead code"),
    (re.compile(r"\btypos?\b|\bspelling\b|\bmisspell"), "typos"),
    (re.compile(r"\bnam(e|es|ing)\b|\brenam(e|ed|ing)\b"), "naming"),
    (re.compile(r"\bdocstrings?\b|\bdocumentation\b|\bmissing (doc|comment)s?\b|\bjsdoc\b"), "missing documentation"),
    (re.compile(r"\bformat(ting)?\b|\bwhitespace\b|\bindent(ation)?\b|\blint\b|\bline length\b"), "formatting"),
    (re.compile(r"\bmagic (number|string|value)s?\b|\bhard[- ]?coded\b"), "magic numbers"),
    (re.compile(r"\btype (hint|annotation)s?\b|\btyping\b"), "type hints"),
    (re.compile(r"\blog(ging|s)?\b|\bprint statements?\b|\bdebug output\b"), "logging"),
    (re.compile(r"\berror handling\b|\bexceptions?\b|\bunwrap\b|\bbare except\b"), "error handling"),
    (re.compile(r"\btests?\b|\bcoverage\b"), "test coverage"),
    (re.compile(r"\bduplicat(e|ed|ion)\b|\bdry\b"), "duplicated code"),
]

_CODE_SPAN_RE = re.compile(r"`[^`]*`")
_LOCATION_RE = re.compile(r"\s+(in|at|on)\s+\S+[/.:]\S*")
_PUNCT_RE = re.compile(r"[^\w\s-]+")
_MAX_FALLBACK_WORDS = 6


def _normalize(text: str) -> str:
    text = _CODE_SPAN_RE.sub(" ", text.lower())
    text = _LOCATION_RE.sub(" ", text)
    text = _PUNCT_RE.sub(" ", text)
    return " ".join(text.split())


def categorize(issue: Issue, skip_reason: str | None = None) -> str:
    """Return an abstract category label for a skipped issue.

    The skip reason, when given, is the operator's own wording and takes
    precedence over the issue body. Text that matches no known synonym is
    reduced to its first few normalised words.
    """
    for source in (skip_reason, issue.body):
        if not source:
            continue
        text = _normalize(source)
        for pattern, label in _SYNONYMS:
            if pattern.search(text):
                return label

    text = _normalize(skip_reason or issue.body)
    words = text.split()[:_MAX_FALLBACK_WORDS]
    return " ".join(words) or issue.severity.value
