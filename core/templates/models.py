"""Data models for template parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

BracketIssueKind = Literal["stray_close", "unclosed_bracket", "nested_bracket", "empty_placeholder"]


@dataclass(frozen=True)
class PlaceholderOccurrence:
    """One occurrence of a placeholder in template text."""

    placeholder: str
    start: int
    end: int


@dataclass(frozen=True)
class BracketIssue:
    """A bracket sequence that cannot be treated as a placeholder."""

    kind: BracketIssueKind
    text: str
    start: int
    end: int


@dataclass
class ParseResult:
    """Placeholder parsing output."""

    placeholders: list[str] = field(default_factory=list)
    occurrences: list[PlaceholderOccurrence] = field(default_factory=list)
    issues: list[BracketIssue] = field(default_factory=list)
