"""Bracket placeholder extraction for plain template text.

Templates mark fill-in points as ``[PLACEHOLDER TEXT]``. The raw token, brackets
included, is the placeholder identity used by mappings, patterns and the
generation payload.
"""

from __future__ import annotations

import re
import zipfile
from collections.abc import Iterator
from pathlib import Path

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.document import Document as DocxDocument
from docx.text.paragraph import Paragraph

from core.templates.models import BracketIssue, ParseResult, PlaceholderOccurrence
from core.utils.errors import InvalidInputError, TemplateError

_PLACEHOLDER_RE = re.compile(r"\[[^\]]+\]")
_EMPTY_PLACEHOLDER_RE = re.compile(r"\[\]")
_OPEN_BRACKET = "["
_CLOSE_BRACKET = "]"
_TEXT_SUFFIXES = {".txt", ".md"}


def extract_placeholders(text: str) -> list[str]:
    """Return distinct placeholders in first-seen order.

    A template without placeholders yields an empty list.
    """

    _require_text(text)
    seen: set[str] = set()
    placeholders: list[str] = []
    for match in _PLACEHOLDER_RE.finditer(text):
        token = match.group(0)
        if token not in seen:
            seen.add(token)
            placeholders.append(token)
    return placeholders


def parse_template_text(text: str, strict: bool = False) -> ParseResult:
    """Parse placeholders and report malformed bracket sequences.

    Args:
        text: Raw template text.
        strict: When True, raise TemplateError if any bracket issue exists.

    Returns:
        ParseResult with distinct placeholders, every occurrence and bracket issues.
    """

    _require_text(text)
    result = ParseResult(placeholders=extract_placeholders(text))

    for match in _PLACEHOLDER_RE.finditer(text):
        result.occurrences.append(
            PlaceholderOccurrence(placeholder=match.group(0), start=match.start(), end=match.end())
        )

    for match in _EMPTY_PLACEHOLDER_RE.finditer(text):
        result.issues.append(
            BracketIssue(
                kind="empty_placeholder",
                text=match.group(0),
                start=match.start(),
                end=match.end(),
            )
        )

    result.issues.extend(_find_unbalanced_brackets(text))
    result.issues.sort(key=lambda item: (item.start, item.end, item.kind))

    if strict and result.issues:
        raise TemplateError("Malformed placeholders found in template", result=result)

    return result


def load_template_text(path: Path) -> str:
    """Read template text from a .docx or plain-text file."""

    suffix = path.suffix.lower()
    if suffix == ".docx":
        try:
            document = Document(str(path))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError) as exc:
            raise InvalidInputError(f"Cannot read template: {path.name}") from exc
        return docx_to_text(document)
    if suffix in _TEXT_SUFFIXES:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidInputError(f"Template is not valid UTF-8 text: {path.name}") from exc
    raise InvalidInputError(f"Unsupported template file type: {path.name}")


def docx_to_text(document: DocxDocument) -> str:
    """Flatten body paragraphs and table cells into newline-joined text."""

    return "\n".join(paragraph.text for paragraph in _iter_target_paragraphs(document))


def _iter_target_paragraphs(document: DocxDocument) -> Iterator[Paragraph]:
    yield from document.paragraphs

    for table in document.tables:
        for row in table.rows:
            for cell in row.cells:
                yield from cell.paragraphs


def _require_text(text: object) -> None:
    if not isinstance(text, str):
        raise InvalidInputError(
            f"Template text must be a string, got {type(text).__name__}"
        )


def _find_unbalanced_brackets(text: str) -> list[BracketIssue]:
    issues: list[BracketIssue] = []
    open_positions: list[int] = []

    for index, char in enumerate(text):
        if char == _OPEN_BRACKET:
            if open_positions:
                issues.append(BracketIssue("nested_bracket", _OPEN_BRACKET, index, index + 1))
            open_positions.append(index)
            continue

        if char == _CLOSE_BRACKET:
            if open_positions:
                open_positions.pop()
            else:
                issues.append(BracketIssue("stray_close", _CLOSE_BRACKET, index, index + 1))

    for start in open_positions:
        issues.append(BracketIssue("unclosed_bracket", text[start:], start, len(text)))

    return issues
