"""Deterministic placeholder replacement for plain template text."""

from __future__ import annotations

import re
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from core.templates.placeholder_parser import extract_placeholders

_PLACEHOLDER_RE = re.compile(r"\[[^\]]+\]")


class FillResult(BaseModel):
    """Filled text plus which placeholders were replaced or left in place."""

    model_config = ConfigDict(extra="forbid")

    text: str
    replaced: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    replaced_count: int = 0


def fill_placeholders(template_text: str, mappings: Mapping[str, str]) -> FillResult:
    """Replace every placeholder that has a non-empty value.

    Placeholders without a value are kept verbatim so the gap stays visible.
    """

    placeholders = extract_placeholders(template_text)
    replaced_count = 0

    def _substitute(match: re.Match[str]) -> str:
        nonlocal replaced_count
        value = mappings.get(match.group(0), "")
        if not value:
            return match.group(0)
        replaced_count += 1
        return value

    text = _PLACEHOLDER_RE.sub(_substitute, template_text)
    return FillResult(
        text=text,
        replaced=[item for item in placeholders if mappings.get(item)],
        missing=[item for item in placeholders if not mappings.get(item)],
        replaced_count=replaced_count,
    )
