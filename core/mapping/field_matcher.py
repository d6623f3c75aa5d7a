"""Heuristic placeholder-to-record field matching.

Resolution order for a placeholder value:

1. Direct synonym table: known phrases mapped to ordered candidate field names.
2. Fuzzy substring match over record field names, ranked by similarity.
3. Empty string, meaning the placeholder needs manual entry.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from core.mapping.models import Category, PlaceholderMapping
from core.records.record_loader import Record, normalize_record
from core.templates.placeholder_parser import extract_placeholders
from core.utils.errors import InvalidInputError

_SEPARATOR_RE = re.compile(r"[\s_\-]+")


@dataclass(frozen=True)
class CategoryRule:
    """Assigns ``category`` when any keyword occurs in the placeholder text."""

    category: Category
    keywords: tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule("personal", ("name", "plaintiff")),
    CategoryRule("employment", ("job", "title", "position")),
    CategoryRule("financial", ("pay", "salary", "rate", "amount")),
    CategoryRule("dates", ("date", "start", "end")),
)

DIRECT_SYNONYMS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "plaintiff full name": ("Client_Name__c", "plaintiff_name", "full_name", "name"),
        "client name": ("Client_Name__c", "client_name", "plaintiff_name", "full_name", "name"),
        "defendant name": ("defendant_name", "company_name", "employer_name"),
        "start date": ("start_date", "hire_date", "employment_start"),
        "end date": ("end_date", "termination_date", "employment_end"),
        "job title": ("job_title", "position", "title"),
        "pay rate": ("pay_rate", "hourly_rate", "salary", "wage"),
        "salary type": ("salary_type", "pay_type", "compensation_type"),
    }
)


def categorize_placeholder(placeholder: str) -> Category:
    """Classify a placeholder by the first keyword rule that matches."""

    text = _inner_text(placeholder).lower()
    for rule in CATEGORY_RULES:
        if rule.matches(text):
            return rule.category
    return "other"


def find_best_match(placeholder: str, record: Mapping[str, object]) -> str:
    """Return the best-guess record value for a placeholder, or ``""``."""

    data = _validated_record(placeholder, record)
    target = normalize_name(_inner_text(placeholder))
    if not target:
        return ""

    for phrase, fields in DIRECT_SYNONYMS.items():
        if phrase not in target:
            continue
        for field_name in fields:
            value = data.get(field_name, "")
            if value:
                return value

    candidates = rank_fuzzy_candidates(target, data)
    if candidates:
        return data[candidates[0]]
    return ""


def rank_fuzzy_candidates(target: str, record: Record) -> list[str]:
    """Rank record fields whose normalized name contains, or is contained in, ``target``.

    Higher similarity first; ties keep record key order.
    """

    scored: list[tuple[float, int, str]] = []
    for position, field_name in enumerate(record):
        if not record[field_name]:
            continue
        candidate = normalize_name(field_name)
        if not candidate:
            continue
        if candidate in target or target in candidate:
            score = min(len(candidate), len(target)) / max(len(candidate), len(target))
            scored.append((-score, position, field_name))

    scored.sort()
    return [field_name for _, _, field_name in scored]


def match_placeholder(placeholder: str, record: Mapping[str, object]) -> PlaceholderMapping:
    """Build a mapping for one placeholder. Pure: neither argument is modified."""

    category = categorize_placeholder(placeholder)
    value = find_best_match(placeholder, record)
    return PlaceholderMapping(placeholder=placeholder, value=value, category=category)


def build_mappings(template_text: str, record: Mapping[str, object]) -> list[PlaceholderMapping]:
    """Extract placeholders from a template and match each against a record.

    Pass an empty record when no data is loaded; ``None`` is rejected.
    """

    placeholders = extract_placeholders(template_text)
    data = normalize_record(record)
    return [match_placeholder(item, data) for item in placeholders]


def normalize_name(text: str) -> str:
    """Lower-case and collapse underscores, hyphens and whitespace to single spaces."""

    return _SEPARATOR_RE.sub(" ", text.lower()).strip()


def _inner_text(placeholder: str) -> str:
    if not isinstance(placeholder, str):
        raise InvalidInputError(
            f"Placeholder must be a string, got {type(placeholder).__name__}"
        )
    if placeholder.startswith("[") and placeholder.endswith("]"):
        return placeholder[1:-1]
    return placeholder


def _validated_record(placeholder: str, record: object) -> Record:
    try:
        return normalize_record(record)
    except InvalidInputError as exc:
        raise InvalidInputError(
            f"Cannot match {placeholder}: {exc}",
            placeholder=placeholder,
            field=exc.field,
        ) from exc
