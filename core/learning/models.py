"""Persisted learning models: generation events and template patterns."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

Feedback = Literal["positive", "negative"]


class LearningEvent(BaseModel):
    """Immutable record of one generation attempt or feedback submission."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    template_structure: str
    placeholder_mappings: dict[str, str] = Field(default_factory=dict)
    generated_content: str
    user_feedback: Feedback | None = None
    timestamp: str
    improvement_notes: str | None = None


class TemplatePattern(BaseModel):
    """Aggregate of all events sharing one placeholder set."""

    model_config = ConfigDict(extra="forbid")

    placeholders: list[str] = Field(default_factory=list)
    structure: str
    common_mappings: dict[str, list[str]] = Field(default_factory=dict)
    success_rate: float = Field(ge=0.0, le=1.0)
    usage_count: int = Field(ge=1)


class LearningStats(BaseModel):
    """Summary counters over the learning store."""

    model_config = ConfigDict(extra="forbid")

    total_events: int
    pattern_count: int
    positive_feedback: int
    negative_feedback: int


EVENT_LOG_ADAPTER = TypeAdapter(list[LearningEvent])
PATTERN_TABLE_ADAPTER = TypeAdapter(dict[str, TemplatePattern])


def pattern_key(placeholders: list[str]) -> str:
    """Key a pattern by its sorted, pipe-joined placeholder set."""

    return "|".join(sorted(placeholders))
