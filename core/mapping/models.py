"""Mapping models for placeholder assignment and saved mapping patterns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Category = Literal["personal", "employment", "financial", "dates", "other"]

CATEGORIES: tuple[Category, ...] = ("personal", "employment", "financial", "dates", "other")


@dataclass
class PlaceholderMapping:
    """Working assignment of one placeholder to a candidate value."""

    placeholder: str
    value: str
    category: Category


class SavedMappingEntry(BaseModel):
    """Per-placeholder entry of a saved mapping pattern."""

    model_config = ConfigDict(extra="forbid")

    category: Category
    last_value: str
    frequency: int = 1


class SavedMappingPattern(BaseModel):
    """Named snapshot of a mapping list, reused by auto-learning."""

    model_config = ConfigDict(extra="forbid")

    key: str
    name: str | None = None
    created_at: str
    entries: dict[str, SavedMappingEntry] = Field(default_factory=dict)
