"""Settings loading for the mapping and learning engine."""

from __future__ import annotations

import os
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError

SETTINGS_ENV = "LETTERFILL_SETTINGS"
STORE_PATH_ENV = "LETTERFILL_STORE_PATH"


class LearningSettings(BaseModel):
    """Tunable limits and thresholds loaded from YAML."""

    model_config = ConfigDict(extra="forbid")

    store_path: Path
    event_log_limit: int = Field(gt=0)
    enrichment_success_threshold: float = Field(ge=0.0, le=1.0)
    enrichment_top_n: int = Field(gt=0)
    low_success_threshold: float = Field(ge=0.0, le=1.0)
    custom_instructions: str = ""


def default_settings_path() -> Path:
    return Path(__file__).with_name("settings.yaml")


def load_settings(path: Path | None = None) -> LearningSettings:
    """Load settings from YAML, then apply the store path environment override."""

    env_path = os.getenv(SETTINGS_ENV)
    settings_path = path or (Path(env_path) if env_path else default_settings_path())

    try:
        raw = yaml.safe_load(settings_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Settings file not found: {settings_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in settings file: {settings_path}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")

    store_override = os.getenv(STORE_PATH_ENV, "").strip()
    if store_override:
        raw = {**raw, "store_path": store_override}

    try:
        return LearningSettings.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid settings schema: {settings_path}") from exc
