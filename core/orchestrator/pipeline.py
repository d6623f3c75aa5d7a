"""Orchestration: extract -> match -> instruct -> generate -> learn."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from core.learning.engine import LearningEngine
from core.mapping.mapping_store import MappingStore
from core.render.text_filler import fill_placeholders
from core.storage.kv_store import KeyValueStore
from core.utils.errors import InvalidInputError


class TextGenerator(Protocol):
    """External generation collaborator (normally a language-model call)."""

    name: str

    def generate(self, prompt: str, *, template_text: str, mappings: Mapping[str, str]) -> str:
        """Return the generated document text."""


class TemplateFillGenerator:
    """Offline generator that substitutes mapped values directly into the template."""

    name = "template_fill"

    def generate(self, prompt: str, *, template_text: str, mappings: Mapping[str, str]) -> str:
        return fill_placeholders(template_text, mappings).text


class GenerationOutput(BaseModel):
    """Result of one generation run."""

    model_config = ConfigDict(extra="forbid")

    generator: str
    prompt: str
    generated_text: str
    mappings: dict[str, str] = Field(default_factory=dict)
    unmapped: list[str] = Field(default_factory=list)
    storage_warnings: list[str] = Field(default_factory=list)


def prepare_mappings(
    template_text: str,
    record: Mapping[str, object],
    storage: KeyValueStore,
    auto_learn: bool = False,
) -> MappingStore:
    """Build the working mapping store for a template and the active record."""

    store = MappingStore.from_template(template_text, record, storage=storage)
    if auto_learn:
        store.auto_learn_from_previous()
    return store


def run_generation(
    template_text: str,
    mapping_store: MappingStore,
    engine: LearningEngine,
    generator: TextGenerator,
    custom_instructions: str | None = None,
) -> GenerationOutput:
    """Call the generator with enriched instructions and record the outcome."""

    mappings = mapping_store.export_for_generation()
    prompt = engine.build_enriched_instructions(template_text, mappings, custom_instructions)
    generated = generator.generate(prompt, template_text=template_text, mappings=mappings)
    if not isinstance(generated, str):
        raise InvalidInputError(
            f"Generator {generator.name} returned {type(generated).__name__}, expected text"
        )

    engine.record_event(template_text, mappings, generated)

    warnings = [*mapping_store.storage_warnings, *engine.storage_warnings]
    return GenerationOutput(
        generator=generator.name,
        prompt=prompt,
        generated_text=generated,
        mappings=mappings,
        unmapped=mapping_store.unmapped(),
        storage_warnings=list(dict.fromkeys(warnings)),
    )
