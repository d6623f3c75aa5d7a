from __future__ import annotations

from collections.abc import Mapping

import pytest

from core.config.settings_loader import LearningSettings
from core.learning.engine import LearningEngine
from core.mapping.mapping_store import MappingStore
from core.mapping.models import PlaceholderMapping
from core.orchestrator.pipeline import TemplateFillGenerator, prepare_mappings, run_generation
from core.storage.kv_store import SAVED_MAPPING_PATTERNS_KEY, InMemoryStore
from core.utils.errors import InvalidInputError

TEMPLATE = "Dear [CLIENT NAME], your claim [CASE NUMBER] is valued at [AMOUNT].\nRef: [DOCKET ID]"
RECORD = {"Client_Name__c": "Jane Doe", "case_number": "123", "amount": "$5,000"}


class RecordingGenerator:
    name = "recording"

    def __init__(self, result: object = "generated letter") -> None:
        self.prompts: list[str] = []
        self._result = result

    def generate(self, prompt: str, *, template_text: str, mappings: Mapping[str, str]) -> str:
        self.prompts.append(prompt)
        return self._result  # type: ignore[return-value]


def _settings() -> LearningSettings:
    return LearningSettings.model_validate(
        {
            "store_path": "unused.json",
            "event_log_limit": 1000,
            "enrichment_success_threshold": 0.7,
            "enrichment_top_n": 3,
            "low_success_threshold": 0.5,
        }
    )


def test_pipeline_fills_letter_and_records_event() -> None:
    storage = InMemoryStore()
    engine = LearningEngine(storage, _settings())
    mapping_store = prepare_mappings(TEMPLATE, RECORD, storage)

    output = run_generation(TEMPLATE, mapping_store, engine, TemplateFillGenerator())

    assert output.generator == "template_fill"
    assert output.generated_text == (
        "Dear Jane Doe, your claim 123 is valued at $5,000.\nRef: [DOCKET ID]"
    )
    assert output.unmapped == ["[DOCKET ID]"]
    assert output.mappings["[DOCKET ID]"] == ""
    assert "TEMPLATE TO PROCESS:" in output.prompt
    assert output.storage_warnings == []

    events = engine.get_events()
    assert len(events) == 1
    assert events[0].generated_content == output.generated_text
    assert events[0].user_feedback is None


def test_pipeline_prompt_picks_up_learned_practices_after_positive_feedback() -> None:
    storage = InMemoryStore()
    engine = LearningEngine(storage, _settings())
    generator = RecordingGenerator()

    first = run_generation(TEMPLATE, prepare_mappings(TEMPLATE, RECORD, storage), engine, generator)
    engine.record_feedback(TEMPLATE, first.generated_text, "positive")
    run_generation(TEMPLATE, prepare_mappings(TEMPLATE, RECORD, storage), engine, generator)

    assert "CRITICAL FORMATTING RULES" not in generator.prompts[0]
    assert "LEARNED BEST PRACTICES (from 2 previous generations):" in generator.prompts[1]
    assert "- Success rate: 75.0% for similar templates" in generator.prompts[1]


def test_pipeline_auto_learn_fills_gap_from_saved_pattern() -> None:
    storage = InMemoryStore()
    MappingStore(
        [PlaceholderMapping("[DOCKET ID]", "D-77", "other")], storage=storage
    ).save_pattern("docket")

    mapping_store = prepare_mappings(TEMPLATE, RECORD, storage, auto_learn=True)

    assert mapping_store.unmapped() == []
    assert mapping_store.export_for_generation()["[DOCKET ID]"] == "D-77"


def test_pipeline_reports_storage_warnings() -> None:
    storage = InMemoryStore({SAVED_MAPPING_PATTERNS_KEY: ["not", "a", "table"]})
    engine = LearningEngine(storage, _settings())
    mapping_store = prepare_mappings(TEMPLATE, RECORD, storage, auto_learn=True)

    output = run_generation(TEMPLATE, mapping_store, engine, TemplateFillGenerator())

    assert len(output.storage_warnings) == 1
    assert "saved_mapping_patterns" in output.storage_warnings[0]


def test_pipeline_rejects_non_text_generator_output() -> None:
    storage = InMemoryStore()
    engine = LearningEngine(storage, _settings())

    with pytest.raises(InvalidInputError, match="expected text"):
        run_generation(
            TEMPLATE,
            prepare_mappings(TEMPLATE, RECORD, storage),
            engine,
            RecordingGenerator(result=None),
        )
    assert engine.get_events() == []


def test_pipeline_rejects_null_record() -> None:
    with pytest.raises(InvalidInputError):
        prepare_mappings(TEMPLATE, None, InMemoryStore())  # type: ignore[arg-type]


def test_pipeline_passes_custom_instructions_to_generator() -> None:
    storage = InMemoryStore()
    engine = LearningEngine(storage, _settings())
    generator = RecordingGenerator()

    run_generation(
        TEMPLATE,
        prepare_mappings(TEMPLATE, RECORD, storage),
        engine,
        generator,
        custom_instructions="Keep the letter to one page.",
    )

    assert "AI PROCESSING INSTRUCTIONS:\nKeep the letter to one page." in generator.prompts[0]
