"""Learning engine: event log, template patterns and prompt enrichment."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from core.config.settings_loader import LearningSettings
from core.learning.models import (
    EVENT_LOG_ADAPTER,
    PATTERN_TABLE_ADAPTER,
    Feedback,
    LearningEvent,
    LearningStats,
    TemplatePattern,
    pattern_key,
)
from core.storage.kv_store import (
    LEARNING_EVENTS_KEY,
    TEMPLATE_PATTERNS_KEY,
    KeyValueStore,
    load_collection,
)
from core.templates.placeholder_parser import extract_placeholders
from core.utils.errors import InvalidInputError

logger = logging.getLogger("letterfill.learning")

NEGATIVE_FEEDBACK_SUGGESTIONS: tuple[str, ...] = (
    "Consider reviewing placeholder naming conventions for better auto-mapping",
    "Ensure template formatting is consistent with legal standards",
    "Verify all required fields are properly bracketed in template",
)
LOW_SUCCESS_SUGGESTION = (
    "Some template patterns have low success rates - consider template refinement"
)

FORMATTING_RULES = """CRITICAL FORMATTING RULES (learned from successful generations):
1. NEVER modify text outside of bracketed placeholders [LIKE THIS]
2. Preserve ALL spacing, line breaks, and paragraph structure EXACTLY
3. Replace ONLY the bracketed content, keeping brackets removed
4. Maintain all legal citations, headers, and section formatting
5. Keep all punctuation and capitalization as originally formatted"""

PROCESSING_INSTRUCTIONS = """PROCESSING INSTRUCTIONS:
- Find each bracketed placeholder [PLACEHOLDER] in the template
- Replace it with the corresponding value, removing the brackets
- If no value is provided for a placeholder, leave it as [PLACEHOLDER]
- Preserve ALL other text, formatting, spacing, and structure EXACTLY
- Do not add, remove, or modify any other content"""

_FEEDBACK_VALUES: tuple[Feedback, ...] = ("positive", "negative")
_CREATION_RATE_POSITIVE = 1.0
_CREATION_RATE_NEUTRAL = 0.5

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LearningEngine:
    """Aggregates generation history into patterns and enriched instructions."""

    def __init__(
        self,
        storage: KeyValueStore,
        settings: LearningSettings,
        *,
        clock: Clock = _utc_now,
    ) -> None:
        self._storage = storage
        self._settings = settings
        self._clock = clock
        self.storage_warnings: list[str] = []

    def get_events(self) -> list[LearningEvent]:
        return load_collection(
            self._storage,
            LEARNING_EVENTS_KEY,
            EVENT_LOG_ADAPTER.validate_python,
            list,
            self.storage_warnings,
        )

    def get_patterns(self) -> dict[str, TemplatePattern]:
        return load_collection(
            self._storage,
            TEMPLATE_PATTERNS_KEY,
            PATTERN_TABLE_ADAPTER.validate_python,
            dict,
            self.storage_warnings,
        )

    def record_event(
        self,
        template_text: str,
        mappings: Mapping[str, str],
        generated_text: str,
        feedback: Feedback | None = None,
        notes: str | None = None,
    ) -> LearningEvent:
        """Append an event, trim the log and update the matching pattern.

        The event log and pattern table are written back in a single store call.
        """

        placeholders = extract_placeholders(template_text)
        if not isinstance(generated_text, str):
            raise InvalidInputError("Generated text must be a string")
        if feedback is not None and feedback not in _FEEDBACK_VALUES:
            raise InvalidInputError(f"Unsupported feedback value: {feedback!r}")

        event = LearningEvent(
            template_structure=template_text,
            placeholder_mappings=_validated_mappings(mappings),
            generated_content=generated_text,
            user_feedback=feedback,
            timestamp=self._clock().isoformat(),
            improvement_notes=notes,
        )

        events = self.get_events()
        events.append(event)
        limit = self._settings.event_log_limit
        if len(events) > limit:
            del events[: len(events) - limit]

        patterns = self.get_patterns()
        key = pattern_key(placeholders)
        patterns[key] = _updated_pattern(patterns.get(key), placeholders, event)

        self._storage.set_many(
            {
                LEARNING_EVENTS_KEY: EVENT_LOG_ADAPTER.dump_python(events, mode="json"),
                TEMPLATE_PATTERNS_KEY: PATTERN_TABLE_ADAPTER.dump_python(patterns, mode="json"),
            }
        )
        logger.info(
            "recorded learning event: pattern=%r feedback=%s usage_count=%d success_rate=%.3f",
            key,
            feedback,
            patterns[key].usage_count,
            patterns[key].success_rate,
        )
        return event

    def record_feedback(
        self,
        template_text: str,
        generated_text: str,
        feedback: Feedback,
        notes: str | None = None,
    ) -> LearningEvent:
        """Append feedback as an independent event with no mappings."""

        return self.record_event(template_text, {}, generated_text, feedback, notes)

    def compute_improvement_suggestions(self) -> list[str]:
        suggestions: list[str] = []

        if any(event.user_feedback == "negative" for event in self.get_events()):
            suggestions.extend(NEGATIVE_FEEDBACK_SUGGESTIONS)

        threshold = self._settings.low_success_threshold
        if any(pattern.success_rate < threshold for pattern in self.get_patterns().values()):
            suggestions.append(LOW_SUCCESS_SUGGESTION)

        return suggestions

    def build_learned_block(self) -> str:
        """Summarize the top successful patterns, or return ``""`` when none qualify."""

        threshold = self._settings.enrichment_success_threshold
        successful = sorted(
            (item for item in self.get_patterns().values() if item.success_rate > threshold),
            key=lambda item: item.success_rate,
            reverse=True,
        )
        if not successful:
            return ""

        lines = [f"LEARNED BEST PRACTICES (from {len(self.get_events())} previous generations):"]
        for pattern in successful[: self._settings.enrichment_top_n]:
            lines.append(f"- Success rate: {pattern.success_rate * 100:.1f}% for similar templates")
        return "\n".join(lines) + "\n\n" + FORMATTING_RULES

    def build_enriched_instructions(
        self,
        template_text: str,
        mappings: Mapping[str, str],
        custom_instructions: str | None = None,
    ) -> str:
        """Build the outbound instructions for the external generation call.

        ``custom_instructions`` overrides the configured setting; blank text adds
        no section.
        """

        extract_placeholders(template_text)
        values = _validated_mappings(mappings)
        if custom_instructions is None:
            custom_instructions = self._settings.custom_instructions
        elif not isinstance(custom_instructions, str):
            raise InvalidInputError("Custom instructions must be a string")

        sections: list[str] = []
        learned = self.build_learned_block()
        if learned:
            sections.append(learned)
        sections.append(
            "You are a legal document processor with advanced pattern recognition. "
            "Your ONLY task is to replace bracketed placeholders with provided values "
            "while preserving EXACT formatting."
        )
        sections.append(f"TEMPLATE TO PROCESS:\n{template_text}")
        replacement_lines = "\n".join(
            f'{placeholder} → "{value}"' for placeholder, value in values.items()
        )
        sections.append(f"REPLACEMENT VALUES:\n{replacement_lines}")
        sections.append(PROCESSING_INSTRUCTIONS)
        if custom_instructions.strip():
            sections.append(f"AI PROCESSING INSTRUCTIONS:\n{custom_instructions.strip()}")
        sections.append("Generate the complete processed document:")
        return "\n\n".join(sections)

    def stats(self) -> LearningStats:
        events = self.get_events()
        return LearningStats(
            total_events=len(events),
            pattern_count=len(self.get_patterns()),
            positive_feedback=sum(1 for item in events if item.user_feedback == "positive"),
            negative_feedback=sum(1 for item in events if item.user_feedback == "negative"),
        )


def _updated_pattern(
    existing: TemplatePattern | None,
    placeholders: list[str],
    event: LearningEvent,
) -> TemplatePattern:
    if existing is None:
        rate = (
            _CREATION_RATE_POSITIVE
            if event.user_feedback == "positive"
            else _CREATION_RATE_NEUTRAL
        )
        return TemplatePattern(
            placeholders=sorted(placeholders),
            structure=event.template_structure,
            common_mappings={
                placeholder: [value] for placeholder, value in event.placeholder_mappings.items()
            },
            success_rate=rate,
            usage_count=1,
        )

    pattern = existing.model_copy(deep=True)
    pattern.usage_count += 1
    pattern.structure = event.template_structure
    # Only positive feedback moves the rate; negative and absent feedback are neutral.
    if event.user_feedback == "positive":
        count = pattern.usage_count
        pattern.success_rate = (pattern.success_rate * (count - 1) + 1.0) / count

    for placeholder, value in event.placeholder_mappings.items():
        values = pattern.common_mappings.setdefault(placeholder, [])
        if value not in values:
            values.append(value)
    return pattern


def _validated_mappings(mappings: Mapping[str, str]) -> dict[str, str]:
    if not isinstance(mappings, Mapping):
        raise InvalidInputError(f"Mappings must be a mapping, got {type(mappings).__name__}")
    validated: dict[str, str] = {}
    for placeholder, value in mappings.items():
        if not isinstance(placeholder, str) or not isinstance(value, str):
            raise InvalidInputError(
                f"Mapping for {placeholder!r} must be a string value",
                placeholder=placeholder if isinstance(placeholder, str) else None,
            )
        validated[placeholder] = value
    return validated
