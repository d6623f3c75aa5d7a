"""Working placeholder mappings and saved mapping patterns."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timezone

from pydantic import TypeAdapter

from core.mapping.field_matcher import build_mappings, categorize_placeholder
from core.mapping.models import PlaceholderMapping, SavedMappingEntry, SavedMappingPattern
from core.storage.kv_store import SAVED_MAPPING_PATTERNS_KEY, KeyValueStore, load_collection
from core.utils.errors import InvalidInputError

Clock = Callable[[], datetime]

_SAVED_TABLE_ADAPTER = TypeAdapter(dict[str, SavedMappingPattern])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MappingStore:
    """Editable mappings for the active template and record."""

    def __init__(
        self,
        mappings: list[PlaceholderMapping] | None = None,
        *,
        storage: KeyValueStore,
        clock: Clock = _utc_now,
    ) -> None:
        self._mappings = [replace(item) for item in (mappings or [])]
        self._storage = storage
        self._clock = clock
        self.storage_warnings: list[str] = []

    @classmethod
    def from_template(
        cls,
        template_text: str,
        record: Mapping[str, object],
        *,
        storage: KeyValueStore,
        clock: Clock = _utc_now,
    ) -> MappingStore:
        """Extract and auto-match placeholders for one template and record."""

        return cls(build_mappings(template_text, record), storage=storage, clock=clock)

    @classmethod
    def from_generation_payload(
        cls,
        payload: Mapping[str, str],
        *,
        storage: KeyValueStore,
        clock: Clock = _utc_now,
    ) -> MappingStore:
        """Rebuild a store from ``export_for_generation`` output."""

        mappings: list[PlaceholderMapping] = []
        for placeholder, value in payload.items():
            if not isinstance(placeholder, str) or not isinstance(value, str):
                raise InvalidInputError(
                    "Generation payload must map placeholder strings to string values",
                    placeholder=placeholder if isinstance(placeholder, str) else None,
                )
            mappings.append(
                PlaceholderMapping(
                    placeholder=placeholder,
                    value=value,
                    category=categorize_placeholder(placeholder),
                )
            )
        return cls(mappings, storage=storage, clock=clock)

    @property
    def mappings(self) -> list[PlaceholderMapping]:
        return [replace(item) for item in self._mappings]

    def __len__(self) -> int:
        return len(self._mappings)

    def set_mapping(self, index: int, value: str) -> bool:
        """Replace the value at ``index``; out-of-range indexes are ignored."""

        if index < 0 or index >= len(self._mappings):
            return False
        if not isinstance(value, str):
            raise InvalidInputError(
                "Mapping value must be a string",
                placeholder=self._mappings[index].placeholder,
            )
        self._mappings[index].value = value
        return True

    def export_for_generation(self) -> dict[str, str]:
        return {item.placeholder: item.value for item in self._mappings}

    def unmapped(self) -> list[str]:
        """Placeholders still needing manual entry."""

        return [item.placeholder for item in self._mappings if not item.value]

    def list_saved_patterns(self) -> list[SavedMappingPattern]:
        """Saved patterns, oldest first."""

        table = self._read_saved_table()
        return sorted(table.values(), key=lambda item: (item.created_at, item.key))

    def save_pattern(self, name: str | None = None) -> str:
        """Snapshot current mappings as a saved pattern and return its key."""

        now = self._clock()
        table = self._read_saved_table()

        base_key = f"template_{int(now.timestamp() * 1000)}"
        key = base_key
        suffix = 1
        while key in table:
            key = f"{base_key}_{suffix}"
            suffix += 1

        table[key] = SavedMappingPattern(
            key=key,
            name=name,
            created_at=now.isoformat(),
            entries={
                item.placeholder: SavedMappingEntry(
                    category=item.category,
                    last_value=item.value,
                    frequency=1,
                )
                for item in self._mappings
            },
        )
        self._storage.set(
            SAVED_MAPPING_PATTERNS_KEY,
            _SAVED_TABLE_ADAPTER.dump_python(table, mode="json"),
        )
        return key

    def auto_learn_from_previous(self) -> int:
        """Fill empty values from saved patterns and return how many were filled.

        Saved patterns are scanned oldest first; the first one holding a
        non-empty value for the placeholder wins. A pattern whose entry has an
        empty ``last_value`` is skipped and the scan continues, so an older
        blank entry never shadows a newer filled one. Stopping at the first
        pattern that merely contains the placeholder would leave the value
        empty in that case.
        """

        saved = self.list_saved_patterns()
        filled = 0
        for item in self._mappings:
            if item.value:
                continue
            for pattern in saved:
                entry = pattern.entries.get(item.placeholder)
                if entry is not None and entry.last_value:
                    item.value = entry.last_value
                    filled += 1
                    break
        return filled

    def _read_saved_table(self) -> dict[str, SavedMappingPattern]:
        return load_collection(
            self._storage,
            SAVED_MAPPING_PATTERNS_KEY,
            _SAVED_TABLE_ADAPTER.validate_python,
            dict,
            self.storage_warnings,
        )
