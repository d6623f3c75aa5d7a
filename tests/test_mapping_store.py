from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.mapping.mapping_store import MappingStore
from core.mapping.models import PlaceholderMapping
from core.storage.kv_store import SAVED_MAPPING_PATTERNS_KEY, InMemoryStore
from core.utils.errors import InvalidInputError

TEMPLATE = "Dear [CLIENT NAME], your claim [CASE NUMBER] is valued at [AMOUNT]."
RECORD = {"Client_Name__c": "Jane Doe", "case_number": "123", "amount": "$5,000"}


class StepClock:
    def __init__(self, start: datetime) -> None:
        self._current = start

    def __call__(self) -> datetime:
        value = self._current
        self._current += timedelta(seconds=1)
        return value


def _clock() -> StepClock:
    return StepClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


def test_from_template_builds_auto_mapped_list() -> None:
    store = MappingStore.from_template(TEMPLATE, RECORD, storage=InMemoryStore())

    assert store.export_for_generation() == {
        "[CLIENT NAME]": "Jane Doe",
        "[CASE NUMBER]": "123",
        "[AMOUNT]": "$5,000",
    }
    assert store.unmapped() == []


def test_set_mapping_replaces_value_and_keeps_category() -> None:
    store = MappingStore.from_template(TEMPLATE, RECORD, storage=InMemoryStore())

    assert store.set_mapping(1, "CV-2024-9") is True

    mapping = store.mappings[1]
    assert mapping.value == "CV-2024-9"
    assert mapping.category == "other"


@pytest.mark.parametrize("index", [-1, 3, 99])
def test_set_mapping_out_of_range_is_noop(index: int) -> None:
    store = MappingStore.from_template(TEMPLATE, RECORD, storage=InMemoryStore())
    before = store.export_for_generation()

    assert store.set_mapping(index, "x") is False
    assert store.export_for_generation() == before


def test_set_mapping_rejects_non_string_value() -> None:
    store = MappingStore.from_template(TEMPLATE, RECORD, storage=InMemoryStore())

    with pytest.raises(InvalidInputError):
        store.set_mapping(0, 5)  # type: ignore[arg-type]


def test_mappings_property_returns_copies() -> None:
    store = MappingStore.from_template(TEMPLATE, RECORD, storage=InMemoryStore())

    store.mappings[0].value = "changed"

    assert store.mappings[0].value == "Jane Doe"


def test_export_and_reimport_round_trip() -> None:
    storage = InMemoryStore()
    original = MappingStore.from_template(TEMPLATE, RECORD, storage=storage)
    original.set_mapping(2, "$6,000")

    payload = original.export_for_generation()
    restored = MappingStore.from_generation_payload(payload, storage=storage)

    assert restored.export_for_generation() == payload
    assert restored.mappings == original.mappings


def test_from_generation_payload_rejects_non_string_values() -> None:
    with pytest.raises(InvalidInputError):
        MappingStore.from_generation_payload({"[A]": 1}, storage=InMemoryStore())  # type: ignore[dict-item]


def test_save_pattern_snapshots_entries() -> None:
    storage = InMemoryStore()
    store = MappingStore.from_template(TEMPLATE, RECORD, storage=storage, clock=_clock())

    key = store.save_pattern("standard demand")

    saved = store.list_saved_patterns()
    assert [item.key for item in saved] == [key]
    assert key == "template_1714564800000"
    assert saved[0].name == "standard demand"
    entry = saved[0].entries["[AMOUNT]"]
    assert (entry.category, entry.last_value, entry.frequency) == ("financial", "$5,000", 1)


def test_save_pattern_key_collision_gets_suffix() -> None:
    fixed = datetime(2024, 5, 1, tzinfo=timezone.utc)
    store = MappingStore(
        [PlaceholderMapping("[A]", "1", "other")],
        storage=InMemoryStore(),
        clock=lambda: fixed,
    )

    first = store.save_pattern()
    second = store.save_pattern()

    assert second == f"{first}_1"
    assert len(store.list_saved_patterns()) == 2


def test_auto_learn_fills_only_empty_values_from_oldest_pattern() -> None:
    storage = InMemoryStore()
    clock = _clock()

    older = MappingStore(
        [
            PlaceholderMapping("[DOCKET ID]", "D-1", "other"),
            PlaceholderMapping("[CLIENT NAME]", "Old Name", "personal"),
        ],
        storage=storage,
        clock=clock,
    )
    older.save_pattern("older")
    newer = MappingStore(
        [PlaceholderMapping("[DOCKET ID]", "D-2", "other")], storage=storage, clock=clock
    )
    newer.save_pattern("newer")

    current = MappingStore.from_template(
        "[CLIENT NAME] [DOCKET ID] [UNKNOWN]", RECORD, storage=storage
    )
    filled = current.auto_learn_from_previous()

    assert filled == 1
    assert current.export_for_generation() == {
        "[CLIENT NAME]": "Jane Doe",
        "[DOCKET ID]": "D-1",
        "[UNKNOWN]": "",
    }
    assert current.unmapped() == ["[UNKNOWN]"]


def test_auto_learn_skips_patterns_with_empty_last_value() -> None:
    storage = InMemoryStore()
    clock = _clock()
    MappingStore([PlaceholderMapping("[X]", "", "other")], storage=storage, clock=clock).save_pattern()
    MappingStore([PlaceholderMapping("[X]", "filled", "other")], storage=storage, clock=clock).save_pattern()

    current = MappingStore([PlaceholderMapping("[X]", "", "other")], storage=storage)

    assert current.auto_learn_from_previous() == 1
    assert current.export_for_generation() == {"[X]": "filled"}


def test_corrupt_saved_patterns_degrade_to_empty_with_warning() -> None:
    storage = InMemoryStore({SAVED_MAPPING_PATTERNS_KEY: {"bad": {"entries": "nope"}}})
    store = MappingStore([PlaceholderMapping("[X]", "", "other")], storage=storage)

    assert store.auto_learn_from_previous() == 0
    assert store.export_for_generation() == {"[X]": ""}
    assert len(store.storage_warnings) == 1
