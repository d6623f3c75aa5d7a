"""Saved demand letters kept alongside the learning data."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, TypeAdapter

from core.records.record_loader import normalize_record
from core.storage.kv_store import SAVED_LETTERS_KEY, KeyValueStore, load_collection
from core.utils.errors import InvalidInputError

PLAINTIFF_NAME_FIELDS: tuple[str, ...] = ("Client_Name__c", "plaintiff_name", "name")
UNKNOWN_PLAINTIFF = "Unknown"

Clock = Callable[[], datetime]


class SavedLetter(BaseModel):
    """A generated letter, possibly edited, saved for later retrieval."""

    model_config = ConfigDict(extra="forbid")

    id: str
    plaintiff_name: str
    content: str
    generated_at: str
    is_edited: bool = False


_LETTER_LOG_ADAPTER = TypeAdapter(list[SavedLetter])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_plaintiff_name(record: Mapping[str, object]) -> str:
    """First non-empty plaintiff name field of a record, else ``"Unknown"``."""

    data = normalize_record(record)
    for field_name in PLAINTIFF_NAME_FIELDS:
        value = data.get(field_name, "").strip()
        if value:
            return value
    return UNKNOWN_PLAINTIFF


class LetterStore:
    """Append-only list of saved letters with deletion by id."""

    def __init__(self, storage: KeyValueStore, *, clock: Clock = _utc_now) -> None:
        self._storage = storage
        self._clock = clock
        self.storage_warnings: list[str] = []

    def save(
        self,
        record: Mapping[str, object],
        content: str,
        generated_text: str | None = None,
    ) -> SavedLetter:
        """Save ``content`` for the record's plaintiff.

        The letter counts as edited when ``generated_text`` is given and differs
        from ``content``.
        """

        if not isinstance(content, str):
            raise InvalidInputError("Letter content must be a string")
        if generated_text is not None and not isinstance(generated_text, str):
            raise InvalidInputError("Generated text must be a string")

        now = self._clock()
        letters = self._read_letters()
        existing_ids = {item.id for item in letters}
        base_id = str(int(now.timestamp() * 1000))
        letter_id = base_id
        suffix = 1
        while letter_id in existing_ids:
            letter_id = f"{base_id}_{suffix}"
            suffix += 1

        letter = SavedLetter(
            id=letter_id,
            plaintiff_name=resolve_plaintiff_name(record),
            content=content,
            generated_at=now.isoformat(),
            is_edited=generated_text is not None and content != generated_text,
        )
        letters.append(letter)
        self._write_letters(letters)
        return letter

    def list_letters(self) -> list[SavedLetter]:
        """Saved letters, newest first."""

        return list(reversed(self._read_letters()))

    def get(self, letter_id: str) -> SavedLetter | None:
        for item in self._read_letters():
            if item.id == letter_id:
                return item
        return None

    def delete(self, letter_id: str) -> bool:
        letters = self._read_letters()
        remaining = [item for item in letters if item.id != letter_id]
        if len(remaining) == len(letters):
            return False
        self._write_letters(remaining)
        return True

    def _read_letters(self) -> list[SavedLetter]:
        return load_collection(
            self._storage,
            SAVED_LETTERS_KEY,
            _LETTER_LOG_ADAPTER.validate_python,
            list,
            self.storage_warnings,
        )

    def _write_letters(self, letters: list[SavedLetter]) -> None:
        self._storage.set(SAVED_LETTERS_KEY, _LETTER_LOG_ADAPTER.dump_python(letters, mode="json"))
