"""Spreadsheet record import and validation."""

from __future__ import annotations

import csv
import zipfile
from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import date, datetime, time
from pathlib import Path

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from core.utils.errors import InvalidInputError

Record = dict[str, str]


def load_records(path: Path) -> list[Record]:
    """Load records from a CSV or XLSX file with a header row.

    Column order follows the header, which fixes fuzzy-match tie-breaking.
    Only the active worksheet of a workbook is read.
    """

    suffix = path.suffix.lower()
    if suffix == ".csv":
        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            return _rows_to_records(csv.reader(handle), path.name)
    if suffix == ".xlsx":
        return _rows_to_records(_iter_xlsx_rows(path), path.name)
    raise InvalidInputError(f"Unsupported record file type: {path.name}")


def _iter_xlsx_rows(path: Path) -> Iterator[list[str]]:
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise InvalidInputError(f"Cannot read workbook: {path.name}") from exc

    try:
        sheet = workbook.active
        if sheet is None:
            return
        for row in sheet.iter_rows(values_only=True):
            yield [_cell_text(value) for value in row]
    finally:
        workbook.close()


def _cell_text(value: object) -> str:
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return normalize_record({"cell": value})["cell"]


def _rows_to_records(rows: Iterable[Sequence[str]], source_name: str) -> list[Record]:
    iterator = iter(rows)
    try:
        header = next(iterator)
    except StopIteration:
        return []

    columns = [column.strip().strip('"') for column in header]
    if not any(columns):
        raise InvalidInputError(f"Header row is empty: {source_name}")

    records: list[Record] = []
    for row in iterator:
        if not any(cell.strip() for cell in row):
            continue
        record: Record = {}
        for index, column in enumerate(columns):
            if not column:
                continue
            record[column] = row[index].strip() if index < len(row) else ""
        records.append(record)

    return records


def normalize_record(record: object) -> Record:
    """Validate one record and return a string-valued copy."""

    if not isinstance(record, Mapping):
        raise InvalidInputError(f"Record must be a mapping, got {type(record).__name__}")

    normalized: Record = {}
    for key, value in record.items():
        if not isinstance(key, str):
            raise InvalidInputError(f"Record field names must be strings, got {key!r}")
        if value is None:
            normalized[key] = ""
        elif isinstance(value, str):
            normalized[key] = value
        elif isinstance(value, (bool, int, float)):
            normalized[key] = str(value)
        else:
            raise InvalidInputError(
                f"Record field '{key}' has unsupported value type {type(value).__name__}",
                field=key,
            )
    return normalized


def select_record(records: Sequence[Record], index: int) -> Record:
    """Return the active record by zero-based index."""

    if not records:
        raise InvalidInputError("No records loaded")
    if index < 0 or index >= len(records):
        raise InvalidInputError(f"Record index {index} out of range (0..{len(records) - 1})")
    return records[index]
