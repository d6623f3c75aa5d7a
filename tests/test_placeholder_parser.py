from __future__ import annotations

from pathlib import Path

import pytest
from docx import Document

from core.templates.placeholder_parser import (
    extract_placeholders,
    load_template_text,
    parse_template_text,
)
from core.utils.errors import InvalidInputError, TemplateError


def test_extract_single_placeholder() -> None:
    assert extract_placeholders("Dear [CLIENT NAME],") == ["[CLIENT NAME]"]


def test_extract_keeps_first_seen_order_and_dedupes() -> None:
    text = "[B] then [A] then [B] and [A] again [C]"

    assert extract_placeholders(text) == ["[B]", "[A]", "[C]"]


def test_extract_without_placeholders_returns_empty_list() -> None:
    assert extract_placeholders("No fill-in points here.") == []
    assert extract_placeholders("") == []


def test_extract_treats_case_and_spacing_as_distinct() -> None:
    result = extract_placeholders("[Name] [NAME] [ NAME ]")

    assert result == ["[Name]", "[NAME]", "[ NAME ]"]


def test_extract_ignores_empty_brackets() -> None:
    assert extract_placeholders("[] and [X]") == ["[X]"]


def test_extract_scenario_template() -> None:
    text = "Dear [CLIENT NAME], your claim [CASE NUMBER] is valued at [AMOUNT]."

    assert extract_placeholders(text) == ["[CLIENT NAME]", "[CASE NUMBER]", "[AMOUNT]"]


def test_extract_rejects_non_string_input() -> None:
    with pytest.raises(InvalidInputError, match="must be a string"):
        extract_placeholders(None)  # type: ignore[arg-type]


def test_parse_records_occurrence_offsets() -> None:
    result = parse_template_text("Hi [A], bye [A].")

    assert result.placeholders == ["[A]"]
    assert [(item.start, item.end) for item in result.occurrences] == [(3, 6), (12, 15)]
    assert result.issues == []


def test_parse_unclosed_bracket_records_issue() -> None:
    result = parse_template_text("Hello [FIELD")

    assert result.placeholders == []
    assert len(result.issues) == 1
    assert result.issues[0].kind == "unclosed_bracket"
    assert result.issues[0].text == "[FIELD"


def test_parse_stray_close_records_issue() -> None:
    result = parse_template_text("Hello] World")

    assert [issue.kind for issue in result.issues] == ["stray_close"]


def test_parse_nested_bracket_records_issue() -> None:
    result = parse_template_text("[OUTER [INNER] TEXT]")

    kinds = [issue.kind for issue in result.issues]
    assert kinds == ["nested_bracket"]
    assert result.placeholders == ["[OUTER [INNER]"]


def test_parse_empty_placeholder_records_issue() -> None:
    result = parse_template_text("Value: []")

    assert [issue.kind for issue in result.issues] == ["empty_placeholder"]


def test_parse_strict_mode_raises_with_result() -> None:
    with pytest.raises(TemplateError) as exc_info:
        parse_template_text("A] B [C", strict=True)

    assert exc_info.value.result is not None
    kinds = {item.kind for item in exc_info.value.result.issues}
    assert kinds == {"stray_close", "unclosed_bracket"}


def test_parse_strict_mode_passes_clean_template() -> None:
    result = parse_template_text("[A] and [B]", strict=True)

    assert result.placeholders == ["[A]", "[B]"]


def test_load_template_text_reads_docx_paragraphs_and_tables(tmp_path: Path) -> None:
    document = Document()
    document.add_paragraph("Dear [CLIENT NAME],")
    table = document.add_table(rows=1, cols=1)
    table.cell(0, 0).paragraphs[0].text = "Amount: [AMOUNT]"
    path = tmp_path / "template.docx"
    document.save(str(path))

    text = load_template_text(path)

    assert extract_placeholders(text) == ["[CLIENT NAME]", "[AMOUNT]"]


def test_load_template_text_reads_plain_text(tmp_path: Path) -> None:
    path = tmp_path / "template.txt"
    path.write_text("Re: [CASE NUMBER]", encoding="utf-8")

    assert load_template_text(path) == "Re: [CASE NUMBER]"


def test_load_template_text_rejects_unknown_suffix(tmp_path: Path) -> None:
    path = tmp_path / "template.pdf"
    path.write_bytes(b"%PDF")

    with pytest.raises(InvalidInputError, match="Unsupported template file type"):
        load_template_text(path)


def test_load_template_text_rejects_malformed_docx(tmp_path: Path) -> None:
    path = tmp_path / "template.docx"
    path.write_bytes(b"not a zip file")

    with pytest.raises(InvalidInputError, match="Cannot read template: template.docx"):
        load_template_text(path)


def test_load_template_text_rejects_invalid_utf8(tmp_path: Path) -> None:
    path = tmp_path / "template.txt"
    path.write_bytes(b"Dear \xff[NAME]")

    with pytest.raises(InvalidInputError, match="not valid UTF-8"):
        load_template_text(path)
