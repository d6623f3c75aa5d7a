from __future__ import annotations

from core.render.text_filler import fill_placeholders


def test_fill_replaces_every_occurrence() -> None:
    result = fill_placeholders(
        "Dear [CLIENT NAME], [CLIENT NAME] is owed [AMOUNT].",
        {"[CLIENT NAME]": "Jane Doe", "[AMOUNT]": "$5,000"},
    )

    assert result.text == "Dear Jane Doe, Jane Doe is owed $5,000."
    assert result.replaced == ["[CLIENT NAME]", "[AMOUNT]"]
    assert result.missing == []
    assert result.replaced_count == 3


def test_fill_keeps_unmapped_placeholders_verbatim() -> None:
    result = fill_placeholders(
        "Re: [CASE NUMBER] / [DOCKET ID]",
        {"[CASE NUMBER]": "123", "[DOCKET ID]": ""},
    )

    assert result.text == "Re: 123 / [DOCKET ID]"
    assert result.missing == ["[DOCKET ID]"]


def test_fill_preserves_surrounding_whitespace_and_line_breaks() -> None:
    template = "Line one [A]\n\n    Indented [B]\t end\n"

    result = fill_placeholders(template, {"[A]": "x", "[B]": "y"})

    assert result.text == "Line one x\n\n    Indented y\t end\n"


def test_fill_does_not_rescan_inserted_values() -> None:
    result = fill_placeholders("[A] [B]", {"[A]": "[B]", "[B]": "done"})

    assert result.text == "[B] done"
