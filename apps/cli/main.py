"""Typer CLI entrypoint for letterfill."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Any, cast

import typer

from apps.cli.io import (
    build_output_paths,
    existing_output_files,
    read_json_object,
    write_generation_output_atomic,
)
from core.config.settings_loader import LearningSettings, load_settings
from core.learning.engine import LearningEngine
from core.learning.models import Feedback
from core.mapping.field_matcher import categorize_placeholder
from core.mapping.mapping_store import MappingStore
from core.orchestrator.pipeline import TemplateFillGenerator, prepare_mappings, run_generation
from core.records.record_loader import load_records, select_record
from core.storage.kv_store import JsonFileStore
from core.storage.letter_store import LetterStore
from core.templates.placeholder_parser import load_template_text, parse_template_text
from core.utils.errors import InvalidInputError, StorageWriteError, TemplateError

app = typer.Typer(help="Demand letter placeholder mapping CLI", rich_markup_mode=None)

EXIT_INVALID_INPUT = 2
EXIT_STORAGE = 3

TemplateOption = Annotated[
    Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True, help="Template file.")
]
RecordsOption = Annotated[
    Path,
    typer.Option(..., exists=True, dir_okay=False, file_okay=True, help="CSV or XLSX records."),
]
RowOption = Annotated[int, typer.Option(help="Zero-based record index.")]
StoreOption = Annotated[
    Path | None, typer.Option("--store", help="Override the JSON store path.")
]
SettingsOption = Annotated[
    Path | None, typer.Option("--settings", help="Settings YAML file.")
]
CustomInstructionsOption = Annotated[
    str | None,
    typer.Option("--custom-instructions", help="Extra instructions; overrides the setting."),
]


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep subcommands explicit."""


@app.command("placeholders")
def placeholders_command(
    template: TemplateOption,
    strict: Annotated[bool, typer.Option("--strict", help="Fail on malformed brackets.")] = False,
) -> None:
    """List template placeholders with their categories."""

    with _cli_errors():
        result = parse_template_text(load_template_text(template), strict=strict)

    for issue in result.issues:
        typer.echo(
            f"WARNING(brackets): {issue.kind} at {issue.start}-{issue.end}: {issue.text!r}",
            err=True,
        )
    payload = [
        {"placeholder": item, "category": categorize_placeholder(item)}
        for item in result.placeholders
    ]
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@app.command("map")
def map_command(
    template: TemplateOption,
    records: RecordsOption,
    row: RowOption = 0,
    auto_learn: Annotated[
        bool, typer.Option("--auto-learn", help="Fill gaps from saved mapping patterns.")
    ] = False,
    store: StoreOption = None,
    settings: SettingsOption = None,
) -> None:
    """Auto-map template placeholders from one record."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        mapping_store = prepare_mappings(
            load_template_text(template),
            select_record(load_records(records), row),
            _open_store(learning_settings, store),
            auto_learn=auto_learn,
        )

    _echo_storage_warnings(mapping_store.storage_warnings)
    for placeholder in mapping_store.unmapped():
        typer.echo(f"WARNING(unmapped): {placeholder} needs manual entry", err=True)
    typer.echo(
        json.dumps([asdict(item) for item in mapping_store.mappings], ensure_ascii=False, indent=2)
    )


@app.command("save-pattern")
def save_pattern_command(
    template: TemplateOption,
    records: RecordsOption,
    row: RowOption = 0,
    name: Annotated[str | None, typer.Option(help="Pattern name.")] = None,
    overrides: Annotated[
        Path | None,
        typer.Option(exists=True, dir_okay=False, help="JSON object of placeholder values."),
    ] = None,
    store: StoreOption = None,
    settings: SettingsOption = None,
) -> None:
    """Save the current mappings as a reusable pattern."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        mapping_store = prepare_mappings(
            load_template_text(template),
            select_record(load_records(records), row),
            _open_store(learning_settings, store),
        )
        _apply_overrides(mapping_store, overrides)
        key = mapping_store.save_pattern(name)

    _echo_storage_warnings(mapping_store.storage_warnings)
    typer.echo(key)


@app.command("generate")
def generate_command(
    template: TemplateOption,
    records: RecordsOption,
    row: RowOption = 0,
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    overrides: Annotated[
        Path | None,
        typer.Option(exists=True, dir_okay=False, help="JSON object of placeholder values."),
    ] = None,
    auto_learn: Annotated[
        bool, typer.Option("--auto-learn", help="Fill gaps from saved mapping patterns.")
    ] = False,
    no_overwrite: Annotated[
        bool, typer.Option("--no-overwrite", help="Fail when outputs already exist.")
    ] = False,
    custom_instructions: CustomInstructionsOption = None,
    store: StoreOption = None,
    settings: SettingsOption = None,
) -> None:
    """Fill one letter for a record, write outputs and record the learning event."""

    paths = build_output_paths(out_dir)
    existing = existing_output_files(paths)
    if existing and no_overwrite:
        typer.echo("ERROR: outputs already exist and --no-overwrite is enabled.")
        raise typer.Exit(code=1)
    if existing:
        names = ", ".join(path.name for path in existing)
        typer.echo(f"INFO: overwriting existing outputs: {names}")

    with _cli_errors():
        learning_settings = load_settings(settings)
        kv_store = _open_store(learning_settings, store)
        template_text = load_template_text(template)
        mapping_store = prepare_mappings(
            template_text,
            select_record(load_records(records), row),
            kv_store,
            auto_learn=auto_learn,
        )
        _apply_overrides(mapping_store, overrides)
        engine = LearningEngine(kv_store, learning_settings)
        output = run_generation(
            template_text,
            mapping_store,
            engine,
            TemplateFillGenerator(),
            custom_instructions=custom_instructions,
        )

    _echo_storage_warnings(output.storage_warnings)
    for placeholder in output.unmapped:
        typer.echo(f"WARNING(unmapped): {placeholder} left in place", err=True)

    with _cli_errors():
        write_generation_output_atomic(paths, output)
    typer.echo("INFO: success")


@app.command("feedback")
def feedback_command(
    template: TemplateOption,
    letter: Annotated[Path, typer.Option(..., exists=True, dir_okay=False)],
    rating: Annotated[str, typer.Option(help="positive or negative.")],
    notes: Annotated[str | None, typer.Option()] = None,
    store: StoreOption = None,
    settings: SettingsOption = None,
) -> None:
    """Record user feedback on a generated letter."""

    normalized = rating.lower().strip()
    if normalized not in {"positive", "negative"}:
        typer.echo("ERROR: --rating must be one of: positive, negative.")
        raise typer.Exit(code=EXIT_INVALID_INPUT)

    with _cli_errors():
        learning_settings = load_settings(settings)
        engine = LearningEngine(_open_store(learning_settings, store), learning_settings)
        engine.record_feedback(
            load_template_text(template),
            letter.read_text(encoding="utf-8"),
            cast(Feedback, normalized),
            notes,
        )

    _echo_storage_warnings(engine.storage_warnings)
    typer.echo("INFO: feedback recorded")


@app.command("suggestions")
def suggestions_command(store: StoreOption = None, settings: SettingsOption = None) -> None:
    """Print improvement suggestions derived from feedback history."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        engine = LearningEngine(_open_store(learning_settings, store), learning_settings)
        suggestions = engine.compute_improvement_suggestions()

    _echo_storage_warnings(engine.storage_warnings)
    if not suggestions:
        typer.echo("INFO: no suggestions")
    for suggestion in suggestions:
        typer.echo(f"- {suggestion}")


@app.command("instructions")
def instructions_command(
    template: TemplateOption,
    mappings: Annotated[
        Path | None,
        typer.Option(exists=True, dir_okay=False, help="JSON object of placeholder values."),
    ] = None,
    custom_instructions: CustomInstructionsOption = None,
    store: StoreOption = None,
    settings: SettingsOption = None,
) -> None:
    """Print the enriched instructions for the external generation call."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        engine = LearningEngine(_open_store(learning_settings, store), learning_settings)
        values: dict[str, Any] = read_json_object(mappings) if mappings is not None else {}
        text = engine.build_enriched_instructions(
            load_template_text(template), values, custom_instructions
        )

    _echo_storage_warnings(engine.storage_warnings)
    typer.echo(text)


@app.command("save-letter")
def save_letter_command(
    letter: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, help="Letter text.")],
    records: RecordsOption,
    row: RowOption = 0,
    original: Annotated[
        Path | None,
        typer.Option(exists=True, dir_okay=False, help="Generated text before edits."),
    ] = None,
    store: StoreOption = None,
    settings: SettingsOption = None,
) -> None:
    """Save a letter under the record's plaintiff name."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        letter_store = LetterStore(_open_store(learning_settings, store))
        saved = letter_store.save(
            select_record(load_records(records), row),
            letter.read_text(encoding="utf-8"),
            original.read_text(encoding="utf-8") if original is not None else None,
        )

    _echo_storage_warnings(letter_store.storage_warnings)
    typer.echo(saved.id)


@app.command("letters")
def letters_command(store: StoreOption = None, settings: SettingsOption = None) -> None:
    """List saved letters, newest first."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        letter_store = LetterStore(_open_store(learning_settings, store))
        letters = letter_store.list_letters()

    _echo_storage_warnings(letter_store.storage_warnings)
    payload = [item.model_dump(mode="json") for item in letters]
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@app.command("delete-letter")
def delete_letter_command(
    letter_id: Annotated[str, typer.Argument(help="Saved letter id.")],
    store: StoreOption = None,
    settings: SettingsOption = None,
) -> None:
    """Delete one saved letter."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        letter_store = LetterStore(_open_store(learning_settings, store))
        deleted = letter_store.delete(letter_id)

    _echo_storage_warnings(letter_store.storage_warnings)
    if not deleted:
        typer.echo(f"ERROR: saved letter not found: {letter_id}")
        raise typer.Exit(code=EXIT_INVALID_INPUT)
    typer.echo("INFO: letter deleted")


@app.command("stats")
def stats_command(store: StoreOption = None, settings: SettingsOption = None) -> None:
    """Print learning store counters."""

    with _cli_errors():
        learning_settings = load_settings(settings)
        engine = LearningEngine(_open_store(learning_settings, store), learning_settings)
        stats = engine.stats()

    _echo_storage_warnings(engine.storage_warnings)
    typer.echo(json.dumps(stats.model_dump(mode="json"), indent=2))


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (InvalidInputError, TemplateError) as exc:
        typer.echo(f"ERROR: invalid input: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc
    except StorageWriteError as exc:
        typer.echo(f"ERROR: storage write failed: {exc}")
        raise typer.Exit(code=EXIT_STORAGE) from exc
    except (ValueError, OSError) as exc:
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        raise typer.Exit(code=1) from exc


def _open_store(settings: LearningSettings, override: Path | None) -> JsonFileStore:
    return JsonFileStore(override or settings.store_path)


def _apply_overrides(mapping_store: MappingStore, overrides: Path | None) -> None:
    if overrides is None:
        return
    values = read_json_object(overrides)
    index_by_placeholder = {
        item.placeholder: index for index, item in enumerate(mapping_store.mappings)
    }
    for placeholder, value in values.items():
        index = index_by_placeholder.get(placeholder)
        if index is None:
            typer.echo(f"WARNING(overrides): {placeholder} is not in the template", err=True)
            continue
        if not isinstance(value, str):
            raise InvalidInputError(
                f"Override for {placeholder} must be a string", placeholder=placeholder
            )
        mapping_store.set_mapping(index, value)


def _echo_storage_warnings(warnings: list[str]) -> None:
    for warning in dict.fromkeys(warnings):
        typer.echo(f"WARNING(storage): {warning}", err=True)


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
