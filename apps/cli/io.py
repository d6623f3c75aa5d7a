"""CLI I/O helpers for atomic output writing."""

from __future__ import annotations

import json
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.orchestrator.pipeline import GenerationOutput


@dataclass(frozen=True)
class OutputPaths:
    """Fixed output artifact paths for one generation run."""

    letter: Path
    prompt: Path
    mappings: Path


def build_output_paths(out_dir: Path) -> OutputPaths:
    """Build fixed output file paths under out_dir."""

    return OutputPaths(
        letter=out_dir / "out.letter.txt",
        prompt=out_dir / "out.prompt.txt",
        mappings=out_dir / "out.mappings.json",
    )


def existing_output_files(paths: OutputPaths) -> list[Path]:
    """Return existing output files among fixed artifact paths."""

    return [path for path in (paths.letter, paths.prompt, paths.mappings) if path.exists()]


def write_generation_output_atomic(paths: OutputPaths, output: GenerationOutput) -> None:
    """Write letter, prompt and mapping report atomically."""

    paths.letter.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_text(paths.letter, output.generated_text)
    _atomic_write_text(paths.prompt, output.prompt)
    _atomic_write_json(
        paths.mappings,
        {
            "generator": output.generator,
            "mappings": output.mappings,
            "unmapped": output.unmapped,
            "storage_warnings": output.storage_warnings,
        },
    )


def read_json_object(path: Path) -> dict[str, Any]:
    """Read a JSON file that must contain an object."""

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"JSON file must contain an object: {path}")
    return raw


def _atomic_write_text(path: Path, text: str) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        tmp.write(text)

    tmp_path.replace(path)


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, indent=2)

    tmp_path.replace(path)
