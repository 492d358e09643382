"""Shared helpers for click-based `astro-solve` commands.

Solve output is saved as ``{"job": <SolveJob>}``; ``wcs`` reads that envelope
back, and also accepts ``{"result": ...}`` or a bare result object.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from astro_solve.models import SolveJob, SolveResult

EXIT_INPUT_ERROR = 1
EXIT_RUNTIME_ERROR = 2
EXIT_DATA_UNAVAILABLE = 4


class AstroSolveCliError(click.ClickException):
    """Click exception with explicit exit-code control."""

    def __init__(self, message: str, *, exit_code: int = EXIT_INPUT_ERROR) -> None:
        super().__init__(message)
        self.exit_code = int(exit_code)


def write_output(text: str, out_path: Path | None) -> None:
    """Echo ``text`` to stdout, or write it to ``out_path`` (parents created)."""
    if out_path is None:
        click.echo(text)
        return
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(text + "\n", encoding="utf-8")


def dump_json_output(payload: dict[str, Any], out_path: Path | None = None) -> None:
    write_output(json.dumps(payload, sort_keys=True, indent=2, default=str), out_path)


def job_payload(job: SolveJob) -> dict[str, Any]:
    return {"job": job.model_dump(mode="json")}


def load_json_file(path: Path, *, label: str) -> dict[str, Any]:
    """Load an object JSON file with user-facing errors."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise AstroSolveCliError(f"{label} not found: {path}") from exc
    except OSError as exc:
        raise AstroSolveCliError(f"Cannot read {label}: {exc}") from exc

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AstroSolveCliError(f"Malformed JSON in {label}: {exc}") from exc

    if not isinstance(payload, dict):
        raise AstroSolveCliError(f"{label} must be a JSON object")
    return payload


def load_solve_result(path: Path) -> tuple[SolveResult, str | None]:
    """Read a saved solve and return its result and the image name, if recorded."""
    payload = load_json_file(path, label="result JSON")
    job = payload.get("job") if isinstance(payload.get("job"), dict) else None
    raw_result: Any = payload
    if job is not None:
        raw_result = job.get("result") or {}
    elif isinstance(payload.get("result"), dict):
        raw_result = payload["result"]
    try:
        result = SolveResult.model_validate(raw_result)
    except ValidationError as exc:
        raise AstroSolveCliError(f"No usable solve result in {path}: {exc}") from exc
    file_name = (job or {}).get("file_name")
    return result, str(file_name) if file_name else None


__all__ = [
    "EXIT_DATA_UNAVAILABLE",
    "EXIT_INPUT_ERROR",
    "EXIT_RUNTIME_ERROR",
    "AstroSolveCliError",
    "dump_json_output",
    "job_payload",
    "load_json_file",
    "load_solve_result",
    "write_output",
]
