"""CLI entrypoint for plate solving against astrometry.net.

Usage:
    astro-solve solve IMAGE [options]
    astro-solve solve --url https://example.org/m42.jpg --out m42_job.json
    astro-solve test-connection
    astro-solve wcs result.json --out m42_wcs.txt

The API key is taken from ``--api-key`` or the ``ASTROMETRY_API_KEY``
environment variable.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from astro_solve.board import JobBoard, new_job
from astro_solve.cli.common_cli import (
    EXIT_DATA_UNAVAILABLE,
    EXIT_INPUT_ERROR,
    EXIT_RUNTIME_ERROR,
    AstroSolveCliError,
    dump_json_output,
    job_payload,
    load_solve_result,
    write_output,
)
from astro_solve.config import SolverConfig, get_server_url
from astro_solve.credentials import API_KEY_ENV_VAR, MemoryCredentialStore, save_api_key
from astro_solve.errors import ErrorCode
from astro_solve.models import JobPatch, JobStatus, SolveJob
from astro_solve.orchestrator import create_orchestrator
from astro_solve.platform.nova import NovaClient
from astro_solve.targets import extract_best_name, format_dec, format_ra
from astro_solve.wcs import render_wcs_report, write_wcs_report, write_wcs_to_fits_header

FITS_SUFFIXES = {".fits", ".fit", ".fts"}

_EXIT_FOR_ERROR_CODE = {
    ErrorCode.AUTH.value: EXIT_INPUT_ERROR,
    ErrorCode.NOT_FOUND.value: EXIT_INPUT_ERROR,
    ErrorCode.NETWORK.value: EXIT_DATA_UNAVAILABLE,
    ErrorCode.SERVER.value: EXIT_DATA_UNAVAILABLE,
    ErrorCode.RATE_LIMIT.value: EXIT_DATA_UNAVAILABLE,
}


def _build_config(server_url: str | None) -> SolverConfig:
    overrides: dict[str, Any] = {}
    if server_url:
        overrides.update(server_url=server_url, use_custom_server=True)
    try:
        return SolverConfig.from_env(**overrides)
    except ValidationError as exc:
        raise AstroSolveCliError(f"Invalid configuration: {exc}") from exc


def _require_api_key(api_key: str | None) -> str:
    if api_key is None or not api_key.strip():
        raise AstroSolveCliError(
            f"API key required. Pass --api-key or set {API_KEY_ENV_VAR}.",
            exit_code=EXIT_INPUT_ERROR,
        )
    return api_key.strip()


def _exit_code_for(job: SolveJob, error_code: str | None) -> int:
    if job.status is JobStatus.CANCELLED:
        return EXIT_RUNTIME_ERROR
    return _EXIT_FOR_ERROR_CODE.get(error_code or "", EXIT_RUNTIME_ERROR)


def _echo_result(job: SolveJob) -> None:
    result = job.result
    if result is None:
        return
    cal = result.calibration
    click.echo(f"Solved:      {job.file_name}")
    click.echo(f"Center:      RA {format_ra(cal.ra)}  Dec {format_dec(cal.dec)}")
    click.echo(f"             ({cal.ra:.6f}, {cal.dec:.6f}) deg")
    click.echo(f"Field:       {cal.field_width:.4f} x {cal.field_height:.4f} deg")
    click.echo(f"Pixel scale: {cal.pixscale:.4f} arcsec/pixel")
    click.echo(f"Orientation: {cal.orientation:.2f} deg")
    best_name = extract_best_name(result)
    if best_name:
        click.echo(f"Best name:   {best_name}")
    if result.tags:
        click.echo(f"Tags:        {', '.join(result.tags)}")


@click.group()
@click.version_option(package_name="astro-solve")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """astro-solve CLI for astrometry.net plate solving."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("solve")
@click.argument(
    "image",
    required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--url", "image_url", default=None, help="Solve a publicly reachable image URL.")
@click.option("--api-key", envvar=API_KEY_ENV_VAR, default=None, help="astrometry.net API key.")
@click.option("--server-url", default=None, help="Custom astrometry server base URL.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit the job as JSON.")
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also save the final job as JSON to this file (input for `wcs`).",
)
@click.option(
    "--wcs-out",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the <name>_wcs.txt report.",
)
@click.option(
    "--write-header",
    is_flag=True,
    default=False,
    help="Write WCS keywords into IMAGE's primary header (FITS only).",
)
def solve_command(
    image: Path | None,
    image_url: str | None,
    api_key: str | None,
    server_url: str | None,
    as_json: bool,
    out_path: Path | None,
    wcs_out: Path | None,
    write_header: bool,
) -> None:
    """Plate-solve IMAGE (or --url) and report the calibration."""
    if (image is None) == (image_url is None):
        raise AstroSolveCliError("Provide exactly one of IMAGE or --url.")
    if write_header and (image is None or image.suffix.lower() not in FITS_SUFFIXES):
        raise AstroSolveCliError("--write-header requires a local FITS image.")

    credentials = MemoryCredentialStore()
    save_api_key(credentials, _require_api_key(api_key))
    config = _build_config(server_url)
    orchestrator = create_orchestrator(config, credentials)

    file_name = image.name if image is not None else str(image_url).rsplit("/", 1)[-1]
    board = JobBoard()
    job = board.add(new_job(file_name or "image", job_id=f"cli_{uuid.uuid4().hex[:8]}"))
    last_patch: list[JobPatch] = []

    def on_patch(patch: JobPatch) -> None:
        updated = board.apply(patch)
        last_patch.append(patch)
        if not as_json and updated is not None and patch.status is not None:
            click.echo(f"[{updated.progress:3d}%] {updated.status.value}", err=True)

    if image is not None:
        run = orchestrator.solve_file(job.id, image, on_patch=on_patch)
    else:
        run = orchestrator.solve_url(job.id, str(image_url), on_patch=on_patch)
    try:
        final = asyncio.run(run)
    except KeyboardInterrupt as exc:
        raise AstroSolveCliError("Interrupted", exit_code=EXIT_RUNTIME_ERROR) from exc

    job = board.get(job.id) or job
    if out_path is not None:
        dump_json_output(job_payload(job), out_path)
        click.echo(f"Job saved: {out_path}", err=True)
    if as_json:
        dump_json_output(job_payload(job))
    else:
        _echo_result(job)

    if job.status is not JobStatus.SUCCESS or job.result is None:
        raise AstroSolveCliError(
            f"Solve failed: {job.error or job.status.value}",
            exit_code=_exit_code_for(job, final.error_code),
        )

    if wcs_out is not None:
        report_path = write_wcs_report(job.result, job.file_name, wcs_out)
        click.echo(f"WCS report: {report_path}", err=True)
    if write_header and image is not None:
        count = write_wcs_to_fits_header(job.result, image)
        click.echo(f"Wrote {count} WCS keywords to {image}", err=True)


@cli.command("test-connection")
@click.option("--api-key", envvar=API_KEY_ENV_VAR, default=None, help="astrometry.net API key.")
@click.option("--server-url", default=None, help="Custom astrometry server base URL.")
def test_connection_command(api_key: str | None, server_url: str | None) -> None:
    """Check that the API key can log in."""
    key = _require_api_key(api_key)
    config = _build_config(server_url)
    url = get_server_url(config)
    client = NovaClient(request_timeout=config.request_timeout_seconds)
    if not client.test_connection(key, url):
        raise AstroSolveCliError(
            f"Could not log in to {url}", exit_code=EXIT_DATA_UNAVAILABLE
        )
    click.echo(f"Connected to {url}")


@cli.command("wcs")
@click.argument("result_json", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the report here instead of stdout.",
)
@click.option(
    "--fits",
    "fits_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Also write the keywords into this FITS file's primary header.",
)
@click.option("--name", "file_name", default=None, help="Image name shown in the report.")
def wcs_command(
    result_json: Path, out_path: Path | None, fits_path: Path | None, file_name: str | None
) -> None:
    """Render WCS keywords from a saved solve result (``solve --json`` output)."""
    result, saved_name = load_solve_result(result_json)
    name = file_name or saved_name or result_json.stem
    write_output(render_wcs_report(result, name), out_path)
    if fits_path is not None:
        count = write_wcs_to_fits_header(result, fits_path)
        click.echo(f"Wrote {count} WCS keywords to {fits_path}", err=True)


def main() -> int:
    """Main entry point for the CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return EXIT_RUNTIME_ERROR
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":
    sys.exit(main())
