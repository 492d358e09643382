"""FITS WCS export of plate-solve calibrations.

Turns a ``Calibration`` into TAN-projection header keywords, renders them as
text, and writes them into an existing FITS file.

Technical Notes:
    - The CD matrix is the pixel scale (deg/pix) times the rotation by the
      solver's orientation; parity 1 flips the RA axis.
    - CRPIX is the image center derived from field size and pixel scale, so it
      is 0 when the server did not report the field size.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from pathlib import Path
from typing import ClassVar

import numpy as np
from astropy.io import fits
from pydantic import BaseModel, ConfigDict

from astro_solve.models import Calibration, SolveResult

logger = logging.getLogger(__name__)

ARCSEC_PER_DEG = 3600.0


class WCSKeyword(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    key: str
    value: str | int | float
    comment: str


def cd_matrix(calibration: Calibration) -> np.ndarray:
    """2x2 CD matrix (deg/pix) for the calibration."""
    scale = calibration.pixscale / ARCSEC_PER_DEG
    theta = math.radians(calibration.orientation)
    parity_sign = -1.0 if int(calibration.parity) == 1 else 1.0
    rotation = np.array(
        [
            [-math.cos(theta) * parity_sign, math.sin(theta) * parity_sign],
            [-math.sin(theta), -math.cos(theta)],
        ]
    )
    return scale * rotation


def _reference_pixel(field_deg: float, scale_deg: float) -> int:
    if field_deg <= 0 or scale_deg <= 0:
        return 0
    return round(field_deg / scale_deg / 2)


def generate_wcs_keywords(calibration: Calibration) -> list[WCSKeyword]:
    scale_deg = calibration.pixscale / ARCSEC_PER_DEG
    parity_sign = -1.0 if int(calibration.parity) == 1 else 1.0
    cd = cd_matrix(calibration)

    keywords = [
        WCSKeyword(key="WCSAXES", value=2, comment="Number of WCS axes"),
        WCSKeyword(key="CTYPE1", value="RA---TAN", comment="Gnomonic projection"),
        WCSKeyword(key="CTYPE2", value="DEC--TAN", comment="Gnomonic projection"),
        WCSKeyword(
            key="CRVAL1", value=round(calibration.ra, 8), comment="[deg] RA at reference pixel"
        ),
        WCSKeyword(
            key="CRVAL2", value=round(calibration.dec, 8), comment="[deg] DEC at reference pixel"
        ),
        WCSKeyword(
            key="CRPIX1",
            value=_reference_pixel(calibration.field_width, scale_deg),
            comment="Reference pixel X",
        ),
        WCSKeyword(
            key="CRPIX2",
            value=_reference_pixel(calibration.field_height, scale_deg),
            comment="Reference pixel Y",
        ),
    ]
    for (row, col), value in np.ndenumerate(cd):
        keywords.append(
            WCSKeyword(
                key=f"CD{row + 1}_{col + 1}",
                value=round(float(value), 12),
                comment="WCS transformation matrix",
            )
        )
    keywords.extend(
        [
            WCSKeyword(
                key="CDELT1",
                value=round(-scale_deg * parity_sign, 12),
                comment="[deg/pix] Pixel scale RA",
            ),
            WCSKeyword(
                key="CDELT2", value=round(-scale_deg, 12), comment="[deg/pix] Pixel scale DEC"
            ),
            WCSKeyword(
                key="CROTA2",
                value=round(calibration.orientation, 6),
                comment="[deg] Rotation angle",
            ),
            WCSKeyword(key="EQUINOX", value=2000.0, comment="Equinox of coordinates"),
            WCSKeyword(key="ASTRSOLV", value="Astrometry.net", comment="Plate solve source"),
            WCSKeyword(
                key="ASTPSCAL",
                value=round(calibration.pixscale, 4),
                comment="[arcsec/pix] Pixel scale",
            ),
            WCSKeyword(
                key="ASTRAD", value=round(calibration.radius, 6), comment="[deg] Field radius"
            ),
        ]
    )
    return keywords


def format_wcs_as_text(keywords: list[WCSKeyword]) -> str:
    lines = []
    for kw in keywords:
        if isinstance(kw.value, str):
            value = f"'{kw.value}'".ljust(20)
        else:
            value = str(kw.value).rjust(20)
        lines.append(f"{kw.key.ljust(8)}= {value} / {kw.comment}")
    return "\n".join(lines)


def render_wcs_report(
    result: SolveResult, file_name: str, *, generated_at: datetime | None = None
) -> str:
    cal = result.calibration
    stamp = (generated_at or datetime.now(UTC)).isoformat()
    named = [a for a in result.annotations if a.names]
    lines = [
        f"# WCS Plate Solution for: {file_name}",
        "# Solved by Astrometry.net",
        f"# Generated: {stamp}",
        "#",
        f"# Center: RA={cal.ra:.6f}° DEC={cal.dec:.6f}°",
        f"# Field: {cal.field_width:.4f}° × {cal.field_height:.4f}°",
        f"# Pixel scale: {cal.pixscale:.4f} arcsec/pixel",
        f"# Orientation: {cal.orientation:.4f}°",
        "#",
        "# FITS Header Keywords:",
        "",
        format_wcs_as_text(generate_wcs_keywords(cal)),
        "",
        f"# Detected objects ({len(result.annotations)}):",
    ]
    lines.extend(
        f"# {', '.join(a.names)} at ({a.pixelx:.1f}, {a.pixely:.1f})" for a in named
    )
    lines.extend(["", f"# Tags: {', '.join(result.tags)}"])
    return "\n".join(lines)


def write_wcs_report(result: SolveResult, file_name: str, out_dir: str | Path) -> Path:
    """Write the text report as ``<stem>_wcs.txt`` under ``out_dir``."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{Path(file_name).stem}_wcs.txt"
    out_path.write_text(render_wcs_report(result, file_name) + "\n", encoding="utf-8")
    logger.info(f"WCS exported to {out_path}")
    return out_path


def write_wcs_to_fits_header(result: SolveResult, fits_path: str | Path) -> int:
    """Write the WCS keywords into the primary header; returns the count written."""
    keywords = generate_wcs_keywords(result.calibration)
    with fits.open(fits_path, mode="update") as hdu_list:
        header = hdu_list[0].header
        for kw in keywords:
            header[kw.key] = (kw.value, kw.comment)
        hdu_list.flush()
    logger.info(f"Wrote {len(keywords)} WCS keywords to {fits_path}")
    return len(keywords)


__all__ = [
    "WCSKeyword",
    "cd_matrix",
    "format_wcs_as_text",
    "generate_wcs_keywords",
    "render_wcs_report",
    "write_wcs_report",
    "write_wcs_to_fits_header",
]
