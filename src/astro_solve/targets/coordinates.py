"""Sexagesimal formatting of equatorial coordinates."""

from __future__ import annotations

import math


def _split_sexagesimal(value: float) -> tuple[int, int, int]:
    whole = math.floor(value)
    minutes_total = (value - whole) * 60.0
    minutes = math.floor(minutes_total)
    seconds = round((minutes_total - minutes) * 60.0)
    if seconds == 60:
        seconds = 0
        minutes += 1
    if minutes == 60:
        minutes = 0
        whole += 1
    return int(whole), int(minutes), int(seconds)


def format_ra(ra_deg: float) -> str:
    """RA in degrees -> ``HHh MMm SSs`` (RA wraps into [0, 360))."""
    hours, minutes, seconds = _split_sexagesimal((ra_deg % 360.0) / 15.0)
    return f"{hours % 24:02d}h {minutes:02d}m {seconds:02d}s"


def format_dec(dec_deg: float) -> str:
    """Dec in degrees -> ``+DD° MM′ SS″``."""
    sign = "+" if dec_deg >= 0 else "-"
    degrees, minutes, seconds = _split_sexagesimal(abs(dec_deg))
    return f"{sign}{degrees:02d}° {minutes:02d}′ {seconds:02d}″"


__all__ = ["format_dec", "format_ra"]
