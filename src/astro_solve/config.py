"""Solver configuration and server URL resolution."""

from __future__ import annotations

import contextlib
import os
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from astro_solve.platform.network import REQUEST_TIMEOUT, UPLOAD_TIMEOUT
from astro_solve.platform.nova.types import ScaleUnits, UploadOptions

DEFAULT_SERVER_URL = "https://nova.astrometry.net"

POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_ATTEMPTS = 120

_ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "ASTRO_SOLVE_SERVER_URL": ("server_url", str),
    "ASTRO_SOLVE_MAX_CONCURRENT": ("max_concurrent", int),
    "ASTRO_SOLVE_REQUEST_TIMEOUT_SECONDS": ("request_timeout_seconds", float),
    "ASTRO_SOLVE_UPLOAD_TIMEOUT_SECONDS": ("upload_timeout_seconds", float),
}


class SolverConfig(BaseModel):
    """User-facing settings for the plate-solving pipeline.

    Attributes:
        api_key: Marker only; the real key lives in the credential store
        server_url: Custom server base URL, used only when use_custom_server is set
        use_custom_server: Select server_url instead of the public service
        max_concurrent: Maximum number of drive loops running at once
        auto_solve: Whether newly imported images should be solved automatically
        default_scale_units: Units for the scale bounds
        default_scale_lower: Lower scale bound (sent only with an upper bound)
        default_scale_upper: Upper scale bound (sent only with a lower bound)
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    api_key: str = ""
    server_url: str = DEFAULT_SERVER_URL
    use_custom_server: bool = False
    max_concurrent: int = Field(default=3, ge=1)
    auto_solve: bool = False
    default_scale_units: ScaleUnits = ScaleUnits.DEGWIDTH
    default_scale_lower: float | None = None
    default_scale_upper: float | None = None
    poll_interval_seconds: float = Field(default=POLL_INTERVAL_SECONDS, gt=0)
    max_poll_attempts: int = Field(default=MAX_POLL_ATTEMPTS, ge=1)
    request_timeout_seconds: float = Field(default=REQUEST_TIMEOUT, gt=0)
    upload_timeout_seconds: float = Field(default=UPLOAD_TIMEOUT, gt=0)

    def with_updates(self, **changes: Any) -> SolverConfig:
        """Return a validated copy with ``changes`` applied."""
        return SolverConfig.model_validate({**self.model_dump(), **changes})

    @classmethod
    def from_env(cls, **overrides: Any) -> SolverConfig:
        """Defaults, then ``ASTRO_SOLVE_*`` environment values, then ``overrides``.

        Malformed environment values are ignored.
        """
        values: dict[str, Any] = {}
        for env_name, (field_name, caster) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or str(raw).strip() == "":
                continue
            with contextlib.suppress(TypeError, ValueError):
                values[field_name] = caster(raw.strip())
        if "server_url" in values:
            values.setdefault("use_custom_server", True)
        values.update(overrides)
        return cls.model_validate(values)


def get_server_url(config: SolverConfig) -> str:
    """Effective base URL: the custom one only when explicitly enabled."""
    return config.server_url if config.use_custom_server else DEFAULT_SERVER_URL


def build_upload_options(config: SolverConfig, session: str) -> UploadOptions:
    options: dict[str, Any] = {"session": session, "publicly_visible": "n"}
    if config.default_scale_lower is not None and config.default_scale_upper is not None:
        options["scale_units"] = config.default_scale_units
        options["scale_lower"] = config.default_scale_lower
        options["scale_upper"] = config.default_scale_upper
    return UploadOptions(**options)


__all__ = [
    "DEFAULT_SERVER_URL",
    "MAX_POLL_ATTEMPTS",
    "POLL_INTERVAL_SECONDS",
    "SolverConfig",
    "build_upload_options",
    "get_server_url",
]
