from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field


class ScaleUnits(str, Enum):
    DEGWIDTH = "degwidth"
    ARCMINWIDTH = "arcminwidth"
    ARCSECPERPIX = "arcsecperpix"


RemoteJobStatus = Literal["solving", "success", "failure"]


class UploadOptions(BaseModel):
    """The ``request-json`` blob sent with an upload or URL submission."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    session: str
    scale_units: ScaleUnits | None = None
    scale_lower: float | None = None
    scale_upper: float | None = None
    center_ra: float | None = None
    center_dec: float | None = None
    radius: float | None = None
    parity: Literal[0, 1, 2] | None = None
    allow_commercial_use: Literal["d", "y", "n"] | None = None
    allow_modifications: Literal["d", "y", "n", "sa"] | None = None
    publicly_visible: Literal["y", "n"] | None = None

    def to_request_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class SubmissionStatus(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    processing_started: str | None = None
    processing_finished: str | None = None
    job_calibrations: list[list[int]] = Field(default_factory=list)
    jobs: list[int | None] = Field(default_factory=list)
    user: int | None = None
    user_images: list[int] = Field(default_factory=list)

    @property
    def first_job_id(self) -> int | None:
        """The solver job spawned by this submission, once one exists."""
        if not self.jobs:
            return None
        job_id = self.jobs[0]
        if job_id is None or job_id <= 0:
            return None
        return int(job_id)


class JobInfo(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    tags: list[str] = Field(default_factory=list)
    objects_in_field: list[str] = Field(default_factory=list)


__all__ = [
    "JobInfo",
    "RemoteJobStatus",
    "ScaleUnits",
    "SubmissionStatus",
    "UploadOptions",
]
