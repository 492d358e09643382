"""Domain models for plate-solve jobs and their results.

All models are frozen. A ``SolveJob`` is never edited in place: the
orchestrator emits ``JobPatch`` objects and callers fold them into their own
job snapshots (see ``astro_solve.board``).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    SUBMITTED = "submitted"
    SOLVING = "solving"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position along the forward path; terminal states share the top rank."""
        return _STATUS_RANK[self]


TERMINAL_STATUSES = frozenset({JobStatus.SUCCESS, JobStatus.FAILURE, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset(
    {JobStatus.PENDING, JobStatus.UPLOADING, JobStatus.SUBMITTED, JobStatus.SOLVING}
)

_STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.PENDING: 0,
    JobStatus.UPLOADING: 1,
    JobStatus.SUBMITTED: 2,
    JobStatus.SOLVING: 3,
    JobStatus.SUCCESS: 4,
    JobStatus.FAILURE: 4,
    JobStatus.CANCELLED: 4,
}


class AnnotationType(str, Enum):
    STAR = "star"
    HD = "hd"
    NGC = "ngc"
    IC = "ic"
    MESSIER = "messier"
    BRIGHT_STAR = "bright_star"
    OTHER = "other"


class Calibration(BaseModel):
    """WCS calibration of a solved field.

    Attributes:
        ra: Field center right ascension (degrees)
        dec: Field center declination (degrees)
        radius: Field radius (degrees)
        pixscale: Pixel scale (arcsec/pixel)
        orientation: Rotation angle, east of north (degrees)
        parity: Image parity (0 normal, 1 flipped)
        field_width: Field width (degrees, 0 when unknown)
        field_height: Field height (degrees, 0 when unknown)
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    ra: float = Field(description="Field center right ascension (degrees)")
    dec: float = Field(description="Field center declination (degrees)")
    radius: float = Field(description="Field radius (degrees)")
    pixscale: float = Field(description="Pixel scale (arcsec/pixel)")
    orientation: float = Field(description="Rotation angle (degrees)")
    parity: float = Field(description="Image parity")
    field_width: float = Field(default=0.0, description="Field width (degrees)")
    field_height: float = Field(default=0.0, description="Field height (degrees)")


class Annotation(BaseModel):
    """A catalog object or star located in the solved image."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    type: AnnotationType
    names: tuple[str, ...] = ()
    pixelx: float
    pixely: float
    radius: float | None = None


class SolveResult(BaseModel):
    """Calibration, annotations and de-duplicated tags of a finished solve."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    calibration: Calibration
    annotations: tuple[Annotation, ...] = ()
    tags: tuple[str, ...] = ()


class SolveJob(BaseModel):
    """Caller-side snapshot of one plate-solve request."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    id: str
    file_id: str | None = None
    file_name: str
    submission_id: int | None = None
    remote_job_id: int | None = None
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    result: SolveResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobPatch(BaseModel):
    """One state change of a job, as emitted by the orchestrator.

    ``None`` fields are "unchanged". Every job's patch stream ends with exactly
    one patch whose status is terminal.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    job_id: str
    status: JobStatus | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    submission_id: int | None = None
    remote_job_id: int | None = None
    error: str | None = None
    error_code: str | None = None
    result: SolveResult | None = None
    emitted_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    def changes(self) -> dict[str, Any]:
        """Fields this patch sets, keyed by ``SolveJob`` attribute name."""
        fields = ("status", "progress", "submission_id", "remote_job_id", "error", "result")
        return {name: getattr(self, name) for name in fields if getattr(self, name) is not None}


__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Annotation",
    "AnnotationType",
    "Calibration",
    "JobPatch",
    "JobStatus",
    "SolveJob",
    "SolveResult",
    "utc_now",
]
