"""Shared fixtures: a scripted astrometry client, simulated time, sample results."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import Any

import pytest

from astro_solve.models import Annotation, AnnotationType, Calibration, SolveResult
from astro_solve.platform.nova import JobInfo, SubmissionStatus, UploadOptions


class ManualClock:
    """Simulated time; ``sleep`` advances it instantly or parks forever."""

    def __init__(self, start: float = 0.0, *, block: bool = False) -> None:
        self.now = float(start)
        self.block = block
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.block:
            await asyncio.get_running_loop().create_future()
        self.now += seconds
        await asyncio.sleep(0)


class FakeNovaClient:
    """Scripted stand-in for ``NovaClient``.

    ``submission_responses`` and ``job_statuses`` are consumed one per poll;
    items that are exceptions are raised. Once exhausted, submissions report
    job 202 and the job reports ``final_job_status``. With ``upload_gate`` set,
    uploads block in their worker thread until the event is released.
    """

    def __init__(
        self,
        calibration: Calibration,
        *,
        annotations: list[Annotation] | None = None,
        info: JobInfo | None = None,
        job_statuses: list[Any] | None = None,
        submission_responses: list[Any] | None = None,
        final_job_status: str = "success",
        login_error: Exception | None = None,
        upload_error: Exception | None = None,
        upload_gate: threading.Event | None = None,
    ) -> None:
        self.calibration = calibration
        self.annotations = list(annotations or [])
        self.info = info or JobInfo()
        self.job_statuses = list(job_statuses or [])
        self.submission_responses = list(submission_responses or [])
        self.final_job_status = final_job_status
        self.login_error = login_error
        self.upload_error = upload_error
        self.upload_gate = upload_gate
        self.upload_started = threading.Event()
        self.login_calls = 0
        self.uploads: list[tuple[str, Any, UploadOptions]] = []
        self.job_status_calls = 0
        self._lock = threading.Lock()

    def login(self, api_key: str, server_url: str) -> str:
        with self._lock:
            self.login_calls += 1
            n = self.login_calls
        if self.login_error is not None:
            raise self.login_error
        return f"sess-{n}"

    def upload_file(self, server_url: str, file_path: Any, options: UploadOptions) -> int:
        with self._lock:
            self.uploads.append((server_url, file_path, options))
        self.upload_started.set()
        if self.upload_gate is not None:
            self.upload_gate.wait(timeout=5.0)
        if self.upload_error is not None:
            raise self.upload_error
        return 101

    def upload_url(self, server_url: str, image_url: str, options: UploadOptions) -> int:
        return self.upload_file(server_url, image_url, options)

    def get_submission_status(self, server_url: str, submission_id: int) -> SubmissionStatus:
        with self._lock:
            item = self.submission_responses.pop(0) if self.submission_responses else None
        if isinstance(item, Exception):
            raise item
        if item is None:
            return SubmissionStatus(jobs=[202])
        return item

    def get_job_status(self, server_url: str, job_id: int) -> str:
        with self._lock:
            self.job_status_calls += 1
            item = self.job_statuses.pop(0) if self.job_statuses else self.final_job_status
        if isinstance(item, Exception):
            raise item
        return item

    def get_job_calibration(self, server_url: str, job_id: int) -> Calibration:
        return self.calibration

    def get_job_annotations(self, server_url: str, job_id: int) -> list[Annotation]:
        return list(self.annotations)

    def get_job_info(self, server_url: str, job_id: int) -> JobInfo:
        return self.info


@pytest.fixture
def orion_calibration() -> Calibration:
    return Calibration(
        ra=83.822,
        dec=-5.391,
        radius=0.5,
        pixscale=1.5,
        orientation=0.0,
        parity=0.0,
        field_width=0.5,
        field_height=0.4,
    )


@pytest.fixture
def orion_annotations() -> list[Annotation]:
    return [
        Annotation(type=AnnotationType.STAR, names=("HD 37022",), pixelx=10.0, pixely=20.0),
        Annotation(type=AnnotationType.NGC, names=("NGC 1976",), pixelx=100.0, pixely=200.0),
        Annotation(
            type=AnnotationType.MESSIER,
            names=("M 42", "Orion Nebula"),
            pixelx=100.0,
            pixely=200.0,
        ),
    ]


@pytest.fixture
def orion_result(orion_calibration: Calibration, orion_annotations: list[Annotation]) -> SolveResult:
    return SolveResult(
        calibration=orion_calibration,
        annotations=tuple(orion_annotations),
        tags=("Orion Nebula", "nebula"),
    )


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def blocking_clock() -> ManualClock:
    return ManualClock(block=True)


@pytest.fixture
def make_client(
    orion_calibration: Calibration, orion_annotations: list[Annotation]
) -> Callable[..., FakeNovaClient]:
    def _make(**kwargs: Any) -> FakeNovaClient:
        kwargs.setdefault("annotations", orion_annotations)
        kwargs.setdefault(
            "info", JobInfo(tags=["Orion Nebula", "nebula"], objects_in_field=["M 42", "nebula"])
        )
        return FakeNovaClient(orion_calibration, **kwargs)

    return _make
