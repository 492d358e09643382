"""Plate-solve job orchestration.

Each solve request runs its own drive loop:

    pending -> uploading -> submitted -> solving -> success | failure
                      (cancelled is reachable from any non-terminal state)

The drive loop never raises. Every exception is classified with
``classify_error`` and reported as a terminal ``failure`` patch; an ``auth``
failure also invalidates the shared session so the next job logs in again.

Progress is reported as immutable ``JobPatch`` objects through a per-job
callback or async stream. The orchestrator owns no caller storage; callers
fold patches into their own job records (see ``astro_solve.board``).

Technical Notes:
    - Transport calls are blocking ``requests`` calls run via
      ``asyncio.to_thread``; a cancelled job does not interrupt a call that is
      already in flight, its response is discarded at the next checkpoint.
    - Poll waits race the job's cancel event, so cancellation is observed
      without waiting out the poll interval.
    - ``max_concurrent`` is enforced with a semaphore; a job waiting for a
      slot stays ``pending`` and can be cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from astro_solve.clock import AsyncioClock, Clock
from astro_solve.config import SolverConfig, build_upload_options, get_server_url
from astro_solve.credentials import CredentialStore
from astro_solve.errors import (
    TRANSIENT_CODES,
    ErrorCode,
    JobCancelledError,
    PollTimeoutError,
    classify_error,
)
from astro_solve.models import JobPatch, JobStatus, SolveResult
from astro_solve.platform.nova import NovaClient, RemoteJobStatus, UploadOptions
from astro_solve.session import SessionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

PatchCallback = Callable[[JobPatch], None]
Submitter = Callable[[str, UploadOptions], int]

SOLVE_FAILED_MESSAGE = "Plate solving failed"
MAX_CONSECUTIVE_POLL_ERRORS = 5

PROGRESS_UPLOADING = 10
PROGRESS_SUBMITTED = 30
PROGRESS_SOLVING = 50
PROGRESS_SOLVING_CEILING = 85
PROGRESS_FETCHING = 90
PROGRESS_DONE = 100


def solving_progress(elapsed_seconds: float) -> int:
    """Time-based progress while the solver works: 50 rising toward 85."""
    span = PROGRESS_SOLVING_CEILING - PROGRESS_SOLVING
    value = PROGRESS_SOLVING + math.floor(span * (1 - math.exp(-max(0.0, elapsed_seconds) / 120)))
    return min(PROGRESS_SOLVING_CEILING, value)


def merge_tags(*groups: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Concatenate tag groups, dropping blanks and repeats (first one wins)."""
    seen: dict[str, None] = {}
    for group in groups:
        for tag in group:
            text = str(tag).strip()
            if text and text not in seen:
                seen[text] = None
    return tuple(seen)


@dataclass
class _ActiveJob:
    job_id: str
    on_patch: PatchCallback | None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    token: str | None = None
    final: JobPatch | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class JobOrchestrator:
    def __init__(
        self,
        client: NovaClient,
        sessions: SessionManager,
        config: SolverConfig,
        *,
        clock: Clock | None = None,
        max_consecutive_poll_errors: int = MAX_CONSECUTIVE_POLL_ERRORS,
    ) -> None:
        self._client = client
        self._sessions = sessions
        self._config = config
        self._clock: Clock = clock if clock is not None else AsyncioClock()
        self._max_poll_errors = max(1, int(max_consecutive_poll_errors))
        self._active: dict[str, _ActiveJob] = {}
        self._gate: asyncio.Semaphore | None = None
        self._gate_loop: asyncio.AbstractEventLoop | None = None

    @property
    def config(self) -> SolverConfig:
        return self._config

    # -----------------------------------------------------------------------------
    # Starting jobs
    # -----------------------------------------------------------------------------

    async def solve_file(
        self,
        job_id: str,
        file_path: str | Path,
        *,
        on_patch: PatchCallback | None = None,
    ) -> JobPatch:
        """Solve a local image file; returns the terminal patch.

        Raises:
            ValueError: ``job_id`` is already active.
        """
        handle = self._register(job_id, on_patch)
        return await self._drive(handle, self._file_submitter(file_path))

    async def solve_url(
        self,
        job_id: str,
        image_url: str,
        *,
        on_patch: PatchCallback | None = None,
    ) -> JobPatch:
        """Solve a publicly reachable image URL; returns the terminal patch."""
        handle = self._register(job_id, on_patch)
        return await self._drive(handle, self._url_submitter(image_url))

    def start_file(
        self,
        job_id: str,
        file_path: str | Path,
        *,
        on_patch: PatchCallback | None = None,
    ) -> asyncio.Task[JobPatch]:
        """Register ``job_id`` now and run its drive loop as a task.

        Must be called from a running event loop.
        """
        handle = self._register(job_id, on_patch)
        return asyncio.get_running_loop().create_task(
            self._drive(handle, self._file_submitter(file_path))
        )

    def start_url(
        self,
        job_id: str,
        image_url: str,
        *,
        on_patch: PatchCallback | None = None,
    ) -> asyncio.Task[JobPatch]:
        handle = self._register(job_id, on_patch)
        return asyncio.get_running_loop().create_task(
            self._drive(handle, self._url_submitter(image_url))
        )

    async def stream_file(self, job_id: str, file_path: str | Path) -> AsyncIterator[JobPatch]:
        """Yield the job's patches as they happen, ending with the terminal one."""
        async for patch in self._stream(job_id, self._file_submitter(file_path)):
            yield patch

    async def stream_url(self, job_id: str, image_url: str) -> AsyncIterator[JobPatch]:
        async for patch in self._stream(job_id, self._url_submitter(image_url)):
            yield patch

    # -----------------------------------------------------------------------------
    # Control and introspection
    # -----------------------------------------------------------------------------

    def cancel_job(self, job_id: str) -> bool:
        """Request cancellation; returns False for unknown or finished jobs."""
        handle = self._active.pop(job_id, None)
        if handle is None:
            return False
        handle.cancel_event.set()
        logger.info(f"Cancelling job: {job_id}")
        return True

    def cancel_all_jobs(self) -> int:
        job_ids = list(self._active)
        return sum(1 for job_id in job_ids if self.cancel_job(job_id))

    def get_active_job_count(self) -> int:
        return len(self._active)

    def is_job_active(self, job_id: str) -> bool:
        return job_id in self._active

    def active_job_ids(self) -> list[str]:
        return list(self._active)

    # -----------------------------------------------------------------------------
    # Drive loop
    # -----------------------------------------------------------------------------

    def _register(self, job_id: str, on_patch: PatchCallback | None) -> _ActiveJob:
        if job_id in self._active:
            raise ValueError(f"Job {job_id} is already active")
        handle = _ActiveJob(job_id=job_id, on_patch=on_patch)
        self._active[job_id] = handle
        return handle

    def _release(self, handle: _ActiveJob) -> None:
        if self._active.get(handle.job_id) is handle:
            del self._active[handle.job_id]

    def _file_submitter(self, file_path: str | Path) -> Submitter:
        def submit(server_url: str, options: UploadOptions) -> int:
            return self._client.upload_file(server_url, file_path, options)

        return submit

    def _url_submitter(self, image_url: str) -> Submitter:
        def submit(server_url: str, options: UploadOptions) -> int:
            return self._client.upload_url(server_url, image_url, options)

        return submit

    async def _stream(self, job_id: str, submit: Submitter) -> AsyncIterator[JobPatch]:
        queue: asyncio.Queue[JobPatch] = asyncio.Queue()
        handle = self._register(job_id, queue.put_nowait)
        task = asyncio.get_running_loop().create_task(self._drive(handle, submit))
        try:
            while True:
                patch = await queue.get()
                yield patch
                if patch.is_terminal:
                    break
        finally:
            if not task.done():
                self.cancel_job(job_id)
            await task

    async def _drive(self, handle: _ActiveJob, submit: Submitter) -> JobPatch:
        try:
            return await self._run_steps(handle, submit)
        except JobCancelledError:
            return self._finish_cancelled(handle)
        except asyncio.CancelledError:
            self._finish_cancelled(handle)
            raise
        except Exception as e:
            if handle.cancelled:
                return self._finish_cancelled(handle)
            return self._finish_failed(handle, e)
        finally:
            self._release(handle)

    async def _run_steps(self, handle: _ActiveJob, submit: Submitter) -> JobPatch:
        server_url = get_server_url(self._config)
        gate = self._gate_for_running_loop()
        await self._wait_or_cancel(handle, gate.acquire())
        try:
            self._checkpoint(handle)
            token = await self._sessions.ensure(self._config)
            handle.token = token
            self._checkpoint(handle)

            self._emit(handle, status=JobStatus.UPLOADING, progress=PROGRESS_UPLOADING)
            options = build_upload_options(self._config, token)
            submission_id = await asyncio.to_thread(submit, server_url, options)
            self._checkpoint(handle)
            self._emit(
                handle,
                status=JobStatus.SUBMITTED,
                progress=PROGRESS_SUBMITTED,
                submission_id=submission_id,
            )

            remote_job_id = await self._poll_submission(handle, server_url, submission_id)
            self._emit(
                handle,
                status=JobStatus.SOLVING,
                progress=PROGRESS_SOLVING,
                remote_job_id=remote_job_id,
            )

            outcome = await self._poll_job(handle, server_url, remote_job_id)
            if outcome != "success":
                logger.info(f"Job {handle.job_id} finished without a solution")
                return self._emit(
                    handle,
                    status=JobStatus.FAILURE,
                    progress=handle.progress,
                    error=SOLVE_FAILED_MESSAGE,
                )

            self._emit(handle, progress=PROGRESS_FETCHING)
            result = await self._fetch_result(server_url, remote_job_id)
            self._checkpoint(handle)
            patch = self._emit(
                handle, status=JobStatus.SUCCESS, progress=PROGRESS_DONE, result=result
            )
            logger.info(
                f"Job {handle.job_id} solved successfully "
                f"(ra={result.calibration.ra:.4f}, dec={result.calibration.dec:.4f})"
            )
            return patch
        finally:
            gate.release()

    async def _poll_submission(
        self, handle: _ActiveJob, server_url: str, submission_id: int
    ) -> int:
        consecutive_errors = 0
        attempts = self._config.max_poll_attempts
        for attempt in range(attempts):
            self._checkpoint(handle)
            try:
                status = await asyncio.to_thread(
                    self._client.get_submission_status, server_url, submission_id
                )
            except Exception as e:
                consecutive_errors = self._count_poll_error(
                    handle, e, consecutive_errors, f"submission {submission_id}"
                )
            else:
                consecutive_errors = 0
                self._checkpoint(handle)
                remote_job_id = status.first_job_id
                if remote_job_id is not None:
                    logger.debug(f"Submission {submission_id} -> job {remote_job_id}")
                    return remote_job_id
            if attempt + 1 < attempts:
                await self._pause(handle)
        raise PollTimeoutError("Timeout: no job ID received from submission")

    async def _poll_job(
        self, handle: _ActiveJob, server_url: str, remote_job_id: int
    ) -> RemoteJobStatus:
        consecutive_errors = 0
        attempts = self._config.max_poll_attempts
        started = self._clock.monotonic()
        for attempt in range(attempts):
            self._checkpoint(handle)
            try:
                status = await asyncio.to_thread(
                    self._client.get_job_status, server_url, remote_job_id
                )
            except Exception as e:
                consecutive_errors = self._count_poll_error(
                    handle, e, consecutive_errors, f"job {remote_job_id}"
                )
            else:
                consecutive_errors = 0
                self._checkpoint(handle)
                logger.debug(f"Job {remote_job_id} status: {status}")
                if status in ("success", "failure"):
                    return status
                progress = solving_progress(self._clock.monotonic() - started)
                if progress > handle.progress:
                    self._emit(handle, progress=progress)
            if attempt + 1 < attempts:
                await self._pause(handle)
        raise PollTimeoutError("Timeout: job did not complete in time")

    def _count_poll_error(
        self, handle: _ActiveJob, error: Exception, consecutive: int, what: str
    ) -> int:
        """Tolerate a transient poll failure, or re-raise it."""
        self._checkpoint(handle)
        consecutive += 1
        code = classify_error(error).code
        if code not in TRANSIENT_CODES or consecutive >= self._max_poll_errors:
            raise error
        logger.warning(f"Poll {what} error ({consecutive}): {error}")
        return consecutive

    async def _fetch_result(self, server_url: str, remote_job_id: int) -> SolveResult:
        calibration, annotations, info = await asyncio.gather(
            asyncio.to_thread(self._client.get_job_calibration, server_url, remote_job_id),
            asyncio.to_thread(self._client.get_job_annotations, server_url, remote_job_id),
            asyncio.to_thread(self._client.get_job_info, server_url, remote_job_id),
        )
        return SolveResult(
            calibration=calibration,
            annotations=tuple(annotations),
            tags=merge_tags(info.tags, info.objects_in_field),
        )

    # -----------------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------------

    def _gate_for_running_loop(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._gate is None or self._gate_loop is not loop:
            self._gate = asyncio.Semaphore(self._config.max_concurrent)
            self._gate_loop = loop
        return self._gate

    def _checkpoint(self, handle: _ActiveJob) -> None:
        if handle.cancelled:
            raise JobCancelledError(handle.job_id)

    async def _pause(self, handle: _ActiveJob) -> None:
        await self._wait_or_cancel(handle, self._clock.sleep(self._config.poll_interval_seconds))
        self._checkpoint(handle)

    async def _wait_or_cancel(self, handle: _ActiveJob, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the job is cancelled first."""
        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(handle.cancel_event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            raise
        finally:
            stop.cancel()
        if not work.done():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work
            raise JobCancelledError(handle.job_id)
        return work.result()

    def _emit(self, handle: _ActiveJob, **changes: Any) -> JobPatch:
        if handle.final is not None:
            return handle.final
        progress = changes.get("progress")
        if progress is not None and progress < handle.progress:
            changes["progress"] = handle.progress
        patch = JobPatch(job_id=handle.job_id, **changes)
        if patch.status is not None:
            handle.status = patch.status
        if patch.progress is not None:
            handle.progress = patch.progress
        if patch.is_terminal:
            handle.final = patch
        if handle.on_patch is not None:
            try:
                handle.on_patch(patch)
            except Exception:
                logger.exception(f"Patch callback failed for job {handle.job_id}")
        return patch

    def _finish_cancelled(self, handle: _ActiveJob) -> JobPatch:
        self._release(handle)
        logger.info(f"Job {handle.job_id} cancelled")
        return self._emit(handle, status=JobStatus.CANCELLED, progress=handle.progress)

    def _finish_failed(self, handle: _ActiveJob, error: Exception) -> JobPatch:
        classified = classify_error(error)
        logger.error(
            f"Job {handle.job_id} failed [{classified.code.value}]: {classified.message} ({error})"
        )
        if classified.code is ErrorCode.AUTH:
            self._sessions.invalidate(handle.token)
        return self._emit(
            handle,
            status=JobStatus.FAILURE,
            progress=handle.progress,
            error=classified.message,
            error_code=classified.code.value,
        )


def create_orchestrator(
    config: SolverConfig,
    credentials: CredentialStore,
    *,
    client: NovaClient | None = None,
    clock: Clock | None = None,
) -> JobOrchestrator:
    """Wire a client, one shared session manager and an orchestrator."""
    if client is None:
        client = NovaClient(
            request_timeout=config.request_timeout_seconds,
            upload_timeout=config.upload_timeout_seconds,
        )
    sessions = SessionManager(client, credentials)
    return JobOrchestrator(client, sessions, config, clock=clock)


__all__ = [
    "MAX_CONSECUTIVE_POLL_ERRORS",
    "SOLVE_FAILED_MESSAGE",
    "JobOrchestrator",
    "PatchCallback",
    "create_orchestrator",
    "merge_tags",
    "solving_progress",
]
