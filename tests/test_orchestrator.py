from __future__ import annotations

import asyncio
import threading

import pytest
import requests

from astro_solve.config import SolverConfig
from astro_solve.credentials import MemoryCredentialStore, save_api_key
from astro_solve.errors import (
    ERROR_MESSAGES,
    AstrometryHTTPError,
    AuthenticationError,
    ErrorCode,
    UploadError,
)
from astro_solve.models import JobPatch, JobStatus
from astro_solve.orchestrator import (
    SOLVE_FAILED_MESSAGE,
    JobOrchestrator,
    merge_tags,
    solving_progress,
)
from astro_solve.platform.nova import SubmissionStatus
from astro_solve.session import SessionManager


def _credentials(key: str | None = "test-key") -> MemoryCredentialStore:
    store = MemoryCredentialStore()
    if key is not None:
        save_api_key(store, key)
    return store


def _build(client, clock, *, key: str | None = "test-key", **config_changes):
    config = SolverConfig(**config_changes)
    sessions = SessionManager(client, _credentials(key))
    return JobOrchestrator(client, sessions, config, clock=clock), sessions


def _statuses(patches: list[JobPatch]) -> list[JobStatus]:
    return [p.status for p in patches if p.status is not None]


async def _wait_for(predicate, *, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestSolvingProgress:
    def test_starts_at_fifty(self) -> None:
        assert solving_progress(0) == 50

    def test_rises_and_caps_at_85(self) -> None:
        values = [solving_progress(t) for t in (0, 30, 120, 600, 10_000)]
        assert values == sorted(values)
        assert values[-1] == 85
        assert all(50 <= v <= 85 for v in values)

    def test_negative_elapsed_is_clamped(self) -> None:
        assert solving_progress(-10) == 50


def test_merge_tags_dedupes_in_order() -> None:
    assert merge_tags(["a", "b", ""], ("b", "c", " a ")) == ("a", "b", "c")


class TestSuccessfulSolve:
    def test_status_sequence_and_result(self, make_client, manual_clock, orion_calibration) -> None:
        """Uploading, submitted, solving, success; result carries the calibration."""
        client = make_client(job_statuses=["solving", "solving", "success"])
        orchestrator, _ = _build(client, manual_clock)
        patches: list[JobPatch] = []

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits", on_patch=patches.append))

        assert _statuses(patches) == [
            JobStatus.UPLOADING,
            JobStatus.SUBMITTED,
            JobStatus.SOLVING,
            JobStatus.SUCCESS,
        ]
        assert final is patches[-1]
        assert final.progress == 100
        assert final.result is not None
        assert final.result.calibration == orion_calibration
        assert final.result.tags == ("Orion Nebula", "nebula", "M 42")
        progress = [p.progress for p in patches if p.progress is not None]
        assert progress == sorted(progress)
        assert 90 in progress

    def test_ids_and_upload_options(self, make_client, manual_clock) -> None:
        client = make_client()
        orchestrator, _ = _build(client, manual_clock)
        patches: list[JobPatch] = []

        asyncio.run(orchestrator.solve_file("job-1", "m42.fits", on_patch=patches.append))

        submitted = next(p for p in patches if p.status is JobStatus.SUBMITTED)
        solving = next(p for p in patches if p.status is JobStatus.SOLVING)
        assert submitted.submission_id == 101
        assert solving.remote_job_id == 202
        server_url, path, options = client.uploads[0]
        assert server_url == "https://nova.astrometry.net"
        assert path == "m42.fits"
        assert options.session == "sess-1"
        assert options.publicly_visible == "n"

    def test_session_is_reused_across_jobs(self, make_client, manual_clock) -> None:
        client = make_client()
        orchestrator, sessions = _build(client, manual_clock)

        async def _run() -> None:
            await orchestrator.solve_file("a", "a.fits")
            await orchestrator.solve_url("b", "https://example.org/b.jpg")

        asyncio.run(_run())
        assert client.login_calls == 1
        assert sessions.token == "sess-1"
        assert client.uploads[1][1] == "https://example.org/b.jpg"

    def test_waits_for_submission_job_id(self, make_client, manual_clock) -> None:
        client = make_client(
            submission_responses=[SubmissionStatus(jobs=[]), SubmissionStatus(jobs=[None])]
        )
        orchestrator, _ = _build(client, manual_clock, poll_interval_seconds=5.0)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.status is JobStatus.SUCCESS
        assert manual_clock.sleeps[:2] == [5.0, 5.0]

    def test_callback_errors_do_not_break_the_job(self, make_client, manual_clock) -> None:
        client = make_client()
        orchestrator, _ = _build(client, manual_clock)

        def _boom(patch: JobPatch) -> None:
            raise RuntimeError("subscriber bug")

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits", on_patch=_boom))
        assert final.status is JobStatus.SUCCESS

    def test_stream_yields_until_terminal(self, make_client, manual_clock) -> None:
        client = make_client(job_statuses=["solving", "success"])
        orchestrator, _ = _build(client, manual_clock)

        async def _run() -> list[JobPatch]:
            return [p async for p in orchestrator.stream_file("job-1", "m42.fits")]

        patches = asyncio.run(_run())
        assert patches[-1].status is JobStatus.SUCCESS
        assert sum(1 for p in patches if p.is_terminal) == 1
        assert orchestrator.get_active_job_count() == 0


class TestFailures:
    def test_remote_failure_reports_plate_solving_failed(self, make_client, manual_clock) -> None:
        client = make_client(job_statuses=["solving", "failure"])
        orchestrator, _ = _build(client, manual_clock)
        patches: list[JobPatch] = []

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits", on_patch=patches.append))

        assert final.status is JobStatus.FAILURE
        assert final.error == SOLVE_FAILED_MESSAGE
        assert final.progress is not None and final.progress >= 50
        assert sum(1 for p in patches if p.is_terminal) == 1

    def test_login_rejection_is_auth_failure(self, make_client, manual_clock) -> None:
        client = make_client(login_error=AuthenticationError("Invalid API key"))
        orchestrator, sessions = _build(client, manual_clock)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.status is JobStatus.FAILURE
        assert final.error_code == "auth"
        assert final.error == ERROR_MESSAGES[ErrorCode.AUTH]
        assert client.uploads == []
        assert not sessions.has_session

    def test_missing_api_key_fails_without_login(self, make_client, manual_clock) -> None:
        client = make_client()
        orchestrator, _ = _build(client, manual_clock, key=None)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.status is JobStatus.FAILURE
        assert final.error_code == "auth"
        assert client.login_calls == 0

    def test_upload_auth_error_clears_session(self, make_client, manual_clock) -> None:
        client = make_client(upload_error=UploadError("Upload failed: HTTP 403", status_code=403))
        orchestrator, sessions = _build(client, manual_clock)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.error_code == "auth"
        assert not sessions.has_session

    def test_jobs_after_auth_failures_share_one_fresh_login(self, make_client, manual_clock) -> None:
        client = make_client(upload_error=UploadError("Upload failed: HTTP 403", status_code=403))
        orchestrator, sessions = _build(client, manual_clock)

        async def _round(prefix: str) -> list[JobPatch]:
            return list(
                await asyncio.gather(
                    *(orchestrator.solve_file(f"{prefix}-{n}", "m42.fits") for n in range(3))
                )
            )

        rejected = asyncio.run(_round("a"))
        assert [p.error_code for p in rejected] == ["auth", "auth", "auth"]
        assert client.login_calls == 1
        assert not sessions.has_session

        client.upload_error = None
        solved = asyncio.run(_round("b"))

        assert [p.status for p in solved] == [JobStatus.SUCCESS] * 3
        assert client.login_calls == 2
        assert [options.session for _, _, options in client.uploads[3:]] == ["sess-2"] * 3
        assert sessions.token == "sess-2"

    def test_upload_server_error_keeps_session(self, make_client, manual_clock) -> None:
        client = make_client(upload_error=AstrometryHTTPError(503))
        orchestrator, sessions = _build(client, manual_clock)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.status is JobStatus.FAILURE
        assert final.error_code == "server"
        assert sessions.token == "sess-1"

    def test_poll_timeout(self, make_client, manual_clock) -> None:
        client = make_client(final_job_status="solving")
        orchestrator, _ = _build(client, manual_clock, max_poll_attempts=3)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.status is JobStatus.FAILURE
        assert final.error_code == "network"
        assert client.job_status_calls == 3
        assert len(manual_clock.sleeps) == 2

    def test_transient_poll_errors_are_tolerated(self, make_client, manual_clock) -> None:
        errors = [requests.exceptions.ConnectionError("connection reset")] * 4
        client = make_client(job_statuses=[*errors, "success"])
        orchestrator, _ = _build(client, manual_clock)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.status is JobStatus.SUCCESS

    def test_too_many_consecutive_poll_errors_fail(self, make_client, manual_clock) -> None:
        errors = [requests.exceptions.ConnectionError("connection reset")] * 5
        client = make_client(job_statuses=[*errors, "success"])
        orchestrator, _ = _build(client, manual_clock)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.status is JobStatus.FAILURE
        assert final.error_code == "network"
        assert client.job_status_calls == 5

    def test_non_transient_poll_error_fails_immediately(self, make_client, manual_clock) -> None:
        client = make_client(job_statuses=[AstrometryHTTPError(404, "no such job")])
        orchestrator, _ = _build(client, manual_clock)

        final = asyncio.run(orchestrator.solve_file("job-1", "m42.fits"))

        assert final.error_code == "not_found"
        assert client.job_status_calls == 1


class TestCancellation:
    def test_cancel_during_poll_wait(self, make_client, blocking_clock) -> None:
        """Cancellation is seen while parked in the poll interval."""
        client = make_client(final_job_status="solving")
        orchestrator, _ = _build(client, blocking_clock)
        patches: list[JobPatch] = []

        async def _run() -> JobPatch:
            task = orchestrator.start_file("job-1", "m42.fits", on_patch=patches.append)
            await _wait_for(lambda: bool(blocking_clock.sleeps))
            assert orchestrator.is_job_active("job-1")
            assert orchestrator.cancel_job("job-1") is True
            return await asyncio.wait_for(task, timeout=5.0)

        final = asyncio.run(_run())

        assert final.status is JobStatus.CANCELLED
        assert patches[-1] is final
        assert _statuses(patches)[-1] is JobStatus.CANCELLED
        assert not orchestrator.is_job_active("job-1")
        assert orchestrator.cancel_job("job-1") is False

    def test_cancel_during_upload_discards_late_response(self, make_client, manual_clock) -> None:
        """The upload finishes after the cancel; its submission is never used."""
        release = threading.Event()
        client = make_client(upload_gate=release)
        orchestrator, _ = _build(client, manual_clock)
        patches: list[JobPatch] = []

        async def _run() -> JobPatch:
            task = orchestrator.start_file("job-1", "m42.fits", on_patch=patches.append)
            await _wait_for(client.upload_started.is_set)
            assert orchestrator.cancel_job("job-1") is True
            release.set()
            return await asyncio.wait_for(task, timeout=5.0)

        final = asyncio.run(_run())

        assert final.status is JobStatus.CANCELLED
        assert _statuses(patches) == [JobStatus.UPLOADING, JobStatus.CANCELLED]
        assert all(p.submission_id is None for p in patches)
        assert client.job_status_calls == 0
        assert not orchestrator.is_job_active("job-1")

    def test_cancel_unknown_job_is_false(self, make_client, manual_clock) -> None:
        orchestrator, _ = _build(make_client(), manual_clock)
        assert orchestrator.cancel_job("nope") is False
        assert orchestrator.cancel_all_jobs() == 0

    def test_cancel_all_jobs(self, make_client, blocking_clock) -> None:
        client = make_client(final_job_status="solving")
        orchestrator, _ = _build(client, blocking_clock)

        async def _run() -> list[JobPatch]:
            tasks = [orchestrator.start_file(job_id, "m42.fits") for job_id in ("a", "b")]
            await _wait_for(lambda: len(blocking_clock.sleeps) == 2)
            assert orchestrator.get_active_job_count() == 2
            assert orchestrator.cancel_all_jobs() == 2
            return list(await asyncio.gather(*tasks))

        finals = asyncio.run(_run())
        assert [p.status for p in finals] == [JobStatus.CANCELLED, JobStatus.CANCELLED]
        assert orchestrator.get_active_job_count() == 0

    def test_duplicate_active_job_id_is_rejected(self, make_client, blocking_clock) -> None:
        client = make_client(final_job_status="solving")
        orchestrator, _ = _build(client, blocking_clock)

        async def _run() -> None:
            task = orchestrator.start_file("job-1", "m42.fits")
            with pytest.raises(ValueError):
                await orchestrator.solve_file("job-1", "other.fits")
            orchestrator.cancel_job("job-1")
            await task

        asyncio.run(_run())

    def test_stream_closed_early_cancels_the_job(self, make_client, blocking_clock) -> None:
        client = make_client(final_job_status="solving")
        orchestrator, _ = _build(client, blocking_clock)

        async def _run() -> None:
            stream = orchestrator.stream_file("job-1", "m42.fits")
            first = await stream.__anext__()
            assert first.status is JobStatus.UPLOADING
            await stream.aclose()

        asyncio.run(_run())
        assert orchestrator.get_active_job_count() == 0


class TestConcurrencyGate:
    def test_jobs_beyond_the_limit_wait(self, make_client, manual_clock) -> None:
        client = make_client(job_statuses=["solving", "solving", "success"])
        orchestrator, _ = _build(client, manual_clock, max_concurrent=1)
        order: list[JobPatch] = []

        async def _run() -> None:
            first = orchestrator.start_file("first", "a.fits", on_patch=order.append)
            second = orchestrator.start_file("second", "b.fits", on_patch=order.append)
            await asyncio.gather(first, second)

        asyncio.run(_run())

        first_terminal = next(i for i, p in enumerate(order) if p.job_id == "first" and p.is_terminal)
        second_start = next(i for i, p in enumerate(order) if p.job_id == "second")
        assert first_terminal < second_start
        assert [p.status for p in order if p.is_terminal] == [JobStatus.SUCCESS, JobStatus.SUCCESS]

    def test_cancel_while_waiting_for_a_slot(self, make_client, blocking_clock) -> None:
        client = make_client(final_job_status="solving")
        orchestrator, _ = _build(client, blocking_clock, max_concurrent=1)
        waiting: list[JobPatch] = []

        async def _run() -> JobPatch:
            first = orchestrator.start_file("first", "a.fits")
            second = orchestrator.start_file("second", "b.fits", on_patch=waiting.append)
            await _wait_for(lambda: bool(blocking_clock.sleeps))
            assert orchestrator.cancel_job("second") is True
            final = await asyncio.wait_for(second, timeout=5.0)
            orchestrator.cancel_job("first")
            await first
            return final

        final = asyncio.run(_run())
        assert final.status is JobStatus.CANCELLED
        assert [p.status for p in waiting] == [JobStatus.CANCELLED]
        assert len(client.uploads) == 1
