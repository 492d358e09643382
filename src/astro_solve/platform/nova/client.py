"""astrometry.net REST API client.

Thin, stateless wrapper over the nova.astrometry.net API surface. Each public
method is a single request; reads (``GET``) are retried on timeouts and
connectivity failures, while login and uploads are never retried here.

Usage:
    >>> from astro_solve.platform.nova import NovaClient
    >>> client = NovaClient()
    >>> session = client.login(api_key, "https://nova.astrometry.net")
    >>> sub_id = client.upload_file(server_url, "m42.fits", UploadOptions(session=session))

Technical Notes:
    - Every request carries ``Referer: https://nova.astrometry.net/api/login``;
      the service rejects API calls without it.
    - POST bodies are ``request-json=<urlencoded JSON>`` form fields, except the
      file upload which is a hand-built multipart body (JSON part, then the raw
      file bytes) so large FITS files are sent as-is.
    - Annotation categories arrive as free text and are normalized with
      ``map_annotation_type``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import quote

import requests

from astro_solve.errors import AstrometryHTTPError, AuthenticationError, UploadError
from astro_solve.models import Annotation, AnnotationType, Calibration
from astro_solve.platform.network import (
    MAX_READ_RETRIES,
    REQUEST_TIMEOUT,
    RETRY_BASE_DELAY,
    UPLOAD_TIMEOUT,
    NetworkTimeoutError,
    backoff_delay,
    is_retryable_transport_error,
)
from astro_solve.platform.nova.types import (
    JobInfo,
    RemoteJobStatus,
    SubmissionStatus,
    UploadOptions,
)

logger = logging.getLogger(__name__)

REFERER_HEADER = "https://nova.astrometry.net/api/login"

API_PATHS = {
    "login": "/api/login",
    "upload": "/api/upload",
    "url_upload": "/api/url_upload",
    "submissions": "/api/submissions",
    "jobs": "/api/jobs",
}

_MESSIER_SHORT = re.compile(r"^m\s*\d+\b")


def build_url(server_url: str, path: str, *segments: str | int) -> str:
    base = server_url.rstrip("/")
    if segments:
        return f"{base}{path}/" + "/".join(str(s) for s in segments)
    return f"{base}{path}"


def build_multipart_body(
    request_json: dict[str, Any],
    file_name: str,
    file_bytes: bytes,
    boundary: str | None = None,
) -> tuple[bytes, str]:
    """Assemble a multipart/form-data body from raw byte segments.

    Returns:
        (body, content_type) ready to POST to ``/api/upload``.
    """
    if boundary is None:
        boundary = f"----AstrometryUpload{int(time.time() * 1000)}"
    json_part = (
        f"--{boundary}\r\n"
        'Content-Disposition: form-data; name="request-json"\r\n'
        "Content-Type: application/text\r\n\r\n"
        f"{json.dumps(request_json)}\r\n"
    ).encode()
    file_part = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="file"; filename="{file_name}"\r\n'
        "Content-Type: application/octet-stream\r\n\r\n"
    ).encode()
    end_part = f"\r\n--{boundary}--\r\n".encode()
    body = b"".join((json_part, file_part, file_bytes, end_part))
    return body, f"multipart/form-data; boundary={boundary}"


def map_annotation_type(raw: str | None) -> AnnotationType:
    """Normalize the solver's free-text annotation category."""
    lower = (raw or "").strip().lower()
    if "messier" in lower or lower.startswith("m ") or _MESSIER_SHORT.match(lower):
        return AnnotationType.MESSIER
    if "ngc" in lower:
        return AnnotationType.NGC
    if "ic" in lower:
        return AnnotationType.IC
    if "hd" in lower:
        return AnnotationType.HD
    if "bright" in lower or "tycho" in lower:
        return AnnotationType.BRIGHT_STAR
    if "star" in lower:
        return AnnotationType.STAR
    return AnnotationType.OTHER


def _field_size_deg(raw: dict[str, Any], deg_key: str, arcsec_key: str) -> float:
    # Older servers report the field in arcsec only; 0 means unknown.
    if raw.get(deg_key) is not None:
        return float(raw[deg_key])
    if raw.get(arcsec_key) is not None:
        return float(raw[arcsec_key]) / 3600.0
    return 0.0


class NovaClient:
    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
        upload_timeout: float = UPLOAD_TIMEOUT,
        max_retries: int = MAX_READ_RETRIES,
        retry_backoff_seconds: float = RETRY_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"Referer": REFERER_HEADER})
        self.request_timeout = float(request_timeout)
        self.upload_timeout = float(upload_timeout)
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff_seconds = float(retry_backoff_seconds)
        self._sleep = sleep

    # -----------------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------------

    def login(self, api_key: str, server_url: str) -> str:
        """Exchange an API key for a session key."""
        logger.info("Logging in to astrometry.net")
        payload = self._post_form(server_url, API_PATHS["login"], {"apikey": api_key})
        session = payload.get("session") if isinstance(payload, dict) else None
        if not isinstance(payload, dict) or payload.get("status") != "success" or not session:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise AuthenticationError(message or "Login failed")
        logger.info("Login successful")
        return str(session)

    def upload_file(self, server_url: str, file_path: str | Path, options: UploadOptions) -> int:
        path = Path(file_path)
        if not path.is_file():
            raise UploadError(f"File not found: {path}")
        logger.info(f"Uploading file: {path}")

        body, content_type = build_multipart_body(
            options.to_request_json(), path.name, path.read_bytes()
        )
        url = build_url(server_url, API_PATHS["upload"])
        logger.debug(f"POST {url} ({len(body)} bytes)")
        try:
            resp = self.session.post(
                url,
                data=body,
                headers={"Content-Type": content_type, "Referer": REFERER_HEADER},
                timeout=self.upload_timeout,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkTimeoutError(f"Upload of {path.name}", self.upload_timeout) from e
        if not resp.ok:
            raise UploadError(
                f"Upload failed: HTTP {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise UploadError("Invalid upload response") from e

        submission_id = self._submission_id(payload)
        if submission_id is None:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise UploadError(message or "Upload failed: no submission ID")
        logger.info(f"Upload successful, submission ID: {submission_id}")
        return submission_id

    def upload_url(self, server_url: str, image_url: str, options: UploadOptions) -> int:
        logger.info(f"Submitting URL: {image_url}")
        payload = self._post_form(
            server_url,
            API_PATHS["url_upload"],
            {**options.to_request_json(), "url": image_url},
        )
        submission_id = self._submission_id(payload)
        if submission_id is None:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise UploadError(message or "URL upload failed")
        logger.info(f"URL submission successful, submission ID: {submission_id}")
        return submission_id

    def get_submission_status(self, server_url: str, submission_id: int) -> SubmissionStatus:
        payload = self._get_json(server_url, API_PATHS["submissions"], submission_id)
        return SubmissionStatus.model_validate(payload if isinstance(payload, dict) else {})

    def get_job_status(self, server_url: str, job_id: int) -> RemoteJobStatus:
        payload = self._get_json(server_url, API_PATHS["jobs"], job_id)
        status = payload.get("status") if isinstance(payload, dict) else None
        if status in ("success", "failure"):
            return status
        return "solving"

    def get_job_calibration(self, server_url: str, job_id: int) -> Calibration:
        raw = self._get_json(server_url, API_PATHS["jobs"], job_id, "calibration")
        if not isinstance(raw, dict):
            raise ValueError(f"Calibration response for job {job_id} is not a JSON object")
        return Calibration(
            ra=float(raw["ra"]),
            dec=float(raw["dec"]),
            radius=float(raw.get("radius") or 0.0),
            pixscale=float(raw.get("pixscale") or 0.0),
            orientation=float(raw.get("orientation") or 0.0),
            parity=float(raw.get("parity") or 0.0),
            field_width=_field_size_deg(raw, "widthInDeg", "width_arcsec"),
            field_height=_field_size_deg(raw, "heightInDeg", "height_arcsec"),
        )

    def get_job_annotations(self, server_url: str, job_id: int) -> list[Annotation]:
        raw = self._get_json(server_url, API_PATHS["jobs"], job_id, "annotations")
        # The live service wraps the list as {"annotations": [...]}.
        if isinstance(raw, dict):
            raw = raw.get("annotations")
        if not isinstance(raw, list):
            return []

        annotations: list[Annotation] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            if item.get("pixelx") is None or item.get("pixely") is None:
                continue
            annotations.append(
                Annotation(
                    type=map_annotation_type(item.get("type")),
                    names=tuple(str(n) for n in item.get("names") or ()),
                    pixelx=float(item["pixelx"]),
                    pixely=float(item["pixely"]),
                    radius=float(item["radius"]) if item.get("radius") is not None else None,
                )
            )
        return annotations

    def get_job_info(self, server_url: str, job_id: int) -> JobInfo:
        raw = self._get_json(server_url, API_PATHS["jobs"], job_id, "info")
        if not isinstance(raw, dict):
            return JobInfo()
        return JobInfo(
            tags=[str(t) for t in raw.get("tags") or []],
            objects_in_field=[str(o) for o in raw.get("objects_in_field") or []],
        )

    def test_connection(self, api_key: str, server_url: str) -> bool:
        """Return True if ``api_key`` can log in; never raises."""
        try:
            self.login(api_key, server_url)
        except Exception as e:
            logger.warning(f"Connection test failed: {e}")
            return False
        return True

    # -----------------------------------------------------------------------------
    # Networking helpers
    # -----------------------------------------------------------------------------

    def _submission_id(self, payload: Any) -> int | None:
        if not isinstance(payload, dict) or payload.get("status") != "success":
            return None
        subid = payload.get("subid")
        if subid is None:
            return None
        return int(subid)

    def _post_form(self, server_url: str, path: str, data: dict[str, Any]) -> Any:
        url = build_url(server_url, path)
        body = f"request-json={quote(json.dumps(data), safe='')}"
        logger.debug(f"POST {path}")
        try:
            resp = self.session.post(
                url,
                data=body,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Referer": REFERER_HEADER,
                },
                timeout=self.request_timeout,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkTimeoutError(f"POST {path}", self.request_timeout) from e
        if not resp.ok:
            raise AstrometryHTTPError(resp.status_code, resp.text)
        return resp.json()

    def _get_json(self, server_url: str, path: str, *segments: str | int) -> Any:
        url = build_url(server_url, path, *segments)
        logger.debug(f"GET {url}")
        resp = self._request_with_retry("GET", url)
        if not resp.ok:
            raise AstrometryHTTPError(resp.status_code, resp.text)
        return resp.json()

    def _request_with_retry(self, method: str, url: str) -> requests.Response:
        for attempt in range(self.max_retries + 1):
            try:
                return self.session.request(
                    method=method,
                    url=url,
                    headers={"Referer": REFERER_HEADER},
                    timeout=self.request_timeout,
                )
            except Exception as e:
                if not is_retryable_transport_error(e) or attempt >= self.max_retries:
                    if isinstance(e, requests.exceptions.Timeout):
                        raise NetworkTimeoutError(f"{method} {url}", self.request_timeout) from e
                    raise
                wait_time = backoff_delay(attempt, self.retry_backoff_seconds)
                logger.warning(
                    f"Retry {attempt + 1}/{self.max_retries} after {wait_time:.1f}s: {e}"
                )
                self._sleep(wait_time)
        raise RuntimeError(f"request failed: {method} {url}")


__all__ = [
    "API_PATHS",
    "REFERER_HEADER",
    "NovaClient",
    "build_multipart_body",
    "build_url",
    "map_annotation_type",
]
