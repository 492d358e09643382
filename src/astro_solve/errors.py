"""Local error taxonomy for astro-solve.

The remote solver does not return structured error codes, so every failure is
reduced to a small, stable code/message envelope here. The job orchestrator is
the only layer that turns exceptions into these envelopes; the transport client
raises the exception types below and lets them surface.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, ClassVar

import requests
from pydantic import BaseModel, ConfigDict, Field

from astro_solve.platform.network import NetworkTimeoutError


class ErrorCode(str, Enum):
    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    UNKNOWN = "unknown"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.AUTH: "Authentication failed. Check your API key.",
    ErrorCode.NOT_FOUND: "Resource not found on server.",
    ErrorCode.RATE_LIMIT: "Rate limited. Please wait before retrying.",
    ErrorCode.SERVER: "Server error. The service may be temporarily unavailable.",
    ErrorCode.NETWORK: "Network error. Check your connection and try again.",
}

# Poll errors of these kinds may clear up on the next tick.
TRANSIENT_CODES = frozenset({ErrorCode.NETWORK, ErrorCode.SERVER, ErrorCode.RATE_LIMIT})


class ClassifiedError(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    code: ErrorCode
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


def make_error(code: ErrorCode, message: str | None = None, **context: Any) -> ClassifiedError:
    return ClassifiedError(
        code=code,
        message=message if message is not None else ERROR_MESSAGES.get(code, ""),
        context=dict(context),
    )


class AstrometryError(Exception):
    """Base exception for failures talking to the astrometry service.

    Attributes:
        status_code: HTTP status of the failing response, when there was one.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AstrometryHTTPError(AstrometryError):
    """Non-2xx response from the astrometry service."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.body = body
        message = f"HTTP {status_code}: {body}" if body else f"HTTP {status_code}"
        super().__init__(message, status_code=status_code)


class AuthenticationError(AstrometryError):
    """Login was rejected or did not yield a session."""


class UploadError(AstrometryError):
    """File or URL submission did not produce a submission id."""


class ConfigurationError(AstrometryError):
    """Required local configuration (such as the API key) is missing."""


class PollTimeoutError(AstrometryError):
    """A poll loop exhausted its attempt ceiling without a terminal answer."""


class JobCancelledError(Exception):
    """Raised inside a drive loop once its job has been cancelled."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} cancelled")


_HTTP_5XX = re.compile(r"http\s*5\d{2}")


def _code_for_status(status_code: int) -> ErrorCode | None:
    if status_code in (401, 403):
        return ErrorCode.AUTH
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 429:
        return ErrorCode.RATE_LIMIT
    if 500 <= status_code < 600:
        return ErrorCode.SERVER
    return None


def _code_for_text(text: str) -> ErrorCode:
    lower = text.lower()
    if "api key" in lower or "login" in lower or "session" in lower:
        return ErrorCode.AUTH
    if "not found" in lower or "404" in lower:
        return ErrorCode.NOT_FOUND
    if "429" in lower or "rate" in lower:
        return ErrorCode.RATE_LIMIT
    if _HTTP_5XX.search(lower) or "500" in lower or "502" in lower or "503" in lower:
        return ErrorCode.SERVER
    if (
        "network" in lower
        or "failed to fetch" in lower
        or "timeout" in lower
        or "timed out" in lower
        or "connection" in lower
    ):
        return ErrorCode.NETWORK
    return ErrorCode.UNKNOWN


def classify_error(error: BaseException | str) -> ClassifiedError:
    """Reduce any failure to an ``ErrorCode`` and a user-facing message.

    HTTP status codes and exception types are trusted first; substring
    matching on the message is the fallback for everything else.
    """
    text = str(error)
    code: ErrorCode | None = None

    if isinstance(error, (AuthenticationError, ConfigurationError)):
        code = ErrorCode.AUTH
    elif isinstance(error, AstrometryError) and error.status_code is not None:
        code = _code_for_status(error.status_code)
    elif isinstance(error, (PollTimeoutError, NetworkTimeoutError)):
        code = ErrorCode.NETWORK
    elif isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        code = ErrorCode.NETWORK
    elif isinstance(error, requests.exceptions.HTTPError) and error.response is not None:
        code = _code_for_status(error.response.status_code)

    if code is None:
        code = _code_for_text(text)

    if code is ErrorCode.UNKNOWN:
        return make_error(code, text or type(error).__name__)
    return make_error(code, detail=text)


__all__ = [
    "ERROR_MESSAGES",
    "TRANSIENT_CODES",
    "AstrometryError",
    "AstrometryHTTPError",
    "AuthenticationError",
    "ClassifiedError",
    "ConfigurationError",
    "ErrorCode",
    "JobCancelledError",
    "PollTimeoutError",
    "UploadError",
    "classify_error",
    "make_error",
]
