"""Timeout and retry policy for calls to the astrometry service.

Every request carries its own bound (``REQUEST_TIMEOUT`` for reads and login,
``UPLOAD_TIMEOUT`` for uploads). Idempotent reads are retried with exponential
backoff, but only when the failure is a timeout or a connectivity problem;
HTTP error statuses are answers from the server and are never retried here.
"""

from __future__ import annotations

import requests

# Default timeouts for the various call kinds (in seconds)
REQUEST_TIMEOUT = 30.0
UPLOAD_TIMEOUT = 120.0

# Read retries: 3 retries after the first attempt, 1s, 2s, 4s apart.
MAX_READ_RETRIES = 3
RETRY_BASE_DELAY = 1.0


class NetworkTimeoutError(Exception):
    """A request exceeded its per-call timeout.

    The client raises it in place of ``requests.exceptions.Timeout`` so the
    message names the operation and the bound that was exceeded.
    """

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{operation} timed out after {timeout_seconds:.1f}s. "
            "The external service may be slow or unavailable."
        )


def is_retryable_transport_error(exc: BaseException) -> bool:
    """Return True for timeout, abort and connectivity failures only."""
    if isinstance(exc, (NetworkTimeoutError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, requests.exceptions.ConnectionError):
        return True
    if getattr(exc, "status_code", None) is not None:
        return False
    message = str(exc).lower()
    return "network" in message or "timeout" in message or "failed to fetch" in message


def backoff_delay(attempt: int, base_delay: float = RETRY_BASE_DELAY) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2**attempt."""
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")
    return float(base_delay) * (2**attempt)
