from __future__ import annotations

from astro_solve.platform.network.timeout import (
    MAX_READ_RETRIES,
    REQUEST_TIMEOUT,
    RETRY_BASE_DELAY,
    UPLOAD_TIMEOUT,
    NetworkTimeoutError,
    backoff_delay,
    is_retryable_transport_error,
)

__all__ = [
    "MAX_READ_RETRIES",
    "NetworkTimeoutError",
    "REQUEST_TIMEOUT",
    "RETRY_BASE_DELAY",
    "UPLOAD_TIMEOUT",
    "backoff_delay",
    "is_retryable_transport_error",
]
