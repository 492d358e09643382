from __future__ import annotations

from astro_solve.platform.nova.client import (
    API_PATHS,
    REFERER_HEADER,
    NovaClient,
    build_multipart_body,
    build_url,
    map_annotation_type,
)
from astro_solve.platform.nova.types import (
    JobInfo,
    RemoteJobStatus,
    ScaleUnits,
    SubmissionStatus,
    UploadOptions,
)

__all__ = [
    "API_PATHS",
    "REFERER_HEADER",
    "JobInfo",
    "NovaClient",
    "RemoteJobStatus",
    "ScaleUnits",
    "SubmissionStatus",
    "UploadOptions",
    "build_multipart_body",
    "build_url",
    "map_annotation_type",
]
