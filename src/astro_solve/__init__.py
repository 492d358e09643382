"""astro-solve: plate solving against astrometry.net.

The pieces compose as: ``NovaClient`` (REST transport) -> ``SessionManager``
(shared login) -> ``JobOrchestrator`` (per-job drive loops emitting
``JobPatch`` updates) -> caller state such as ``JobBoard`` and the target
sync functions in ``astro_solve.targets``.
"""

from __future__ import annotations

from astro_solve.board import JobBoard, apply_patch, new_job
from astro_solve.config import SolverConfig, build_upload_options, get_server_url
from astro_solve.credentials import (
    CredentialStore,
    EnvCredentialStore,
    MemoryCredentialStore,
    delete_api_key,
    get_api_key,
    save_api_key,
)
from astro_solve.errors import ClassifiedError, ErrorCode, classify_error
from astro_solve.models import (
    Annotation,
    AnnotationType,
    Calibration,
    JobPatch,
    JobStatus,
    SolveJob,
    SolveResult,
)
from astro_solve.orchestrator import JobOrchestrator, create_orchestrator
from astro_solve.platform.nova import NovaClient
from astro_solve.session import SessionManager

__version__ = "0.1.0"

__all__ = [
    "Annotation",
    "AnnotationType",
    "Calibration",
    "ClassifiedError",
    "CredentialStore",
    "EnvCredentialStore",
    "ErrorCode",
    "JobBoard",
    "JobOrchestrator",
    "JobPatch",
    "JobStatus",
    "MemoryCredentialStore",
    "NovaClient",
    "SessionManager",
    "SolveJob",
    "SolveResult",
    "SolverConfig",
    "__version__",
    "apply_patch",
    "build_upload_options",
    "classify_error",
    "create_orchestrator",
    "delete_api_key",
    "get_api_key",
    "get_server_url",
    "new_job",
    "save_api_key",
]
