from __future__ import annotations

from astro_solve.targets.coordinates import format_dec, format_ra
from astro_solve.targets.models import ChangeLogEntry, Target, TargetStatus, TargetType
from astro_solve.targets.sync import (
    DEFAULT_MATCH_RADIUS_DEG,
    SyncOutcome,
    collect_names,
    create_target_from_result,
    extract_best_name,
    find_matching_target,
    infer_target_type,
    is_coordinate_match,
    merge_result_into_target,
    sync_result_to_targets,
)

__all__ = [
    "DEFAULT_MATCH_RADIUS_DEG",
    "ChangeLogEntry",
    "SyncOutcome",
    "Target",
    "TargetStatus",
    "TargetType",
    "collect_names",
    "create_target_from_result",
    "extract_best_name",
    "find_matching_target",
    "format_dec",
    "format_ra",
    "infer_target_type",
    "is_coordinate_match",
    "merge_result_into_target",
    "sync_result_to_targets",
]
