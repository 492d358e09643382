"""Reconcile plate-solve results with the target catalog.

Pure functions: inputs are never mutated and nothing is persisted. Matching
runs three ordered passes and stops at the first hit:

    1. the result's best name equals a target name or alias (case-insensitive)
    2. any annotation name overlaps a target's name or aliases
    3. the field center lies within ``radius_deg`` of a target's coordinates

Name passes always win over the coordinate pass, even when another target is
geometrically closer.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import datetime
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict

from astro_solve.models import AnnotationType, SolveResult, utc_now
from astro_solve.targets.models import ChangeLogEntry, Target, TargetStatus, TargetType

logger = logging.getLogger(__name__)

DEFAULT_MATCH_RADIUS_DEG = 0.5

_NAME_PRIORITY = (AnnotationType.MESSIER, AnnotationType.NGC, AnnotationType.IC)

_TYPE_KEYWORDS: tuple[tuple[TargetType, tuple[str, ...]], ...] = (
    (TargetType.GALAXY, ("galaxy", "galaxies")),
    (TargetType.NEBULA, ("nebula", "emission", "planetary")),
    (TargetType.CLUSTER, ("cluster", "open cluster", "globular")),
)


class SyncOutcome(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    action: Literal["created", "updated"]
    target: Target

    @property
    def target_id(self) -> str:
        return self.target.id

    @property
    def target_name(self) -> str:
        return self.target.name


def infer_target_type(tags: Sequence[str]) -> TargetType:
    joined = " ".join(tags).lower()
    for target_type, keywords in _TYPE_KEYWORDS:
        if any(keyword in joined for keyword in keywords):
            return target_type
    return TargetType.OTHER


def extract_best_name(result: SolveResult) -> str | None:
    """Messier, then NGC, then IC, then any named annotation."""
    for wanted in _NAME_PRIORITY:
        for annotation in result.annotations:
            if annotation.type is wanted and annotation.names:
                return annotation.names[0]
    for annotation in result.annotations:
        if annotation.names:
            return annotation.names[0]
    return None


def collect_names(result: SolveResult) -> list[str]:
    """Every annotation name, first occurrence order, without repeats."""
    seen: dict[str, None] = {}
    for annotation in result.annotations:
        for name in annotation.names:
            seen.setdefault(name, None)
    return list(seen)


def fallback_name(result: SolveResult) -> str:
    return f"Field RA{result.calibration.ra:.2f}"


def is_coordinate_match(
    ra1: float,
    dec1: float,
    ra2: float,
    dec2: float,
    radius_deg: float = DEFAULT_MATCH_RADIUS_DEG,
) -> bool:
    """Small-angle proximity test between two sky positions (degrees).

    The RA difference is scaled by cos of the mean declination and combined
    with the Dec difference as a flat Euclidean distance. This is a tangent-plane
    approximation, good for separations well under a degree; it degrades near
    the poles and does not handle RA wraparound at 0/360.

    Using the mean declination keeps the test symmetric in its two positions.
    Scaling by cos(dec1) instead can disagree for pairs within a few
    thousandths of a degree of ``radius_deg``: (10.0, 60.0) vs (10.602, 60.4)
    is 0.4995 deg apart here and 0.5006 deg with cos(dec1).
    """
    cos_dec = math.cos(math.radians((dec1 + dec2) / 2.0))
    d_ra = (ra1 - ra2) * cos_dec
    d_dec = dec1 - dec2
    return math.hypot(d_ra, d_dec) <= radius_deg


def create_target_from_result(
    result: SolveResult,
    file_id: str | None = None,
    *,
    now: datetime | None = None,
) -> Target:
    name = extract_best_name(result) or fallback_name(result)
    aliases = tuple(n for n in collect_names(result) if n != name)
    target_type = infer_target_type(result.tags)
    created = now or utc_now()

    target = Target(
        name=name,
        aliases=aliases,
        type=target_type,
        ra=result.calibration.ra,
        dec=result.calibration.dec,
        image_ids=(file_id,) if file_id else (),
        status=TargetStatus.ACQUIRING,
        change_log=(ChangeLogEntry(timestamp=created, action="created"),),
        created_at=created,
        updated_at=created,
    )
    logger.info(
        f"Created target: {name} ({target_type.value}) at "
        f"ra={result.calibration.ra:.4f}, dec={result.calibration.dec:.4f}"
    )
    return target


def find_matching_target(
    targets: Sequence[Target],
    result: SolveResult,
    *,
    radius_deg: float = DEFAULT_MATCH_RADIUS_DEG,
) -> Target | None:
    best_name = extract_best_name(result)
    if best_name:
        wanted = best_name.lower()
        for target in targets:
            if any(n.lower() == wanted for n in target.all_names()):
                return target

    result_names = {n.lower() for n in collect_names(result)}
    if result_names:
        for target in targets:
            if result_names.intersection(n.lower() for n in target.all_names()):
                return target

    center = result.calibration
    for target in targets:
        if target.ra is None or target.dec is None:
            continue
        if is_coordinate_match(center.ra, center.dec, target.ra, target.dec, radius_deg):
            return target
    return None


def merge_result_into_target(
    target: Target,
    result: SolveResult,
    file_id: str | None = None,
    *,
    now: datetime | None = None,
) -> Target:
    """Copy of ``target`` updated with what the solve learned."""
    updated_at = now or utc_now()
    known = {n.lower() for n in target.all_names()}
    new_aliases = []
    for name in collect_names(result):
        if name.lower() not in known:
            known.add(name.lower())
            new_aliases.append(name)

    changes: dict[str, object] = {"updated_at": updated_at}
    entries: list[ChangeLogEntry] = []
    if new_aliases:
        changes["aliases"] = (*target.aliases, *new_aliases)
        entries.append(
            ChangeLogEntry(
                timestamp=updated_at,
                action="updated",
                field="aliases",
                old_value=list(target.aliases),
                new_value=list(changes["aliases"]),  # type: ignore[arg-type]
            )
        )
    if target.ra is None or target.dec is None:
        changes["ra"] = result.calibration.ra
        changes["dec"] = result.calibration.dec
        entries.append(
            ChangeLogEntry(
                timestamp=updated_at,
                action="updated",
                field="coordinates",
                old_value=[target.ra, target.dec],
                new_value=[result.calibration.ra, result.calibration.dec],
            )
        )
    if file_id and file_id not in target.image_ids:
        changes["image_ids"] = (*target.image_ids, file_id)
        entries.append(
            ChangeLogEntry(timestamp=updated_at, action="image_added", new_value=file_id)
        )
    changes["change_log"] = (*target.change_log, *entries)
    return target.model_copy(update=changes)


def sync_result_to_targets(
    targets: Sequence[Target],
    result: SolveResult,
    file_id: str | None = None,
    *,
    now: datetime | None = None,
) -> SyncOutcome:
    """Match ``result`` against ``targets``; update the match or create a target."""
    match = find_matching_target(targets, result)
    if match is not None:
        logger.info(f"Solve result matched existing target: {match.name}")
        return SyncOutcome(
            action="updated",
            target=merge_result_into_target(match, result, file_id, now=now),
        )
    return SyncOutcome(
        action="created",
        target=create_target_from_result(result, file_id, now=now),
    )


__all__ = [
    "DEFAULT_MATCH_RADIUS_DEG",
    "SyncOutcome",
    "collect_names",
    "create_target_from_result",
    "extract_best_name",
    "fallback_name",
    "find_matching_target",
    "infer_target_type",
    "is_coordinate_match",
    "merge_result_into_target",
    "sync_result_to_targets",
]
