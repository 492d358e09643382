"""Target catalog entries produced and consumed by the sync engine.

Targets are owned and persisted by the application; this package only builds
new ``Target`` values or updated copies of existing ones.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from astro_solve.models import utc_now


class TargetType(str, Enum):
    GALAXY = "galaxy"
    NEBULA = "nebula"
    CLUSTER = "cluster"
    PLANET = "planet"
    MOON = "moon"
    SUN = "sun"
    COMET = "comet"
    OTHER = "other"


class TargetStatus(str, Enum):
    PLANNED = "planned"
    ACQUIRING = "acquiring"
    COMPLETED = "completed"
    PROCESSED = "processed"


class ChangeLogEntry(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default_factory=lambda: f"log_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=utc_now)
    action: str
    field: str | None = None
    old_value: Any = None
    new_value: Any = None


class Target(BaseModel):
    """An astronomical object of interest in the user's catalog."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    aliases: tuple[str, ...] = ()
    type: TargetType = TargetType.OTHER
    category: str | None = None
    tags: tuple[str, ...] = ()
    ra: float | None = None
    dec: float | None = None
    image_ids: tuple[str, ...] = ()
    status: TargetStatus = TargetStatus.PLANNED
    notes: str | None = None
    change_log: tuple[ChangeLogEntry, ...] = ()
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def all_names(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


__all__ = ["ChangeLogEntry", "Target", "TargetStatus", "TargetType"]
