from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from leadflow.pipeline.schemas import LeadRead


@dataclass(frozen=True, slots=True)
class Locked:
    reason: str


@dataclass(frozen=True, slots=True)
class Unlocked:
    pass


UNLOCKED = Unlocked()
StageLock = Locked | Unlocked


@dataclass(frozen=True, slots=True)
class LeadStageState:
    """Where a lead sits and whether its last entry was flagged.

    Transitions always move the lead; eligibility only decides the lock.
    """

    stage: str
    lock: StageLock
    changed_at: datetime | None = None

    @classmethod
    def of(cls, lead: LeadRead) -> LeadStageState:
        lock: StageLock = Locked(lead.stage_locked_reason or "") if lead.is_locked else UNLOCKED
        return cls(stage=lead.current_stage, lock=lock, changed_at=lead.last_stage_change)

    @property
    def is_locked(self) -> bool:
        return isinstance(self.lock, Locked)

    def enter(self, target_stage: str, *, eligible: bool, locked_reason: str, now: datetime) -> LeadStageState:
        lock: StageLock = UNLOCKED if eligible else Locked(locked_reason)
        return LeadStageState(stage=target_stage, lock=lock, changed_at=now)

    def to_fields(self) -> dict[str, Any]:
        return {
            "current_stage": self.stage,
            "is_locked": self.is_locked,
            "stage_locked_reason": self.lock.reason if isinstance(self.lock, Locked) else None,
            "last_stage_change": self.changed_at,
        }
