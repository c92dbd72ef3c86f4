"""Mandatory-activity completion view.

Recomputed on every read. It is independent of the ``is_locked`` snapshot
stored on the lead, and the two can disagree: a lead locked on entry stays
locked after its activities are completed until the next transition.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from leadflow.pipeline.schemas import ActivityRead, LeadRead, PipelineStageRead


@dataclass(frozen=True, slots=True)
class MandatoryStatus:
    completed: int
    total: int
    is_blocked: bool


def mandatory_status(
    lead: LeadRead,
    activities: Iterable[ActivityRead],
    stage: PipelineStageRead,
) -> MandatoryStatus:
    # total counts templates, not generated rows; re-entry duplicates make them diverge.
    total = len(stage.mandatory_activities)
    completed = sum(
        1
        for activity in activities
        if activity.lead_id == lead.id and activity.is_mandatory and activity.is_completed
    )
    return MandatoryStatus(completed=completed, total=total, is_blocked=total > 0 and completed < total)
