from __future__ import annotations

import uuid
from datetime import datetime, timezone

from leadflow.pipeline.schemas import ActivityRead, LeadRead, MandatoryActivityTemplate, PipelineStageRead
from leadflow.pipeline.state import UNLOCKED, LeadStageState, Locked
from leadflow.pipeline.status import mandatory_status


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _stage(template_count: int) -> PipelineStageRead:
    return PipelineStageRead(
        id="qualified",
        name="Qualified",
        order_index=1,
        color="#4CAF50",
        description=None,
        mandatory_activities=[
            MandatoryActivityTemplate(type="task", description=f"Step {index}") for index in range(template_count)
        ],
        created_at=NOW,
        updated_at=NOW,
    )


def _lead(*, is_locked: bool = False) -> LeadRead:
    return LeadRead(
        id=uuid.uuid4(),
        lead_number=7,
        contact_id=uuid.uuid4(),
        product="Heat pump",
        notes=None,
        label_color=None,
        label_text=None,
        current_stage="qualified",
        is_locked=is_locked,
        stage_locked_reason="Mandatory activities pending" if is_locked else None,
        last_stage_change=NOW,
        created_at=NOW,
        updated_at=NOW,
        row_version=1,
    )


def _activity(lead_id: uuid.UUID, *, is_mandatory: bool = True, is_completed: bool = True) -> ActivityRead:
    return ActivityRead(
        id=uuid.uuid4(),
        lead_id=lead_id,
        text="Step",
        type="task",
        is_mandatory=is_mandatory,
        auto_generated=is_mandatory,
        stage_id="qualified",
        is_completed=is_completed,
        completed_at=NOW if is_completed else None,
        created_at=NOW,
        updated_at=NOW,
        row_version=1,
    )


def test_stage_without_templates_is_never_blocked() -> None:
    lead = _lead()
    status = mandatory_status(lead, [], _stage(0))
    assert (status.completed, status.total, status.is_blocked) == (0, 0, False)


def test_blocked_until_completed_count_reaches_template_count() -> None:
    lead = _lead()
    stage = _stage(2)

    partial = mandatory_status(lead, [_activity(lead.id), _activity(lead.id, is_completed=False)], stage)
    assert (partial.completed, partial.total, partial.is_blocked) == (1, 2, True)

    done = mandatory_status(lead, [_activity(lead.id), _activity(lead.id)], stage)
    assert (done.completed, done.total, done.is_blocked) == (2, 2, False)


def test_only_mandatory_activities_of_the_lead_count() -> None:
    lead = _lead()
    other_lead_id = uuid.uuid4()
    activities = [
        _activity(lead.id, is_mandatory=False),
        _activity(other_lead_id),
        _activity(lead.id),
    ]

    status = mandatory_status(lead, activities, _stage(2))

    assert status.completed == 1
    assert status.is_blocked is True


def test_duplicated_checklists_can_satisfy_the_count() -> None:
    lead = _lead()
    activities = [_activity(lead.id), _activity(lead.id), _activity(lead.id, is_completed=False)]

    status = mandatory_status(lead, activities, _stage(2))

    assert status.completed == 2
    assert status.is_blocked is False


def test_completion_view_is_independent_of_stored_lock() -> None:
    lead = _lead(is_locked=True)

    status = mandatory_status(lead, [_activity(lead.id)], _stage(1))

    assert status.is_blocked is False
    assert lead.is_locked is True


def test_stage_state_round_trip_through_lead_fields() -> None:
    locked = LeadStageState.of(_lead(is_locked=True))
    assert locked.lock == Locked("Mandatory activities pending")

    entered = locked.enter("closed", eligible=True, locked_reason="pending", now=NOW)
    assert entered.lock is UNLOCKED
    assert entered.to_fields() == {
        "current_stage": "closed",
        "is_locked": False,
        "stage_locked_reason": None,
        "last_stage_change": NOW,
    }

    flagged = entered.enter("won", eligible=False, locked_reason="pending", now=NOW)
    assert flagged.is_locked is True
    assert flagged.to_fields()["stage_locked_reason"] == "pending"
