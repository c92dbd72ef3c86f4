from __future__ import annotations

import uuid
from typing import Any, Protocol

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.pipeline.errors import (
    ActivityInsertError,
    ActivityLookupError,
    LeadNotFoundError,
    LeadUpdateError,
    StaleLeadError,
)
from leadflow.pipeline.models import Activity, Lead, PipelineStage, utcnow
from leadflow.pipeline.schemas import ActivityRead, LeadRead, PipelineStageRead


class StageTemplateStore(Protocol):
    def get_stage(self, stage_id: str) -> PipelineStageRead | None: ...


class PipelineStore(StageTemplateStore, Protocol):
    def update_lead(self, lead_id: uuid.UUID, fields: dict[str, Any], expected_row_version: int) -> LeadRead: ...

    def insert_activity(self, fields: dict[str, Any]) -> ActivityRead: ...

    def has_generated_activities(self, lead_id: uuid.UUID, stage_id: str) -> bool: ...


class SqlPipelineStore:
    """Session-backed store. Every write commits on its own; there is no
    transaction spanning the lead update and the activity inserts."""

    def __init__(self, session: Session):
        self.session = session

    def rollback(self) -> None:
        self.session.rollback()

    def get_stage(self, stage_id: str) -> PipelineStageRead | None:
        stage = self.session.get(PipelineStage, stage_id)
        if stage is None:
            return None
        return PipelineStageRead.model_validate(stage)

    def list_stages(self) -> list[PipelineStageRead]:
        rows = self.session.scalars(select(PipelineStage).order_by(PipelineStage.order_index, PipelineStage.id)).all()
        return [PipelineStageRead.model_validate(row) for row in rows]

    def get_lead(self, lead_id: uuid.UUID) -> LeadRead:
        lead = self.session.get(Lead, lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        return LeadRead.model_validate(lead)

    def list_activities(self, lead_id: uuid.UUID) -> list[ActivityRead]:
        rows = self.session.scalars(
            select(Activity).where(Activity.lead_id == lead_id).order_by(Activity.created_at)
        ).all()
        return [ActivityRead.model_validate(row) for row in rows]

    def update_lead(self, lead_id: uuid.UUID, fields: dict[str, Any], expected_row_version: int) -> LeadRead:
        values = dict(fields)
        values["updated_at"] = utcnow()
        values["row_version"] = Lead.row_version + 1
        try:
            result = self.session.execute(
                update(Lead)
                .where(and_(Lead.id == lead_id, Lead.row_version == expected_row_version))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.session.rollback()
                if self.session.get(Lead, lead_id) is None:
                    raise LeadNotFoundError(lead_id)
                raise StaleLeadError(lead_id, expected_row_version)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise LeadUpdateError(str(exc)) from exc

        updated = self.session.scalar(select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True))
        if updated is None:
            raise LeadNotFoundError(lead_id)
        return LeadRead.model_validate(updated)

    def insert_activity(self, fields: dict[str, Any]) -> ActivityRead:
        activity = Activity(**fields)
        self.session.add(activity)
        try:
            self.session.commit()
            self.session.refresh(activity)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise ActivityInsertError(str(exc)) from exc
        return ActivityRead.model_validate(activity)

    def has_generated_activities(self, lead_id: uuid.UUID, stage_id: str) -> bool:
        try:
            found = self.session.scalar(
                select(Activity.id)
                .where(
                    and_(
                        Activity.lead_id == lead_id,
                        Activity.stage_id == stage_id,
                        Activity.auto_generated.is_(True),
                    )
                )
                .limit(1)
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise ActivityLookupError(str(exc)) from exc
        return found is not None
