from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadflow import audit, events
from leadflow.core.config import get_settings
from leadflow.pipeline.eligibility import DatabaseEligibilityOracle, EligibilityOracle
from leadflow.pipeline.errors import LeadNotFoundError, LeadUpdateError, StaleLeadError, UnknownStageError
from leadflow.pipeline.generator import MandatoryActivityGenerator
from leadflow.pipeline.models import Activity, Contact, Lead, Message, PipelineStage, utcnow
from leadflow.pipeline.schemas import (
    ActivityCreate,
    ActivityFailureRead,
    ActivityRead,
    ActivityToggleRequest,
    BoardLeadRead,
    BoardStageRead,
    CompletionFilter,
    ContactCreate,
    ContactRead,
    InternalNoteCreate,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    MandatoryStatusRead,
    MessageCreate,
    MessageRead,
    PipelineStageCreate,
    PipelineStageRead,
    StageTransitionRequest,
    StageTransitionResponse,
    ThreadedMessageRead,
)
from leadflow.pipeline.status import mandatory_status
from leadflow.pipeline.store import SqlPipelineStore
from leadflow.pipeline.threads import build_threads, new_thread_id, resolve_thread_id
from leadflow.pipeline.transitions import StageTransitionEngine


logger = logging.getLogger("leadflow.pipeline")


def _get_lead_or_404(session: Session, lead_id: uuid.UUID) -> Lead:
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
    return lead


class StageService:
    entity_type = "pipeline.stage"

    def create_stage(self, session: Session, actor_user_id: str, dto: PipelineStageCreate) -> PipelineStageRead:
        if session.get(PipelineStage, dto.id) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="stage already exists")

        stage = PipelineStage(
            id=dto.id,
            name=dto.name.strip(),
            order_index=dto.order_index,
            color=dto.color,
            description=dto.description,
            mandatory_activities=[template.model_dump() for template in dto.mandatory_activities],
        )
        session.add(stage)
        session.flush()

        created = PipelineStageRead.model_validate(stage)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=stage.id,
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
        )
        session.commit()
        return created

    def list_stages(self, session: Session) -> list[PipelineStageRead]:
        return SqlPipelineStore(session).list_stages()

    def get_stage(self, session: Session, stage_id: str) -> PipelineStageRead:
        stage = session.get(PipelineStage, stage_id)
        if stage is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="stage not found")
        return PipelineStageRead.model_validate(stage)


class ContactService:
    entity_type = "pipeline.contact"

    def create_contact(self, session: Session, actor_user_id: str, dto: ContactCreate) -> ContactRead:
        contact = Contact(
            name=dto.name.strip(),
            email=str(dto.email),
            phone=dto.phone.strip(),
            address=dto.address,
        )
        session.add(contact)
        session.flush()

        created = ContactRead.model_validate(contact)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(contact.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
        )
        session.commit()
        return created

    def list_contacts(self, session: Session) -> list[ContactRead]:
        rows = session.scalars(select(Contact).order_by(Contact.name)).all()
        return [ContactRead.model_validate(row) for row in rows]

    def get_contact(self, session: Session, contact_id: uuid.UUID) -> ContactRead:
        contact = session.get(Contact, contact_id)
        if contact is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")
        return ContactRead.model_validate(contact)

    def delete_contact(self, session: Session, actor_user_id: str, contact_id: uuid.UUID) -> None:
        contact = session.get(Contact, contact_id)
        if contact is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")
        before = ContactRead.model_validate(contact).model_dump(mode="json")
        for lead in list(contact.leads):
            session.delete(lead)
        session.delete(contact)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(contact_id),
            action="delete",
            before=before,
            after=None,
        )
        session.commit()


class LeadService:
    entity_type = "pipeline.lead"

    def create_lead(self, session: Session, actor_user_id: str, dto: LeadCreate) -> LeadRead:
        if session.get(Contact, dto.contact_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")

        stage_id = dto.current_stage or self._first_stage_id(session)
        if session.get(PipelineStage, stage_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="stage not found")

        next_number = (session.scalar(select(func.max(Lead.lead_number))) or 0) + 1
        lead = Lead(
            lead_number=next_number,
            contact_id=dto.contact_id,
            product=dto.product.strip(),
            notes=dto.notes,
            notes_internal=[],
            label_color=dto.label_color,
            label_text=dto.label_text,
            current_stage=stage_id,
        )
        session.add(lead)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lead number already taken, retry")

        created = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
        )
        events.publish(
            events.build_envelope(
                "pipeline.lead.created",
                actor_user_id,
                {"lead_id": str(lead.id), "stage_id": stage_id},
            )
        )
        session.commit()
        return created

    def list_leads(self, session: Session, filters: dict[str, Any]) -> list[LeadRead]:
        stmt: Select[tuple[Lead]] = select(Lead)
        if filters.get("stage_id"):
            stmt = stmt.where(Lead.current_stage == filters["stage_id"])
        if filters.get("contact_id"):
            stmt = stmt.where(Lead.contact_id == filters["contact_id"])
        if filters.get("is_locked") is not None:
            stmt = stmt.where(Lead.is_locked.is_(filters["is_locked"]))
        rows = session.scalars(stmt.order_by(Lead.lead_number.desc())).all()
        return [LeadRead.model_validate(row) for row in rows]

    def get_lead(self, session: Session, lead_id: uuid.UUID) -> LeadRead:
        return LeadRead.model_validate(_get_lead_or_404(session, lead_id))

    def update_lead(self, session: Session, actor_user_id: str, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        lead = _get_lead_or_404(session, lead_id)
        before = LeadRead.model_validate(lead).model_dump(mode="json")

        payload = dto.model_dump(exclude_unset=True)
        payload.pop("row_version", None)
        if not payload:
            return LeadRead.model_validate(lead)

        payload["updated_at"] = utcnow()
        payload["row_version"] = Lead.row_version + 1
        result = session.execute(
            update(Lead)
            .where(and_(Lead.id == lead.id, Lead.row_version == dto.row_version))
            .values(**payload)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")
        session.commit()

        updated = LeadRead.model_validate(self._reload(session, lead_id))
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="update",
            before=before,
            after=updated.model_dump(mode="json"),
        )
        return updated

    def add_internal_note(
        self,
        session: Session,
        actor_user_id: str,
        lead_id: uuid.UUID,
        dto: InternalNoteCreate,
    ) -> LeadRead:
        lead = _get_lead_or_404(session, lead_id)
        note = {"text": dto.text, "date": utcnow().isoformat()}
        # Reassign so the JSON column is flagged dirty; existing entries are never touched.
        lead.notes_internal = [*(lead.notes_internal or []), note]
        lead.row_version = lead.row_version + 1
        session.flush()

        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="add_internal_note",
            before=None,
            after=note,
        )
        session.commit()
        return LeadRead.model_validate(lead)

    def delete_lead(self, session: Session, actor_user_id: str, lead_id: uuid.UUID) -> None:
        lead = _get_lead_or_404(session, lead_id)
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        session.delete(lead)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="delete",
            before=before,
            after=None,
        )
        session.commit()

    def get_mandatory_status(self, session: Session, lead_id: uuid.UUID) -> MandatoryStatusRead:
        lead = LeadRead.model_validate(_get_lead_or_404(session, lead_id))
        store = SqlPipelineStore(session)
        stage = store.get_stage(lead.current_stage)
        if stage is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="stage not found")
        return self._status_read(lead, stage, store.list_activities(lead.id))

    def get_board(self, session: Session) -> list[BoardStageRead]:
        store = SqlPipelineStore(session)
        leads = session.scalars(select(Lead).order_by(Lead.lead_number)).all()
        activities = session.scalars(select(Activity).where(Activity.is_mandatory.is_(True))).all()

        activities_by_lead: dict[uuid.UUID, list[ActivityRead]] = {}
        for activity in activities:
            activities_by_lead.setdefault(activity.lead_id, []).append(ActivityRead.model_validate(activity))

        board: list[BoardStageRead] = []
        for stage in store.list_stages():
            column = BoardStageRead(stage=stage)
            for row in leads:
                if row.current_stage != stage.id:
                    continue
                lead = LeadRead.model_validate(row)
                column.leads.append(
                    BoardLeadRead(
                        lead=lead,
                        status=self._status_read(lead, stage, activities_by_lead.get(lead.id, [])),
                    )
                )
            board.append(column)
        return board

    def _status_read(
        self,
        lead: LeadRead,
        stage: PipelineStageRead,
        activities: list[ActivityRead],
    ) -> MandatoryStatusRead:
        computed = mandatory_status(lead, activities, stage)
        return MandatoryStatusRead(
            lead_id=lead.id,
            stage_id=stage.id,
            completed=computed.completed,
            total=computed.total,
            is_blocked=computed.is_blocked,
            is_locked=lead.is_locked,
            stage_locked_reason=lead.stage_locked_reason,
        )

    def _first_stage_id(self, session: Session) -> str:
        stage_id = session.scalar(select(PipelineStage.id).order_by(PipelineStage.order_index, PipelineStage.id).limit(1))
        if stage_id is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="no pipeline stages configured")
        return stage_id

    def _reload(self, session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.scalar(select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True))
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        return lead


class ActivityService:
    entity_type = "pipeline.activity"

    def list_activities(self, session: Session, lead_id: uuid.UUID, completion: CompletionFilter = "all") -> list[ActivityRead]:
        _get_lead_or_404(session, lead_id)
        stmt: Select[tuple[Activity]] = select(Activity).where(Activity.lead_id == lead_id)
        if completion == "completed":
            stmt = stmt.where(Activity.is_completed.is_(True))
        elif completion == "pending":
            stmt = stmt.where(Activity.is_completed.is_(False))
        rows = session.scalars(stmt.order_by(Activity.created_at.desc())).all()
        return [ActivityRead.model_validate(row) for row in rows]

    def create_activity(
        self,
        session: Session,
        actor_user_id: str,
        lead_id: uuid.UUID,
        dto: ActivityCreate,
    ) -> ActivityRead:
        _get_lead_or_404(session, lead_id)
        activity = Activity(
            lead_id=lead_id,
            text=dto.text.strip(),
            type=dto.type,
            is_mandatory=False,
            auto_generated=False,
            is_completed=False,
        )
        session.add(activity)
        session.flush()

        created = ActivityRead.model_validate(activity)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(activity.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
        )
        events.publish(
            events.build_envelope(
                "pipeline.activity.created",
                actor_user_id,
                {"activity_id": str(activity.id), "lead_id": str(lead_id)},
            )
        )
        session.commit()
        return created

    def toggle_completion(
        self,
        session: Session,
        actor_user_id: str,
        activity_id: uuid.UUID,
        dto: ActivityToggleRequest,
    ) -> ActivityRead:
        activity = session.get(Activity, activity_id)
        if activity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="activity not found")
        before = ActivityRead.model_validate(activity)

        completing = not activity.is_completed
        now = utcnow()
        result = session.execute(
            update(Activity)
            .where(and_(Activity.id == activity.id, Activity.row_version == dto.row_version))
            .values(
                is_completed=completing,
                completed_at=now if completing else None,
                updated_at=now,
                row_version=Activity.row_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")
        session.commit()

        updated_row = session.scalar(
            select(Activity).where(Activity.id == activity_id).execution_options(populate_existing=True)
        )
        if updated_row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="activity not found")
        updated = ActivityRead.model_validate(updated_row)

        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(activity_id),
            action="complete" if completing else "reopen",
            before=before.model_dump(mode="json"),
            after=updated.model_dump(mode="json"),
        )
        events.publish(
            events.build_envelope(
                "pipeline.activity.completed" if completing else "pipeline.activity.reopened",
                actor_user_id,
                {"activity_id": str(activity_id), "lead_id": str(updated.lead_id)},
            )
        )
        return updated

    def delete_activity(self, session: Session, actor_user_id: str, activity_id: uuid.UUID) -> None:
        activity = session.get(Activity, activity_id)
        if activity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="activity not found")
        before = ActivityRead.model_validate(activity).model_dump(mode="json")
        session.delete(activity)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(activity_id),
            action="delete",
            before=before,
            after=None,
        )
        session.commit()


class MessageService:
    entity_type = "pipeline.message"

    def list_messages(self, session: Session, lead_id: uuid.UUID) -> list[MessageRead]:
        _get_lead_or_404(session, lead_id)
        rows = session.scalars(
            select(Message).where(Message.lead_id == lead_id).order_by(Message.timestamp, Message.created_at)
        ).all()
        return [MessageRead.model_validate(row) for row in rows]

    def list_threads(self, session: Session, lead_id: uuid.UUID) -> list[ThreadedMessageRead]:
        return [node.to_read() for node in build_threads(self.list_messages(session, lead_id))]

    def send_message(self, session: Session, actor_user_id: str, lead_id: uuid.UUID, dto: MessageCreate) -> MessageRead:
        _get_lead_or_404(session, lead_id)

        if dto.in_reply_to is not None:
            parent = session.get(Message, dto.in_reply_to)
            if parent is None or parent.lead_id != lead_id:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="in_reply_to must reference a message of this lead")
            thread_id = resolve_thread_id(MessageRead.model_validate(parent))
        else:
            thread_id = new_thread_id()

        message = Message(
            lead_id=lead_id,
            content=dto.content,
            channel=dto.channel,
            sender=dto.sender,
            timestamp=utcnow(),
            in_reply_to=dto.in_reply_to,
            thread_id=thread_id,
            ai_generated=dto.ai_generated,
            reply_status=dto.reply_status,
        )
        session.add(message)
        session.flush()

        created = MessageRead.model_validate(message)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(message.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
        )
        events.publish(
            events.build_envelope(
                "pipeline.message.sent",
                actor_user_id,
                {"message_id": str(message.id), "lead_id": str(lead_id), "thread_id": thread_id},
            )
        )
        session.commit()
        return created


class TransitionService:
    entity_type = "pipeline.lead"

    def __init__(self, oracle: EligibilityOracle | None = None) -> None:
        self._oracle = oracle

    def build_engine(self, session: Session) -> StageTransitionEngine:
        settings = get_settings()
        store = SqlPipelineStore(session)
        oracle = self._oracle or DatabaseEligibilityOracle(store)
        generator = MandatoryActivityGenerator(store, policy=settings.mandatory_activity_policy)
        return StageTransitionEngine(store, oracle, generator, locked_reason=settings.stage_locked_reason)

    def request_transition(
        self,
        session: Session,
        actor_user_id: str,
        lead_id: uuid.UUID,
        dto: StageTransitionRequest,
    ) -> StageTransitionResponse:
        store = SqlPipelineStore(session)
        try:
            lead = store.get_lead(lead_id)
        except LeadNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        if lead.row_version != dto.row_version:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        engine = self.build_engine(session)
        try:
            result = engine.request_transition(
                lead,
                dto.target_stage_id,
                position_changed=dto.position_changed,
                activities=store.list_activities(lead_id),
            )
        except UnknownStageError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="stage not found")
        except LeadNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        except StaleLeadError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")
        except LeadUpdateError:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="could not complete the stage change, try again",
            )

        if not result.noop:
            audit.record(
                actor_user_id=actor_user_id,
                entity_type=self.entity_type,
                entity_id=str(lead_id),
                action="change_stage",
                before=lead.model_dump(mode="json"),
                after=result.lead.model_dump(mode="json"),
            )
            events.publish(
                events.build_envelope(
                    "pipeline.lead.stage_changed",
                    actor_user_id,
                    {
                        "lead_id": str(lead_id),
                        "from_stage_id": lead.current_stage,
                        "stage_id": result.lead.current_stage,
                        "is_locked": result.lead.is_locked,
                        "eligibility": result.eligibility,
                        "generated_activity_ids": [str(item.id) for item in result.generated_activities],
                    },
                )
            )

        return StageTransitionResponse(
            lead=result.lead,
            noop=result.noop,
            eligibility=result.eligibility,
            oracle_error=result.oracle_error,
            unmet_activities=result.unmet_activities,
            generated_activities=result.generated_activities,
            activity_failures=[
                ActivityFailureRead(type=item.template.type, description=item.template.description, error=item.error)
                for item in result.activity_failures
            ],
            message=result.user_message,
        )
