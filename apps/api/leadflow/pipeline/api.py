from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadflow.context import get_correlation_id
from leadflow.core.database import get_db
from leadflow.pipeline.schemas import (
    ActivityCreate,
    ActivityRead,
    ActivityToggleRequest,
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
from leadflow.pipeline.service import (
    ActivityService,
    ContactService,
    LeadService,
    MessageService,
    StageService,
    TransitionService,
)

stages_router = APIRouter(prefix="/api", tags=["pipeline.stages"])
contacts_router = APIRouter(prefix="/api", tags=["pipeline.contacts"])
leads_router = APIRouter(prefix="/api", tags=["pipeline.leads"])
activities_router = APIRouter(prefix="/api", tags=["pipeline.activities"])
messages_router = APIRouter(prefix="/api", tags=["pipeline.messages"])
stage_service = StageService()
contact_service = ContactService()
lead_service = LeadService()
activity_service = ActivityService()
message_service = MessageService()
transition_service = TransitionService()


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _failure(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def get_actor_user_id(request: Request) -> str:
    context = getattr(request.state, "context", None)
    return getattr(context, "user_id", None) or "anonymous"


def get_transition_service() -> TransitionService:
    return transition_service


@stages_router.post("/stages", response_model=PipelineStageRead, status_code=status.HTTP_201_CREATED)
def create_stage(
    request: Request,
    dto: PipelineStageCreate,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> PipelineStageRead | JSONResponse:
    try:
        return stage_service.create_stage(db, actor_user_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_stage_create_failed")


@stages_router.get("/stages", response_model=list[PipelineStageRead])
def list_stages(db: Session = Depends(get_db)) -> list[PipelineStageRead]:
    return stage_service.list_stages(db)


@stages_router.get("/stages/{stage_id}", response_model=PipelineStageRead)
def get_stage(request: Request, stage_id: str, db: Session = Depends(get_db)) -> PipelineStageRead | JSONResponse:
    try:
        return stage_service.get_stage(db, stage_id)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_stage_get_failed")


@stages_router.get("/pipeline/board", response_model=list[BoardStageRead])
def get_board(db: Session = Depends(get_db)) -> list[BoardStageRead]:
    return lead_service.get_board(db)


@contacts_router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    dto: ContactCreate,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> ContactRead:
    return contact_service.create_contact(db, actor_user_id, dto)


@contacts_router.get("/contacts", response_model=list[ContactRead])
def list_contacts(db: Session = Depends(get_db)) -> list[ContactRead]:
    return contact_service.list_contacts(db)


@contacts_router.get("/contacts/{contact_id}", response_model=ContactRead)
def get_contact(request: Request, contact_id: uuid.UUID, db: Session = Depends(get_db)) -> ContactRead | JSONResponse:
    try:
        return contact_service.get_contact(db, contact_id)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_contact_get_failed")


@contacts_router.delete("/contacts/{contact_id}", response_model=None)
def delete_contact(
    request: Request,
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> dict[str, str] | JSONResponse:
    try:
        contact_service.delete_contact(db, actor_user_id, contact_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_contact_delete_failed")


@leads_router.get("/leads", response_model=list[LeadRead])
def list_leads(
    stage_id: str | None = Query(default=None),
    contact_id: uuid.UUID | None = Query(default=None),
    is_locked: bool | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[LeadRead]:
    return lead_service.list_leads(db, filters={"stage_id": stage_id, "contact_id": contact_id, "is_locked": is_locked})


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, actor_user_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_lead_create_failed")


@leads_router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(request: Request, lead_id: uuid.UUID, db: Session = Depends(get_db)) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, lead_id)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_lead_get_failed")


@leads_router.patch("/leads/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, actor_user_id, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_lead_update_failed")


@leads_router.delete("/leads/{lead_id}", response_model=None)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> dict[str, str] | JSONResponse:
    try:
        lead_service.delete_lead(db, actor_user_id, lead_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_lead_delete_failed")


@leads_router.post("/leads/{lead_id}/notes", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def add_internal_note(
    request: Request,
    lead_id: uuid.UUID,
    dto: InternalNoteCreate,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.add_internal_note(db, actor_user_id, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_lead_note_failed")


@leads_router.post("/leads/{lead_id}/transition", response_model=StageTransitionResponse)
def transition_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: StageTransitionRequest,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
    service: TransitionService = Depends(get_transition_service),
) -> StageTransitionResponse | JSONResponse:
    try:
        return service.request_transition(db, actor_user_id, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_lead_transition_failed")


@leads_router.get("/leads/{lead_id}/mandatory-status", response_model=MandatoryStatusRead)
def get_mandatory_status(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> MandatoryStatusRead | JSONResponse:
    try:
        return lead_service.get_mandatory_status(db, lead_id)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_lead_status_failed")


@activities_router.get("/leads/{lead_id}/activities", response_model=list[ActivityRead])
def list_activities(
    request: Request,
    lead_id: uuid.UUID,
    completion: CompletionFilter = Query(default="all"),
    db: Session = Depends(get_db),
) -> list[ActivityRead] | JSONResponse:
    try:
        return activity_service.list_activities(db, lead_id, completion)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_activity_list_failed")


@activities_router.post("/leads/{lead_id}/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    request: Request,
    lead_id: uuid.UUID,
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.create_activity(db, actor_user_id, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_activity_create_failed")


@activities_router.post("/activities/{activity_id}/toggle", response_model=ActivityRead)
def toggle_activity(
    request: Request,
    activity_id: uuid.UUID,
    dto: ActivityToggleRequest,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.toggle_completion(db, actor_user_id, activity_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_activity_toggle_failed")


@activities_router.delete("/activities/{activity_id}", response_model=None)
def delete_activity(
    request: Request,
    activity_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> dict[str, str] | JSONResponse:
    try:
        activity_service.delete_activity(db, actor_user_id, activity_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_activity_delete_failed")


@messages_router.get("/leads/{lead_id}/messages", response_model=list[MessageRead])
def list_messages(request: Request, lead_id: uuid.UUID, db: Session = Depends(get_db)) -> list[MessageRead] | JSONResponse:
    try:
        return message_service.list_messages(db, lead_id)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_message_list_failed")


@messages_router.get("/leads/{lead_id}/threads", response_model=list[ThreadedMessageRead])
def list_threads(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> list[ThreadedMessageRead] | JSONResponse:
    try:
        return message_service.list_threads(db, lead_id)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_message_threads_failed")


@messages_router.post("/leads/{lead_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
def send_message(
    request: Request,
    lead_id: uuid.UUID,
    dto: MessageCreate,
    db: Session = Depends(get_db),
    actor_user_id: str = Depends(get_actor_user_id),
) -> MessageRead | JSONResponse:
    try:
        return message_service.send_message(db, actor_user_id, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "pipeline_message_send_failed")
