from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


Channel = Literal["email", "whatsapp"]
EligibilityOutcome = Literal["eligible", "ineligible", "unverified", "skipped"]
CompletionFilter = Literal["all", "pending", "completed"]


class MandatoryActivityTemplate(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str = Field(min_length=1)
    description: str = Field(min_length=1)


class PipelineStageCreate(BaseModel):
    id: str = Field(min_length=1, max_length=64, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    name: str = Field(min_length=1)
    order_index: int = Field(ge=0)
    color: str = "#607D8B"
    description: str | None = None
    mandatory_activities: list[MandatoryActivityTemplate] = Field(default_factory=list)


class PipelineStageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    order_index: int
    color: str
    description: str | None
    mandatory_activities: list[MandatoryActivityTemplate] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ContactCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)
    address: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    phone: str
    address: str | None
    created_at: datetime
    updated_at: datetime


class InternalNote(BaseModel):
    text: str
    date: datetime


class InternalNoteCreate(BaseModel):
    text: str = Field(min_length=1)


class LeadCreate(BaseModel):
    contact_id: UUID
    product: str = Field(min_length=1)
    notes: str | None = None
    label_color: str | None = None
    label_text: str | None = None
    current_stage: str | None = None


class LeadUpdate(BaseModel):
    row_version: int = Field(ge=1)
    product: str | None = Field(default=None, min_length=1)
    notes: str | None = None
    label_color: str | None = None
    label_text: str | None = None

    @model_validator(mode="after")
    def validate_product(self) -> LeadUpdate:
        if "product" in self.model_fields_set and self.product is None:
            raise ValueError("product cannot be null")
        return self


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_number: int
    contact_id: UUID
    product: str
    notes: str | None
    notes_internal: list[InternalNote] = Field(default_factory=list)
    label_color: str | None
    label_text: str | None
    current_stage: str
    is_locked: bool
    stage_locked_reason: str | None
    last_stage_change: datetime | None
    created_at: datetime
    updated_at: datetime
    row_version: int


class ActivityCreate(BaseModel):
    text: str = Field(min_length=1)
    type: str = "manual"


class ActivityToggleRequest(BaseModel):
    row_version: int = Field(ge=1)


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    text: str
    type: str
    is_mandatory: bool
    auto_generated: bool
    stage_id: str | None
    is_completed: bool
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    row_version: int


class MessageCreate(BaseModel):
    content: str = Field(min_length=1)
    channel: Channel = "email"
    sender: str = Field(min_length=1)
    in_reply_to: UUID | None = None
    ai_generated: bool = False
    reply_status: str = "sent"


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    content: str
    channel: Channel
    sender: str
    timestamp: datetime
    in_reply_to: UUID | None
    thread_id: str
    ai_generated: bool
    reply_status: str


class ThreadedMessageRead(MessageRead):
    level: int
    replies: list[ThreadedMessageRead] = Field(default_factory=list)


class MandatoryStatusRead(BaseModel):
    lead_id: UUID
    stage_id: str
    completed: int
    total: int
    is_blocked: bool
    is_locked: bool
    stage_locked_reason: str | None


class StageTransitionRequest(BaseModel):
    target_stage_id: str = Field(min_length=1)
    row_version: int = Field(ge=1)
    position_changed: bool = False


class ActivityFailureRead(BaseModel):
    type: str
    description: str
    error: str


class StageTransitionResponse(BaseModel):
    lead: LeadRead
    noop: bool
    eligibility: EligibilityOutcome
    oracle_error: str | None = None
    unmet_activities: list[str] = Field(default_factory=list)
    generated_activities: list[ActivityRead] = Field(default_factory=list)
    activity_failures: list[ActivityFailureRead] = Field(default_factory=list)
    message: str | None = None


class BoardLeadRead(BaseModel):
    lead: LeadRead
    status: MandatoryStatusRead


class BoardStageRead(BaseModel):
    stage: PipelineStageRead
    leads: list[BoardLeadRead] = Field(default_factory=list)
