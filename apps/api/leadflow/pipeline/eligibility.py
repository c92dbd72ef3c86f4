from __future__ import annotations

import uuid
from typing import Protocol

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import SQLAlchemyError

from leadflow.context import get_correlation_id
from leadflow.pipeline.status import mandatory_status
from leadflow.pipeline.store import SqlPipelineStore


tracer = trace.get_tracer("leadflow.pipeline.eligibility")


class EligibilityOracle(Protocol):
    def can_advance(self, lead_id: uuid.UUID, target_stage_id: str) -> bool: ...


class DatabaseEligibilityOracle:
    """Answers from activity completion history.

    A lead may leave its current stage once that stage's mandatory templates
    are matched by as many completed mandatory activities. Stages without
    templates never hold a lead back. Store errors propagate to the caller
    after the shared session is rolled back, leaving it usable for the
    transition write that follows.
    """

    def __init__(self, store: SqlPipelineStore):
        self.store = store

    def can_advance(self, lead_id: uuid.UUID, target_stage_id: str) -> bool:
        with tracer.start_as_current_span("pipeline.eligibility.can_advance") as span:
            span.set_attribute("lead_id", str(lead_id))
            span.set_attribute("target_stage_id", target_stage_id)
            span.set_attribute("correlation_id", get_correlation_id() or "")

            try:
                lead = self.store.get_lead(lead_id)
                current_stage = self.store.get_stage(lead.current_stage)
                if current_stage is None:
                    span.set_attribute("eligible", True)
                    return True
                activities = self.store.list_activities(lead_id)
            except SQLAlchemyError as exc:
                self.store.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "eligibility lookup failed"))
                raise

            status = mandatory_status(lead, activities, current_stage)
            span.set_attribute("eligible", not status.is_blocked)
            return not status.is_blocked
