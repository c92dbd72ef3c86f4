"""Stage transition engine.

A requested move is never refused for missing prerequisites: the lead is
always placed in the target stage and the eligibility answer only decides
whether it is flagged as locked. Entering a stage always spawns that stage's
mandatory activities.

Concurrency: each request carries the lead's ``row_version`` and the write
is conditional on it, so two racing transitions cannot both succeed on the
same snapshot; the loser gets ``StaleLeadError`` and must re-read.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from leadflow.context import get_correlation_id
from leadflow.metrics import observe_eligibility_failure, observe_transition
from leadflow.pipeline.eligibility import EligibilityOracle
from leadflow.pipeline.errors import LeadUpdateError, UnknownStageError
from leadflow.pipeline.generator import GenerationFailure, MandatoryActivityGenerator
from leadflow.pipeline.models import utcnow
from leadflow.pipeline.schemas import ActivityRead, EligibilityOutcome, LeadRead, PipelineStageRead
from leadflow.pipeline.state import LeadStageState
from leadflow.pipeline.store import PipelineStore


logger = logging.getLogger("leadflow.pipeline.transitions")
tracer = trace.get_tracer("leadflow.pipeline.transitions")

UNVERIFIED_MESSAGE = "Could not verify stage eligibility. The move was recorded as locked; please try again."
PARTIAL_GENERATION_MESSAGE = "Stage changed, but some mandatory activities could not be created."


@dataclass(slots=True)
class StageTransitionResult:
    lead: LeadRead
    noop: bool
    eligibility: EligibilityOutcome
    oracle_error: str | None = None
    unmet_activities: list[str] = field(default_factory=list)
    generated_activities: list[ActivityRead] = field(default_factory=list)
    activity_failures: list[GenerationFailure] = field(default_factory=list)

    @property
    def user_message(self) -> str | None:
        messages: list[str] = []
        if self.eligibility == "unverified":
            messages.append(UNVERIFIED_MESSAGE)
        elif self.eligibility == "ineligible" and self.unmet_activities:
            pending = "\n".join(f"- {description}" for description in self.unmet_activities)
            messages.append(f"Mandatory activities pending:\n{pending}")
        if self.activity_failures:
            messages.append(PARTIAL_GENERATION_MESSAGE)
        return "\n".join(messages) if messages else None


class StageTransitionEngine:
    def __init__(
        self,
        store: PipelineStore,
        oracle: EligibilityOracle,
        generator: MandatoryActivityGenerator,
        *,
        locked_reason: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.generator = generator
        self.locked_reason = locked_reason
        self.clock = clock

    def request_transition(
        self,
        lead: LeadRead,
        target_stage_id: str,
        *,
        position_changed: bool = False,
        activities: Sequence[ActivityRead] | None = None,
    ) -> StageTransitionResult:
        if target_stage_id == lead.current_stage and not position_changed:
            observe_transition("noop")
            return StageTransitionResult(lead=lead, noop=True, eligibility="skipped")

        with tracer.start_as_current_span("pipeline.request_transition") as span:
            span.set_attribute("lead_id", str(lead.id))
            span.set_attribute("from_stage_id", lead.current_stage)
            span.set_attribute("target_stage_id", target_stage_id)
            span.set_attribute("correlation_id", get_correlation_id() or "")

            target_stage = self.store.get_stage(target_stage_id)
            if target_stage is None:
                observe_transition("unknown_stage")
                span.set_status(Status(StatusCode.ERROR, "unknown stage"))
                raise UnknownStageError(target_stage_id)

            eligible, eligibility, oracle_error = self._check_eligibility(lead, target_stage_id)
            span.set_attribute("eligibility", eligibility)
            unmet_activities = self._unmet_activities(lead, activities) if not eligible else []

            state = LeadStageState.of(lead).enter(
                target_stage_id,
                eligible=eligible,
                locked_reason=self.locked_reason,
                now=self.clock(),
            )
            try:
                updated = self.store.update_lead(lead.id, state.to_fields(), lead.row_version)
            except LeadUpdateError as exc:
                observe_transition("write_failed")
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "lead update failed"))
                logger.warning(
                    "stage_transition.write_failed",
                    extra={"lead_id": str(lead.id), "target_stage_id": target_stage_id, "error": str(exc)},
                )
                raise

            outcome = self.generator.generate_for_stage(lead.id, target_stage_id, stage=target_stage)

            result = StageTransitionResult(
                lead=updated,
                noop=False,
                eligibility=eligibility,
                oracle_error=oracle_error,
                unmet_activities=unmet_activities,
                generated_activities=outcome.created,
                activity_failures=outcome.failures,
            )
            observe_transition("locked" if updated.is_locked else "advanced")
            logger.info(
                "stage_transition.applied",
                extra={
                    "lead_id": str(lead.id),
                    "stage_id": lead.current_stage,
                    "target_stage_id": target_stage_id,
                    "eligibility": eligibility,
                    "generated_count": len(outcome.created),
                    "failed_count": len(outcome.failures),
                },
            )
            return result

    def _check_eligibility(self, lead: LeadRead, target_stage_id: str) -> tuple[bool, EligibilityOutcome, str | None]:
        try:
            eligible = bool(self.oracle.can_advance(lead.id, target_stage_id))
        except Exception as exc:
            observe_eligibility_failure()
            logger.warning(
                "stage_transition.eligibility_unverified",
                exc_info=True,
                extra={"lead_id": str(lead.id), "target_stage_id": target_stage_id, "error": str(exc)},
            )
            return False, "unverified", str(exc) or exc.__class__.__name__
        return eligible, "eligible" if eligible else "ineligible", None

    def _unmet_activities(self, lead: LeadRead, activities: Sequence[ActivityRead] | None) -> list[str]:
        source_stage: PipelineStageRead | None = self.store.get_stage(lead.current_stage)
        if source_stage is None:
            return []
        done = {
            (activity.type, activity.text)
            for activity in activities or []
            if activity.is_mandatory and activity.is_completed
        }
        return [
            template.description
            for template in source_stage.mandatory_activities
            if (template.type, template.description) not in done
        ]
