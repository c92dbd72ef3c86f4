from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Literal

from leadflow.metrics import observe_activity_insert_failure, observe_generated_activities
from leadflow.pipeline.errors import ActivityInsertError, ActivityLookupError, UnknownStageError
from leadflow.pipeline.schemas import ActivityRead, MandatoryActivityTemplate, PipelineStageRead
from leadflow.pipeline.store import PipelineStore


logger = logging.getLogger("leadflow.pipeline.generator")

GenerationPolicy = Literal["always", "once_per_stage"]


@dataclass(frozen=True, slots=True)
class GenerationFailure:
    template: MandatoryActivityTemplate
    error: str


@dataclass(slots=True)
class GenerationOutcome:
    stage_id: str
    created: list[ActivityRead] = field(default_factory=list)
    failures: list[GenerationFailure] = field(default_factory=list)
    skipped: bool = False


class MandatoryActivityGenerator:
    """Turns a stage's mandatory templates into activities for one lead.

    With the ``always`` policy every entry into a stage creates a fresh set,
    so re-entering a stage duplicates its checklist. ``once_per_stage`` skips
    generation when the lead already holds generated activities for the stage.
    If that lookup fails nothing is generated and every template is reported
    as a failure.
    """

    def __init__(self, store: PipelineStore, policy: GenerationPolicy = "always"):
        self.store = store
        self.policy = policy

    def generate_for_stage(
        self,
        lead_id: uuid.UUID,
        stage_id: str,
        stage: PipelineStageRead | None = None,
    ) -> GenerationOutcome:
        if stage is None:
            stage = self.store.get_stage(stage_id)
        if stage is None:
            raise UnknownStageError(stage_id)

        outcome = GenerationOutcome(stage_id=stage_id)
        if not stage.mandatory_activities:
            return outcome

        if self.policy == "once_per_stage":
            try:
                already_generated = self.store.has_generated_activities(lead_id, stage_id)
            except ActivityLookupError as exc:
                observe_activity_insert_failure(stage_id)
                logger.warning(
                    "mandatory_activities.lookup_failed",
                    extra={"lead_id": str(lead_id), "stage_id": stage_id, "error": str(exc)},
                )
                outcome.failures.extend(
                    GenerationFailure(template=template, error=str(exc)) for template in stage.mandatory_activities
                )
                return outcome
            if already_generated:
                outcome.skipped = True
                logger.info("mandatory_activities.skipped", extra={"lead_id": str(lead_id), "stage_id": stage_id})
                return outcome

        for template in stage.mandatory_activities:
            try:
                created = self.store.insert_activity(
                    {
                        "lead_id": lead_id,
                        "text": template.description,
                        "type": template.type,
                        "is_mandatory": True,
                        "auto_generated": True,
                        "is_completed": False,
                        "stage_id": stage_id,
                    }
                )
            except ActivityInsertError as exc:
                observe_activity_insert_failure(stage_id)
                logger.warning(
                    "mandatory_activity.insert_failed",
                    extra={
                        "lead_id": str(lead_id),
                        "stage_id": stage_id,
                        "activity_type": template.type,
                        "error": str(exc),
                    },
                )
                outcome.failures.append(GenerationFailure(template=template, error=str(exc)))
                continue
            outcome.created.append(created)

        observe_generated_activities(stage_id, len(outcome.created))
        logger.info(
            "mandatory_activities.generated",
            extra={
                "lead_id": str(lead_id),
                "stage_id": stage_id,
                "generated_count": len(outcome.created),
                "failed_count": len(outcome.failures),
            },
        )
        return outcome
