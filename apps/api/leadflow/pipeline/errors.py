from __future__ import annotations


class PipelineError(Exception):
    """Base error for pipeline domain failures."""


class UnknownStageError(PipelineError):
    def __init__(self, stage_id: str) -> None:
        self.stage_id = stage_id
        super().__init__(f"Unknown pipeline stage '{stage_id}'")


class LeadNotFoundError(PipelineError):
    def __init__(self, lead_id: object) -> None:
        self.lead_id = lead_id
        super().__init__(f"Lead '{lead_id}' not found")


class LeadUpdateError(PipelineError):
    """Raised when the lead write of a transition could not be persisted."""


class StaleLeadError(LeadUpdateError):
    """Raised when the lead changed since the caller's snapshot was taken."""

    def __init__(self, lead_id: object, expected_row_version: int) -> None:
        self.lead_id = lead_id
        self.expected_row_version = expected_row_version
        super().__init__(f"Lead '{lead_id}' is no longer at row_version {expected_row_version}")


class ActivityInsertError(PipelineError):
    """Raised by a store when a single activity insert fails."""


class ActivityLookupError(PipelineError):
    """Raised by a store when a lead's existing activities cannot be read."""
