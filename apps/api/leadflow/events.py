"""Domain event envelopes published on the in-process bus."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from leadflow.context import get_correlation_id
from leadflow.core.events import event_bus

ENVELOPE_VERSION = 1
SOURCE = "leadflow-api"

published_events: list[dict[str, Any]] = []


def build_envelope(event_type: str, actor_user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "source": SOURCE,
        "version": ENVELOPE_VERSION,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        # Every pipeline event hangs off a lead.
        "lead_id": payload.get("lead_id"),
        "correlation_id": get_correlation_id(),
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> None:
    if not envelope.get("correlation_id"):
        envelope["correlation_id"] = get_correlation_id()
    published_events.append(envelope)
    event_bus.publish(envelope["event_type"], envelope)
