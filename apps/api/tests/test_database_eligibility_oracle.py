from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.core.database import Base
from leadflow.pipeline.eligibility import DatabaseEligibilityOracle
from leadflow.pipeline.errors import LeadUpdateError
from leadflow.pipeline.generator import MandatoryActivityGenerator
from leadflow.pipeline.models import Activity, Contact, Lead, PipelineStage
from leadflow.pipeline.schemas import ActivityRead, LeadRead
from leadflow.pipeline.store import SqlPipelineStore
from leadflow.pipeline.transitions import UNVERIFIED_MESSAGE, StageTransitionEngine


LOCKED_REASON = "Mandatory activities pending"


class AbortingStore(SqlPipelineStore):
    """Fails the activity read the way Postgres does: the transaction stays
    unusable until it is rolled back."""

    def __init__(self, session: Session):
        super().__init__(session)
        self.aborted = False

    def list_activities(self, lead_id: uuid.UUID) -> list[ActivityRead]:
        self.session.execute(select(Activity.id).where(Activity.lead_id == lead_id))
        self.aborted = True
        raise OperationalError("SELECT activity.id FROM activity", {}, Exception("server closed the connection"))

    def rollback(self) -> None:
        self.aborted = False
        super().rollback()

    def update_lead(self, lead_id: uuid.UUID, fields: dict[str, Any], expected_row_version: int) -> LeadRead:
        if self.aborted:
            raise LeadUpdateError("current transaction is aborted")
        return super().update_lead(lead_id, fields, expected_row_version)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def lead_id(db_session: Session) -> uuid.UUID:
    db_session.add_all(
        [
            PipelineStage(
                id="qualify",
                name="Qualify",
                order_index=0,
                mandatory_activities=[{"type": "call", "description": "Qualification call"}],
            ),
            PipelineStage(
                id="quote",
                name="Quote",
                order_index=1,
                mandatory_activities=[{"type": "email", "description": "Send quote"}],
            ),
        ]
    )
    contact = Contact(name="Edsger Dijkstra", email="ewd@example.com", phone="+31 20 555")
    db_session.add(contact)
    db_session.flush()
    lead = Lead(lead_number=1, contact_id=contact.id, product="Heat pump", notes_internal=[], current_stage="qualify")
    db_session.add(lead)
    db_session.commit()
    return lead.id


def _engine(store: SqlPipelineStore) -> StageTransitionEngine:
    return StageTransitionEngine(
        store,
        DatabaseEligibilityOracle(store),
        MandatoryActivityGenerator(store),
        locked_reason=LOCKED_REASON,
    )


def test_pending_checklist_blocks_and_completed_checklist_allows(db_session: Session, lead_id: uuid.UUID) -> None:
    store = SqlPipelineStore(db_session)
    oracle = DatabaseEligibilityOracle(store)

    assert oracle.can_advance(lead_id, "quote") is False

    db_session.add(
        Activity(
            lead_id=lead_id,
            text="Qualification call",
            type="call",
            is_mandatory=True,
            auto_generated=True,
            is_completed=True,
            completed_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
            stage_id="qualify",
        )
    )
    db_session.commit()

    assert oracle.can_advance(lead_id, "quote") is True


def test_failed_lookup_rolls_back_so_the_locked_move_is_written(db_session: Session, lead_id: uuid.UUID) -> None:
    store = AbortingStore(db_session)
    lead = store.get_lead(lead_id)

    result = _engine(store).request_transition(lead, "quote")

    assert result.eligibility == "unverified"
    assert "server closed the connection" in (result.oracle_error or "")
    assert result.lead.current_stage == "quote"
    assert result.lead.is_locked is True
    assert result.lead.stage_locked_reason == LOCKED_REASON
    assert [item.text for item in result.generated_activities] == ["Send quote"]
    assert result.user_message == UNVERIFIED_MESSAGE

    persisted = db_session.scalar(select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True))
    assert persisted is not None
    assert persisted.current_stage == "quote"
    assert persisted.is_locked is True
