from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.context import reset_correlation_id, set_correlation_id
from leadflow.core.config import get_settings
from leadflow.core.database import Base, get_db
from leadflow.logging import JsonLogFormatter
from leadflow.main import app


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


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_lead(client: TestClient, correlation_id: str) -> dict:
    headers = {"X-Correlation-Id": correlation_id}
    client.post("/api/stages", json={"id": "new", "name": "New", "order_index": 0}, headers=headers)
    client.post(
        "/api/stages",
        json={
            "id": "visit",
            "name": "Visit",
            "order_index": 1,
            "mandatory_activities": [{"type": "visit", "description": "Visit the site"}],
        },
        headers=headers,
    )
    contact = client.post(
        "/api/contacts",
        json={"name": "Log Contact", "email": "log@example.com", "phone": "+1 555 0102"},
        headers=headers,
    )
    lead = client.post("/api/leads", json={"contact_id": contact.json()["id"], "product": "Log"}, headers=headers)
    assert lead.status_code == 201
    return lead.json()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    lead_id = uuid.uuid4()
    response = client.get(f"/api/leads/{lead_id}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record
        for record in caplog.records
        if record.name == "leadflow.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_transition_logs_carry_lead_and_stage_context(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    lead = _create_lead(client, "abc-456")

    response = client.post(
        f"/api/leads/{lead['id']}/transition",
        json={"target_stage_id": "visit", "row_version": lead["row_version"]},
        headers={"X-Correlation-Id": "abc-456"},
    )
    assert response.status_code == 200

    transition_records = [record for record in caplog.records if record.name == "leadflow.pipeline.transitions"]
    assert any(
        record.getMessage() == "stage_transition.applied"
        and getattr(record, "lead_id", None) == lead["id"]
        and getattr(record, "stage_id", None) == "new"
        and getattr(record, "target_stage_id", None) == "visit"
        and getattr(record, "eligibility", None) == "eligible"
        and getattr(record, "generated_count", None) == 1
        and getattr(record, "correlation_id", None) == "abc-456"
        for record in transition_records
    )

    generator_records = [record for record in caplog.records if record.name == "leadflow.pipeline.generator"]
    assert any(record.getMessage() == "mandatory_activities.generated" for record in generator_records)


def test_json_formatter_keeps_known_fields_only() -> None:
    token = set_correlation_id("fmt-1")
    try:
        record = logging.getLogger("leadflow.pipeline.transitions").makeRecord(
            "leadflow.pipeline.transitions",
            logging.WARNING,
            __file__,
            1,
            "stage_transition.eligibility_unverified",
            (),
            None,
            extra={"lead_id": "lead-1", "target_stage_id": "won", "error": "timeout", "secret": "x"},
        )
        payload = json.loads(JsonLogFormatter().format(record))
    finally:
        reset_correlation_id(token)

    assert payload["msg"] == "stage_transition.eligibility_unverified"
    assert payload["level"] == "WARNING"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"]["lead_id"] == "lead-1"
    assert payload["fields"]["target_stage_id"] == "won"
    assert payload["fields"]["error"] == "timeout"
    assert "secret" not in payload["fields"]
