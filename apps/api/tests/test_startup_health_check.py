from __future__ import annotations

import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.core.config import get_settings
from leadflow.core.database import Base, get_db
from leadflow.health import run_startup_health_check
from leadflow.main import app
from leadflow.pipeline.models import PipelineStage


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


def test_empty_pipeline_is_reported(db_session: Session) -> None:
    report = run_startup_health_check(db_session)

    assert report.database_ok is True
    assert report.stage_count == 0
    assert report.ok is False
    assert report.problems == ["no pipeline stages configured"]


def test_configured_pipeline_passes(db_session: Session) -> None:
    db_session.add(PipelineStage(id="new", name="New", order_index=0, mandatory_activities=[]))
    db_session.commit()

    report = run_startup_health_check(db_session)

    assert report.ok is True
    assert report.stage_count == 1


def test_unreachable_database_is_reported_without_raising() -> None:
    engine = create_engine("sqlite+pysqlite:////nonexistent-dir/leadflow.db")
    session = sessionmaker(bind=engine)()
    try:
        report = run_startup_health_check(session)
    finally:
        session.close()

    assert report.database_ok is False
    assert report.problems == ["database unreachable"]


def test_health_check_runs_on_startup(db_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app):
            pass
    finally:
        app.dependency_overrides.clear()

    records = [record for record in caplog.records if record.name == "leadflow.lifecycle"]
    assert any(
        record.getMessage() == "startup.health_check"
        and getattr(record, "check", None) == "stages"
        and getattr(record, "status", None) == "missing"
        for record in records
    )
