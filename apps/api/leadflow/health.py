from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.pipeline.models import PipelineStage


logger = logging.getLogger("leadflow.lifecycle")


@dataclass
class HealthReport:
    database_ok: bool = False
    stage_count: int = 0
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def run_startup_health_check(session: Session) -> HealthReport:
    """One-shot configuration probe run at startup. Logs, never raises."""
    report = HealthReport()
    try:
        session.execute(text("SELECT 1"))
        report.database_ok = True
        report.stage_count = session.scalar(select(func.count()).select_from(PipelineStage)) or 0
    except SQLAlchemyError as exc:
        report.problems.append("database unreachable")
        logger.error("startup.health_check", extra={"check": "database", "status": "failed", "error": str(exc)})
        return report

    if report.stage_count == 0:
        report.problems.append("no pipeline stages configured")
        logger.warning("startup.health_check", extra={"check": "stages", "status": "missing"})

    if report.ok:
        logger.info("startup.health_check", extra={"check": "all", "status": "ok"})
    return report
