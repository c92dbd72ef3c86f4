from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from leadflow.core.config import get_settings
from leadflow.metrics import generate_metrics_payload, metrics_content_type
from leadflow.pipeline.api import (
    activities_router,
    contacts_router,
    leads_router,
    messages_router,
    stages_router,
)

router = APIRouter()
for pipeline_router in (stages_router, contacts_router, leads_router, activities_router, messages_router):
    router.include_router(pipeline_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
