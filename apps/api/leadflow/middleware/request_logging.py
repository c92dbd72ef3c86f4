from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadflow.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("leadflow.request")


def _request_fields(request: Request, status_code: int, started: float) -> dict[str, object]:
    fields: dict[str, object] = {
        "method": request.method,
        "path": resolve_http_path_label(request),
        "status_code": status_code,
        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
    }
    # Routing has filled path_params by the time the response comes back.
    lead_id = request.path_params.get("lead_id")
    if lead_id is not None:
        fields["lead_id"] = str(lead_id)
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = _request_fields(request, 500, started)
            observe_http_request(str(fields["method"]), str(fields["path"]), 500, float(fields["duration_ms"]) / 1000)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        fields = _request_fields(request, response.status_code, started)
        observe_http_request(
            str(fields["method"]),
            str(fields["path"]),
            response.status_code,
            float(fields["duration_ms"]) / 1000,
        )
        log = logger.warning if response.status_code >= 500 else logger.info
        log("http.request", extra=fields)
        return response
