from __future__ import annotations

import uuid
from dataclasses import dataclass

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadflow.context import bind_request, unbind_request


ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class RequestContext:
    correlation_id: str
    user_id: str


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id and acting user for the rest of the request.

    Authentication is out of scope; the actor is taken as-is from ``x-user-id``.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        user_id = request.headers.get("x-user-id") or ANONYMOUS
        request.state.correlation_id = correlation_id
        request.state.context = RequestContext(correlation_id=correlation_id, user_id=user_id)

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
            span.set_attribute("enduser.id", user_id)

        bound = bind_request(correlation_id, user_id)
        try:
            response = await call_next(request)
        finally:
            unbind_request(bound)

        response.headers["x-correlation-id"] = correlation_id
        return response
