"""FastAPI middleware for per-request logging context."""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging import bind_turn_context, get_logger, request_id_var

logger = get_logger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and clears turn identity left by a previous request.

    The chat endpoint binds conversation, patient and role once the turn has
    been validated.  For streamed responses ``duration_ms`` covers the time to
    first byte, not the whole stream.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request_id_var.set(request_id)
        bind_turn_context(None, None, None)
        started = time.perf_counter()

        response = await call_next(request)

        response.headers["x-request-id"] = request_id
        logger.debug(
            "request_finished",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return response
