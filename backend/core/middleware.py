"""HTTP middleware and the mapping from engine errors to responses.

Each request gets an ``X-Request-ID`` (the caller's, or a fresh uuid4).
The id and the calling organization are bound into structlog's
contextvars for the duration of the request, so anything a route
triggers (executions, dispatches, template lookups) logs with them.
"""

import time
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from core.exceptions import WorkflowEngineError

logger = structlog.get_logger(__name__)

# Probes hit these every few seconds
UNLOGGED_PREFIXES = ("/api/health", "/api/v1/health")

RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Cache-Control": "no-store",
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or ""


def _error_body(request: Request, detail: str, error: str = None) -> dict:
    body = {"detail": detail, "request_id": _request_id(request) or None}
    if error:
        body["error"] = error
    return body


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id, structlog context, timing and a last-resort 500."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        started = time.monotonic()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            organization_id=request.headers.get("X-Organization-Id"),
        ):
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.exception("Unhandled exception", method=request.method, path=request.url.path)
                detail = "Internal server error"
                if not get_settings().is_production:
                    detail = str(exc) or detail
                response = JSONResponse(status_code=500, content=_error_body(request, detail))

            elapsed_ms = (time.monotonic() - started) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"
            for name, value in RESPONSE_HEADERS.items():
                response.headers.setdefault(name, value)

            if not request.url.path.startswith(UNLOGGED_PREFIXES):
                emit = logger.warning if response.status_code >= 400 else logger.info
                emit(
                    "Request handled",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    elapsed_ms=round(elapsed_ms, 2),
                )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Map engine errors onto their HTTP status.

    NotFoundError is 404, ValidationError (and DefinitionError,
    InvalidScheduleSpec) 422, ConflictError 409. The body names the
    exception class in ``error`` so clients can branch on it.
    """

    @app.exception_handler(WorkflowEngineError)
    async def engine_error_handler(request: Request, exc: WorkflowEngineError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.message, type(exc).__name__),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content=_error_body(request, str(exc)))
