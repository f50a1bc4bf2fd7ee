"""HTTP middleware: request tracing, domain error translation, CORS.

Registration order in ``setup_middleware`` is inner-first; the request
tracer ends up outermost so that translated error responses still carry
the X-Request-ID header and show up in the access log.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from rehoming_escrow.domain.enums import ErrorKind
from rehoming_escrow.domain.exceptions import RehomingError

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.BLOCKED: 423,
    ErrorKind.UPSTREAM_FAILURE: 502,
}

_INTERNAL_ERROR_BODY = {
    "error": "INTERNAL_ERROR",
    "code": "INTERNAL_ERROR",
    "message": "An unexpected error occurred",
    "details": {},
}


def domain_error_response(exc: RehomingError) -> JSONResponse:
    """Render a domain exception as the public error envelope."""
    return JSONResponse(status_code=STATUS_BY_KIND.get(exc.kind, 400), content=exc.to_dict())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id, bind it for logging, and log the outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Translate RehomingError kinds into HTTP statuses; hide anything else behind a 500."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except RehomingError as exc:
            response = domain_error_response(exc)
            log = logger.error if response.status_code >= 500 else logger.warning
            log(
                "domain.error",
                kind=exc.kind.value,
                code=exc.code,
                error=exc.message,
                path=request.url.path,
            )
            return response
        except Exception:
            logger.exception("unhandled.error", path=request.url.path)
            return JSONResponse(status_code=500, content=_INTERNAL_ERROR_BODY)


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
