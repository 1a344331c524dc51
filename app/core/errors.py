"""
Domain error taxonomy.

Services raise these; ``register_error_handlers`` maps them onto HTTP
responses shaped as ``{"kind": ..., "detail": ...}``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 400
    kind = "domain_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(DomainError):
    status_code = 404
    kind = "not_found"


class Forbidden(DomainError):
    status_code = 403
    kind = "forbidden"


class Conflict(DomainError):
    status_code = 409
    kind = "conflict"


class BadRequest(DomainError):
    status_code = 400
    kind = "bad_request"


class Unavailable(DomainError):
    status_code = 503
    kind = "unavailable"


async def _domain_error_handler(request: Request, exc: DomainError):
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"kind": exc.kind, "detail": exc.detail},
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    reason = first.get("msg", "invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "kind": BadRequest.kind,
            "detail": f"{loc}: {reason}" if loc else reason,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
