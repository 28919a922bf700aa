"""Domain error taxonomy and its HTTP rendering.

Services raise these; routers let them propagate and the handler registered
in main.py turns them into `{"detail": {"error": <code>, "message": ...}}`.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("fridgemate.errors")


class DomainError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class NotFound(DomainError):
    code = "not_found"
    status_code = 404


class Forbidden(DomainError):
    code = "forbidden"
    status_code = 403


class ValidationFailed(DomainError):
    code = "validation"
    status_code = 400


class UnitMismatch(ValidationFailed):
    code = "unit_mismatch"


class Conflict(DomainError):
    code = "conflict"
    status_code = 409


class InsufficientStock(Conflict):
    code = "insufficient_stock"


class Internal(DomainError):
    code = "internal"
    status_code = 500


class GatewayError(DomainError):
    """Base for compute gateway failures. Never retried by the gateway itself."""
    code = "gateway_failure"
    status_code = 502


class GatewayTimeout(GatewayError):
    code = "gateway_timeout"
    status_code = 504


class GatewayFailure(GatewayError):
    code = "gateway_failure"
    status_code = 502


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"error": exc.code, "message": exc.message}},
    )
