"""
Application errors and the JSON error envelope.

Every error response looks like
    {"error": {"code", "message", "request_id"}, "detail": message}
and carries an x-request-id header. Gate denials reach this module only after
the API layer has turned a GateDecision into UnentitledError/RateLimitError.
"""

import logging
from typing import Dict, Optional
from uuid import uuid4

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from tutorgate.core.logging import LOGGER_NAME, get_request_id

logger = logging.getLogger(LOGGER_NAME)

_HTTP_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    422: "validation_error",
}


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.request_id = request_id

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class InvalidTransitionError(AppError, ValueError):
    """The subscription cannot make the requested change from its current state."""
    code = "invalid_transition"
    status_code = 400


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401


class UnentitledError(AppError):
    code = "unentitled"
    status_code = 403


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    """Optimistic write lost every retry against concurrent updates."""
    code = "conflict"
    status_code = 409


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str, *, retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)} if self.retry_after else {}


class ProviderBusyError(AppError):
    code = "ai_busy"
    status_code = 429


class ProviderError(AppError):
    code = "ai_provider_error"
    status_code = 502


class ServiceUnavailableError(AppError):
    code = "service_unavailable"
    status_code = 503


class StoreFailureError(AppError):
    code = "store_unavailable"
    status_code = 503


def _request_id(request: Request, preferred: Optional[str] = None) -> str:
    return preferred or getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(rid: str, status_code: int, code: str, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "request_id": rid}, "detail": message},
        headers={"x-request-id": rid, **(headers or {})},
    )


async def app_error_handler(request: Request, exc: AppError):
    rid = _request_id(request, exc.request_id)
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"app.error: {exc.message}", extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code})
    return error_response(rid, exc.status_code, exc.code, exc.message, exc.headers())


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id(request)
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return error_response(rid, exc.status_code, code, str(exc.detail or "HTTP error"), getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error", "status": 500})
    return error_response(rid, 500, "internal_error", "Unexpected error")
