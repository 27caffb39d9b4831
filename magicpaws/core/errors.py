"""Error normalization and handlers.

Every error leaves the API in the same envelope:
{"error": {"code", "message", "request_id", "fields"?}, "detail": message}
"""

import logging
import builtins
from typing import List, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from magicpaws.core.logging import LOGGER_NAME, get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class UnauthenticatedError(AppError):
    code = "unauthenticated"
    status_code = 401


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, fields: Optional[List[dict]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.fields = fields or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, fields=[{"field": field, "message": message}])


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class UpstreamError(AppError):
    """A provider (identity, commerce, email) failed or timed out.

    The message shown to callers is generic; provider detail stays in logs.
    """
    code = "upstream_failure"
    status_code = 502
    public_message = "Upstream service failure"

    def __init__(self, message: str, *, provider: Optional[str] = None, transient: bool = False, **kwargs):
        if transient and "status_code" not in kwargs:
            kwargs["status_code"] = 504
        super().__init__(message, **kwargs)
        self.provider = provider
        self.transient = transient


class ServiceUnavailableError(UpstreamError):
    code = "service_unavailable"
    status_code = 503
    public_message = "Service not configured"


logger = logging.getLogger(LOGGER_NAME)

_HTTP_CODES = {401: "unauthenticated", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}
_LOCATION_PARTS = {"body", "query", "path", "header"}


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or uuid4().hex


def _error_response(status_code: int, code: str, message: str, rid: str, fields: Optional[List[dict]] = None) -> JSONResponse:
    error = {"code": code, "message": message, "request_id": rid}
    if fields:
        error["fields"] = fields
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": message},
        headers={"x-request-id": rid},
    )


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    public = exc.message
    extra = {"error_code": exc.code, "error_message": exc.message, "status": exc.status_code}
    if isinstance(exc, UpstreamError):
        public = exc.public_message
        extra.update(provider=exc.provider, transient=exc.transient)
    logger.log(logging.ERROR if exc.status_code >= 500 else logging.WARNING, "app.error", extra=extra)
    return _error_response(exc.status_code, exc.code, public, rid, getattr(exc, "fields", None))


async def http_error_handler(request: Request, exc: HTTPException):
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"error_code": code, "status": exc.status_code})
    return _error_response(exc.status_code, code, exc.detail or "HTTP error", _request_id_for(request))


def validation_fields(exc: RequestValidationError) -> List[dict]:
    """Flatten pydantic errors to [{"field": "a.b", "message": ...}] without the location prefix."""
    fields = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err.get("loc", ()) if part not in _LOCATION_PARTS)
        fields.append({"field": path or "body", "message": err.get("msg", "invalid")})
    return fields


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = validation_fields(exc)
    logger.warning("validation.error", extra={"error_code": "validation_error", "fields": fields})
    return _error_response(400, "validation_error", "Invalid request", _request_id_for(request), fields)


async def unhandled_exception_handler(request: Request, exc: Exception):
    # Runs outside RequestIdMiddleware, so the context var is already reset
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return _error_response(500, "internal_error", "Unexpected error", rid)
