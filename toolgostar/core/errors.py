from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolgostar.context import get_correlation_id


logger = logging.getLogger("toolgostar.errors")


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        self.headers = headers or {}
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"
    message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls(details=[{"field": field, "message": message}])


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"
    message = "Authentication required"


class ExpiredCredential(AuthenticationError):
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class InvalidSignature(AuthenticationError):
    code = "INVALID_TOKEN"
    message = "Invalid token signature"


class MalformedCredential(AuthenticationError):
    code = "MALFORMED_TOKEN"
    message = "Malformed token"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "Insufficient permissions"


class RateLimitExceeded(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests"

    def __init__(self, tier: str, retry_after_seconds: int, message: str | None = None) -> None:
        self.tier = tier
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            message,
            details={"tier": tier, "retry_after_seconds": retry_after_seconds},
            headers={"Retry-After": str(retry_after_seconds)},
        )


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Conflicting update"


class InvalidTransition(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"
    message = "Invalid status transition"

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            f"{entity} cannot move from '{current}' to '{target}'",
            details={"current_status": current, "target_status": target},
        )


class ServiceUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"
    message = "Server is shutting down"


class InternalError(AppError):
    pass


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None

    def as_content(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {"code": self.code, "message": self.message, "details": self.details},
            "correlation_id": self.correlation_id,
        }


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(code=code, message=message, details=details, correlation_id=correlation_id)
    response = JSONResponse(status_code=status_code, content=payload.as_content(), headers=headers)
    if correlation_id:
        response.headers["x-correlation-id"] = correlation_id
    return response


def _field_path(loc: tuple[Any, ...] | list[Any]) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] in {"body", "query", "path", "header"}:
        parts = parts[1:]
    return ".".join(parts) or "request"


def validation_details(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    return [{"field": _field_path(error.get("loc", ())), "message": str(error.get("msg", "invalid value"))} for error in errors]


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("http.internal_error", exc_info=exc, extra={"error_code": exc.code, "path": request.url.path})
        return error_response(request, status_code=exc.status_code, code="INTERNAL_ERROR", message="Internal server error")
    logger.info(
        "http.client_error",
        extra={"error_code": exc.code, "status_code": exc.status_code, "path": request.url.path},
    )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
        headers=exc.headers,
    )


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code=ValidationError.code,
        message=ValidationError.message,
        details=validation_details(list(exc.errors())),
    )


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = {
        status.HTTP_404_NOT_FOUND: "NOT_FOUND",
        status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    }.get(exc.status_code, "HTTP_ERROR")
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "http.unhandled_error",
        exc_info=exc,
        extra={"method": request.method, "path": request.url.path, "error": str(exc)},
    )
    return error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, handle_app_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected_error)
