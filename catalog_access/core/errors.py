# catalog_access/core/errors.py
"""
Error taxonomy for the access-control API.

Every error raised by services is an ``AppError`` (a FastAPI
``HTTPException``), so routers never translate errors by hand. The
handlers registered in ``register_exception_handlers`` normalize the
response body to:

    {"error": true, "message": "...", ...extra}

Clients rely on the extra keys (``requiresToken``, ``retryAfter``) to pick
the right remediation: request a new link vs. log back in as the bound
user.
"""
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(
            status_code=self.status_code,
            detail=self.message,
            headers=headers,
        )


class ValidationError(AppError):
    """Malformed email/phone or missing fields."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation error"


class Unauthenticated(AppError):
    """No session and no matching device binding."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"

    def __init__(self, message: str | None = None, *, requires_token: bool = True, **extra: Any):
        if requires_token:
            extra["requiresToken"] = True
        super().__init__(message, **extra)


class InvalidAccessToken(AppError):
    """The presented access token string does not exist."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired access link"

    def __init__(self, message: str | None = None, **extra: Any):
        super().__init__(message, requiresToken=True, **extra)


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class DeviceMismatch(AppError):
    """A bound token or session was presented from another IP/device."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = (
        "Access denied. This link can only be used from the original "
        "device and location."
    )

    def __init__(self, message: str | None = None, **extra: Any):
        super().__init__(message, deviceMismatch=True, **extra)


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many attempts. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        super().__init__(
            message,
            headers={"Retry-After": str(retry_after)},
            retryAfter=retry_after,
        )


class EmailDeliveryFailed(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to send access link email"


def _error_body(message: str, **extra: Any) -> dict[str, Any]:
    return {"error": True, "message": message, **extra}


def register_exception_handlers(app: FastAPI, *, production: bool) -> None:
    """Attach the JSON error handlers to ``app``."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, **exc.extra),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=jsonable_encoder(_error_body("Validation error", details=details)),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = "Something went wrong" if production else f"Internal server error: {exc}"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(message),
        )
