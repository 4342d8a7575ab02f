from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidPackageError(BadRequestError):
    def __init__(self, package_id: str):
        super().__init__(f"Unknown balance package: {package_id}", details={"package_id": package_id})
        self.code = "INVALID_PACKAGE"


class InvalidAmountError(BadRequestError):
    def __init__(self, message: str = "Invalid amount", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)
        self.code = "INVALID_AMOUNT"


class InsufficientBalanceError(AppError):
    def __init__(self, message: str = "Insufficient balance", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="INSUFFICIENT_BALANCE",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )


class WebhookSignatureError(AppError):
    """Webhook payload failed authentication; the body must not be trusted."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message, code="INVALID_SIGNATURE", status_code=status.HTTP_403_FORBIDDEN)


class PaymentProviderUnavailableError(AppError):
    def __init__(self, message: str = "Payment provider unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="PAYMENT_PROVIDER_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


class StorageUnavailableError(AppError):
    def __init__(self, message: str = "Balance store unavailable"):
        super().__init__(message, code="STORAGE_UNAVAILABLE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg", "")} for e in exc.errors()]},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
