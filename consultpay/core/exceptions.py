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


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class InvalidOrderSpec(AppError):
    def __init__(self, message: str = "Invalid order", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_ORDER_SPEC", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class GatewayUnavailable(AppError):
    """Transient gateway failure or timeout. The outcome is unknown, not failed."""

    def __init__(self, message: str = "Payment gateway unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="GATEWAY_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


class GatewayRejected(AppError):
    def __init__(self, message: str = "Payment gateway rejected the request", details: dict[str, Any] | None = None):
        super().__init__(message, code="GATEWAY_REJECTED", status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class OrderNotFound(AppError):
    def __init__(self, message: str = "Payment order not found", details: dict[str, Any] | None = None):
        super().__init__(message, code="ORDER_NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND, details=details)


class InvalidSignature(AppError):
    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message, code="INVALID_SIGNATURE", status_code=status.HTTP_400_BAD_REQUEST)


class InvalidWebhookPayload(AppError):
    def __init__(self, message: str = "Invalid webhook payload"):
        super().__init__(message, code="INVALID_WEBHOOK_PAYLOAD", status_code=status.HTTP_400_BAD_REQUEST)


class InvalidTransition(AppError):
    def __init__(self, message: str = "Invalid status transition", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_TRANSITION", status_code=status.HTTP_409_CONFLICT, details=details)


class ExcessiveRefund(AppError):
    def __init__(self, message: str = "Refund exceeds refundable balance", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="EXCESSIVE_REFUND",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InvalidState(AppError):
    def __init__(self, message: str = "Order is not in a refundable state", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_STATE", status_code=status.HTTP_409_CONFLICT, details=details)


class InvalidAnalyticsWindow(AppError):
    def __init__(self, message: str = "Analytics window start must be before end"):
        super().__init__(message, code="INVALID_ANALYTICS_WINDOW", status_code=status.HTTP_400_BAD_REQUEST)


class NotImplementedAppError(AppError):
    def __init__(self, message: str = "Coming soon"):
        super().__init__(message, code="NOT_IMPLEMENTED", status_code=status.HTTP_501_NOT_IMPLEMENTED)


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
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from consultpay.core.logging import get_logger
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
