"""Shared FastAPI dependencies."""

from fastapi import Request

from consultpay.core.exceptions import AppError
from consultpay.runtime import PaymentCore


def get_payment_core(request: Request) -> PaymentCore:
    """Dependency: the PaymentCore opened at startup."""
    core = getattr(request.app.state, "payment_core", None)
    if core is None:
        raise AppError("Payment core not initialized", code="NOT_READY", status_code=503)
    return core
