from datetime import datetime

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from consultpay.deps import get_payment_core
from consultpay.runtime import PaymentCore
from consultpay.schemas.payments import CreateOrderSpec, PaymentVerification

router = APIRouter()


class CreateOrderRequest(BaseModel):
    amount: int = Field(..., gt=0)  # minor units, e.g. 250000 for ₹2500
    consultant_id: str
    client_email: str
    client_name: str | None = None
    currency: str | None = None
    session_id: str | None = None
    quotation_id: str | None = None
    notes: dict[str, str] = Field(default_factory=dict)


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class FailedPaymentRequest(BaseModel):
    order_id: str  # gateway order id
    error_code: str | None = None
    error_description: str | None = None


class RefundRequest(BaseModel):
    payment_id: str  # gateway payment id
    amount: int | None = Field(default=None, gt=0)
    reason: str | None = None
    notes: dict[str, str] = Field(default_factory=dict)


def _order_out(order) -> dict:
    return order.model_dump(mode="json", exclude={"notes", "idempotency_key", "version"})


@router.post("/orders")
async def create_order(
    body: CreateOrderRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    core: PaymentCore = Depends(get_payment_core),
):
    """Create gateway order; frontend uses gateway_order_id and key_id for checkout."""
    order = await core.orders.create_order(
        CreateOrderSpec(**body.model_dump(), idempotency_key=(idempotency_key or "").strip() or None)
    )
    return {**_order_out(order), "key_id": core.gateway.key_id}


@router.post("/verify")
async def verify_payment(body: VerifyPaymentRequest, core: PaymentCore = Depends(get_payment_core)):
    """Checkout handler callback: verify signature and mark the order paid (idempotent)."""
    order = await core.state_machine.apply_verified_payment(
        PaymentVerification(
            gateway_order_id=body.razorpay_order_id,
            gateway_payment_id=body.razorpay_payment_id,
            signature=body.razorpay_signature,
        )
    )
    return _order_out(order)


@router.post("/failed")
async def payment_failed(body: FailedPaymentRequest, core: PaymentCore = Depends(get_payment_core)):
    order = await core.state_machine.apply_failed_payment(body.order_id, body.error_code, body.error_description)
    return _order_out(order)


@router.post("/refunds")
async def create_refund(body: RefundRequest, core: PaymentCore = Depends(get_payment_core)):
    """Full refund when amount is omitted, otherwise partial."""
    refund = await core.refunds.process_refund(body.payment_id, body.amount, body.reason, body.notes)
    return refund.model_dump(mode="json")


@router.get("/analytics")
async def payment_analytics(
    consultant_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    core: PaymentCore = Depends(get_payment_core),
):
    analytics = await core.analytics.get_payment_analytics(consultant_id, start, end)
    return analytics.model_dump()


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(..., alias="X-Razorpay-Signature"),
    x_razorpay_event_id: str | None = Header(default=None, alias="X-Razorpay-Event-Id"),
    core: PaymentCore = Depends(get_payment_core),
):
    """Razorpay webhook: raw body is verified before parsing; redeliveries are no-ops."""
    body = await request.body()
    result = await core.webhooks.handle(body, x_razorpay_signature, x_razorpay_event_id)
    return {"status": "ok", **result.model_dump()}
