from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from consultpay.schemas.payments import PaymentStatus


class PaymentOrderDocument(Document):
    """Gateway order -> consultant/session/quotation, plus lifecycle status."""
    order_id: Indexed(str, unique=True)
    gateway_order_id: Indexed(str, unique=True)
    amount: int  # minor units
    currency: str = "INR"
    consultant_id: str
    client_email: str
    client_name: str | None = None
    session_id: str | None = None
    quotation_id: str | None = None
    receipt: str | None = None
    notes: dict[str, str] = Field(default_factory=dict)
    idempotency_key: str | None = None
    status: PaymentStatus = PaymentStatus.CREATED
    gateway_payment_id: str | None = None
    payment_method: str | None = None
    failure_code: str | None = None
    failure_reason: str | None = None
    refunded_amount: int = 0
    effects_synced: bool = False
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    paid_at: datetime | None = None
    failed_at: datetime | None = None

    class Settings:
        name = "payment_orders"
        indexes = [
            IndexModel([("gateway_payment_id", ASCENDING)], sparse=True),
            IndexModel([("idempotency_key", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("consultant_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("status", ASCENDING), ("effects_synced", ASCENDING)]),
        ]
