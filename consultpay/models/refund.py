from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field
from pymongo import ASCENDING, IndexModel

from consultpay.schemas.payments import PaymentStatus


class RefundDocument(Document):
    refund_id: Indexed(str, unique=True)
    order_id: str
    gateway_payment_id: str
    gateway_refund_id: str | None = None
    amount: int
    reason: str | None = None
    status: str = "processed"
    resulting_order_status: PaymentStatus | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "refunds"
        indexes = [
            [("order_id", 1), ("created_at", 1)],
            IndexModel(
                [("gateway_refund_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"gateway_refund_id": {"$type": "string"}},
            ),
        ]
