"""Payment domain types shared by services, stores and routers."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    CREATED = "CREATED"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


# Statuses an order can be in once funds were captured
CAPTURED_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
)
REFUNDABLE_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED})

TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.CREATED: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in TRANSITIONS[current]


def allowed_sources(target: PaymentStatus) -> frozenset[PaymentStatus]:
    """Statuses a conditional write to `target` may start from."""
    return frozenset(s for s in TRANSITIONS if can_transition(s, target))


def _new_id() -> str:
    return uuid.uuid4().hex


class CreateOrderSpec(BaseModel):
    amount: int  # minor units, e.g. paise
    consultant_id: str
    client_email: str
    client_name: str | None = None
    currency: str | None = None
    session_id: str | None = None
    quotation_id: str | None = None
    receipt: str | None = None
    notes: dict[str, str] = Field(default_factory=dict)
    idempotency_key: str | None = None


class PaymentOrder(BaseModel):
    id: str = Field(default_factory=_new_id)
    gateway_order_id: str
    amount: int
    currency: str
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

    @property
    def refundable_amount(self) -> int:
        return self.amount - self.refunded_amount

    @property
    def was_captured(self) -> bool:
        return self.status in CAPTURED_STATUSES


class PaymentVerification(BaseModel):
    gateway_order_id: str
    gateway_payment_id: str
    signature: str


class Refund(BaseModel):
    id: str = Field(default_factory=_new_id)
    order_id: str
    gateway_payment_id: str
    gateway_refund_id: str | None = None
    amount: int
    reason: str | None = None
    status: str = "processed"  # gateway refund status: pending | processed | failed
    resulting_order_status: PaymentStatus | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PaymentAnalytics(BaseModel):
    total_amount: int = 0
    net_amount: int = 0
    total_transactions: int = 0
    successful_payments: int = 0
    failed_payments: int = 0
    refunded_amount: int = 0
    average_transaction_value: float = 0.0
    success_rate: float = 0.0


class AuditEntry(BaseModel):
    event_type: str
    entity_type: str
    entity_id: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
