from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class GatewayTransientError(Exception):
    """Network/5xx failure; safe to retry and the outcome is unknown."""


class GatewayOrder(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: str | None = None
    status: str = "created"
    created_at: int | None = None


class GatewayRefund(BaseModel):
    id: str
    payment_id: str
    amount: int
    status: str = "processed"
    raw: dict[str, Any] = Field(default_factory=dict)


class PaymentGateway(ABC):
    """Upstream processor. Implementations raise GatewayTransientError for
    retryable failures and consultpay.core.exceptions.GatewayRejected for 4xx."""

    @property
    @abstractmethod
    def key_id(self) -> str:
        """Public key the checkout frontend needs."""
        ...

    @abstractmethod
    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict[str, str]
    ) -> GatewayOrder:
        ...

    @abstractmethod
    async def refund(self, payment_id: str, amount: int, notes: dict[str, str]) -> GatewayRefund:
        ...
