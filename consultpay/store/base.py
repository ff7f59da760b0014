from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable

from consultpay.schemas.payments import AuditEntry, PaymentOrder, PaymentStatus, Refund


class PaymentStore(ABC):
    """Persistence for orders, refunds, webhook dedup and the audit trail.

    Every status write goes through `transition`, which must be atomic: it
    applies only when the stored status is one of `from_statuses` (and the
    version matches, when given) and returns None otherwise.
    """

    async def open(self) -> None:
        """Connect; called once at process start."""

    async def close(self) -> None:
        """Release connections; called once at shutdown."""

    @abstractmethod
    async def insert_order(self, order: PaymentOrder) -> PaymentOrder:
        ...

    @abstractmethod
    async def get_order(self, order_id: str) -> PaymentOrder | None:
        ...

    @abstractmethod
    async def get_order_by_gateway_order_id(self, gateway_order_id: str) -> PaymentOrder | None:
        ...

    @abstractmethod
    async def get_order_by_gateway_payment_id(self, gateway_payment_id: str) -> PaymentOrder | None:
        ...

    @abstractmethod
    async def find_live_order_by_idempotency_key(self, key: str, since: datetime) -> PaymentOrder | None:
        """Most recent non-FAILED order with this key created at or after `since`."""
        ...

    @abstractmethod
    async def transition(
        self,
        order_id: str,
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        expected_version: int | None = None,
        **fields: Any,
    ) -> PaymentOrder | None:
        ...

    @abstractmethod
    async def update_order_fields(self, order_id: str, **fields: Any) -> PaymentOrder | None:
        """Non-status bookkeeping (e.g. effects_synced)."""
        ...

    @abstractmethod
    async def list_orders(self, consultant_id: str, start: datetime, end: datetime) -> list[PaymentOrder]:
        """Orders with start <= created_at < end."""
        ...

    @abstractmethod
    async def sum_paid_amount(self, consultant_id: str, since: datetime) -> int:
        ...

    @abstractmethod
    async def list_unsynced_captured_orders(self, older_than: datetime, limit: int) -> list[PaymentOrder]:
        ...

    @abstractmethod
    async def insert_refund(self, refund: Refund) -> Refund:
        ...

    @abstractmethod
    async def get_refund_by_gateway_id(self, gateway_refund_id: str) -> Refund | None:
        ...

    @abstractmethod
    async def update_refund(self, refund_id: str, **fields: Any) -> Refund | None:
        ...

    @abstractmethod
    async def list_refunds(self, order_id: str) -> list[Refund]:
        ...

    @abstractmethod
    async def claim_webhook_event(self, event_id: str, event_type: str) -> bool:
        """Insert-if-absent. True if this caller claimed the event id."""
        ...

    @abstractmethod
    async def release_webhook_event(self, event_id: str) -> None:
        ...

    @abstractmethod
    async def record_audit(self, entry: AuditEntry) -> None:
        ...

    @abstractmethod
    async def record_failed_job(
        self, job_name: str, job_id: str, args: list[Any], kwargs: dict[str, Any], reason: str, attempts: int,
        order_id: str | None = None,
    ) -> None:
        ...
