"""Process-local store for development and tests. Not shared across workers."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Iterable

from consultpay.core.config import Settings
from consultpay.schemas.payments import (
    CAPTURED_STATUSES,
    AuditEntry,
    PaymentOrder,
    PaymentStatus,
    Refund,
)
from consultpay.store.base import PaymentStore


class InMemoryPaymentStore(PaymentStore):
    def __init__(self, settings: Settings) -> None:
        self._dedup_ttl = timedelta(seconds=settings.webhook_dedup_ttl_seconds)
        self._lock = asyncio.Lock()
        self._orders: dict[str, PaymentOrder] = {}
        self._refunds: dict[str, Refund] = {}
        self._events: dict[str, tuple[str, datetime]] = {}
        self.audit: list[AuditEntry] = []
        self.failed_jobs: list[dict[str, Any]] = []

    async def insert_order(self, order: PaymentOrder) -> PaymentOrder:
        async with self._lock:
            if order.id in self._orders:
                raise ValueError(f"Duplicate order id {order.id}")
            self._orders[order.id] = order.model_copy(deep=True)
        return order.model_copy(deep=True)

    async def get_order(self, order_id: str) -> PaymentOrder | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def get_order_by_gateway_order_id(self, gateway_order_id: str) -> PaymentOrder | None:
        for order in self._orders.values():
            if order.gateway_order_id == gateway_order_id:
                return order.model_copy(deep=True)
        return None

    async def get_order_by_gateway_payment_id(self, gateway_payment_id: str) -> PaymentOrder | None:
        for order in self._orders.values():
            if order.gateway_payment_id == gateway_payment_id:
                return order.model_copy(deep=True)
        return None

    async def find_live_order_by_idempotency_key(self, key: str, since: datetime) -> PaymentOrder | None:
        matches = [
            o for o in self._orders.values()
            if o.idempotency_key == key and o.created_at >= since and o.status != PaymentStatus.FAILED
        ]
        if not matches:
            return None
        return max(matches, key=lambda o: o.created_at).model_copy(deep=True)

    async def transition(
        self,
        order_id: str,
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        expected_version: int | None = None,
        **fields: Any,
    ) -> PaymentOrder | None:
        allowed = set(from_statuses)
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None or current.status not in allowed:
                return None
            if expected_version is not None and current.version != expected_version:
                return None
            updated = current.model_copy(
                update={
                    **fields,
                    "status": to_status,
                    "version": current.version + 1,
                    "updated_at": datetime.utcnow(),
                },
                deep=True,
            )
            self._orders[order_id] = updated
        return updated.model_copy(deep=True)

    async def update_order_fields(self, order_id: str, **fields: Any) -> PaymentOrder | None:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                return None
            updated = current.model_copy(update={**fields, "updated_at": datetime.utcnow()}, deep=True)
            self._orders[order_id] = updated
        return updated.model_copy(deep=True)

    async def list_orders(self, consultant_id: str, start: datetime, end: datetime) -> list[PaymentOrder]:
        async with self._lock:
            return [
                o.model_copy(deep=True)
                for o in self._orders.values()
                if o.consultant_id == consultant_id and start <= o.created_at < end
            ]

    async def sum_paid_amount(self, consultant_id: str, since: datetime) -> int:
        return sum(
            o.amount
            for o in self._orders.values()
            if o.consultant_id == consultant_id and o.status in CAPTURED_STATUSES and o.created_at >= since
        )

    async def list_unsynced_captured_orders(self, older_than: datetime, limit: int) -> list[PaymentOrder]:
        out = [
            o.model_copy(deep=True)
            for o in self._orders.values()
            if o.status in CAPTURED_STATUSES and not o.effects_synced and o.updated_at <= older_than
        ]
        return out[:limit]

    async def insert_refund(self, refund: Refund) -> Refund:
        async with self._lock:
            if refund.gateway_refund_id and any(
                r.gateway_refund_id == refund.gateway_refund_id for r in self._refunds.values()
            ):
                raise ValueError(f"Duplicate gateway refund id {refund.gateway_refund_id}")
            self._refunds[refund.id] = refund.model_copy(deep=True)
        return refund.model_copy(deep=True)

    async def get_refund_by_gateway_id(self, gateway_refund_id: str) -> Refund | None:
        for refund in self._refunds.values():
            if refund.gateway_refund_id == gateway_refund_id:
                return refund.model_copy(deep=True)
        return None

    async def update_refund(self, refund_id: str, **fields: Any) -> Refund | None:
        async with self._lock:
            current = self._refunds.get(refund_id)
            if current is None:
                return None
            updated = current.model_copy(update={**fields, "updated_at": datetime.utcnow()}, deep=True)
            self._refunds[refund_id] = updated
        return updated.model_copy(deep=True)

    async def list_refunds(self, order_id: str) -> list[Refund]:
        return sorted(
            (r.model_copy(deep=True) for r in self._refunds.values() if r.order_id == order_id),
            key=lambda r: r.created_at,
        )

    async def claim_webhook_event(self, event_id: str, event_type: str) -> bool:
        now = datetime.utcnow()
        async with self._lock:
            expired = [k for k, (_, at) in self._events.items() if now - at >= self._dedup_ttl]
            for k in expired:
                del self._events[k]
            if event_id in self._events:
                return False
            self._events[event_id] = (event_type, now)
            return True

    async def release_webhook_event(self, event_id: str) -> None:
        async with self._lock:
            self._events.pop(event_id, None)

    async def record_audit(self, entry: AuditEntry) -> None:
        self.audit.append(entry)

    async def record_failed_job(
        self, job_name: str, job_id: str, args: list[Any], kwargs: dict[str, Any], reason: str, attempts: int,
        order_id: str | None = None,
    ) -> None:
        self.failed_jobs.append(
            {
                "job_name": job_name,
                "job_id": job_id,
                "args": args,
                "kwargs": kwargs,
                "reason": reason,
                "attempts": attempts,
                "order_id": order_id,
            }
        )
