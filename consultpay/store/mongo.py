"""MongoDB store (beanie + motor). Conditional updates use find_one_and_update."""

from datetime import datetime
from typing import Any, Iterable

from beanie import UpdateResponse
from beanie.operators import In, Inc, Set
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError

from consultpay.core.config import Settings
from consultpay.core.logging import get_logger
from consultpay.models.audit_log import PaymentAuditLog
from consultpay.models.failed_job import DeadLetterJob
from consultpay.models.payment_order import PaymentOrderDocument
from consultpay.models.refund import RefundDocument
from consultpay.models.webhook_event import ProcessedWebhookEvent
from consultpay.schemas.payments import (
    CAPTURED_STATUSES,
    AuditEntry,
    PaymentOrder,
    PaymentStatus,
    Refund,
)
from consultpay.store.base import PaymentStore

log = get_logger(__name__)

_DOC_ONLY_FIELDS = {"id", "revision_id"}


def _order_to_domain(doc: PaymentOrderDocument) -> PaymentOrder:
    data = doc.model_dump(exclude=_DOC_ONLY_FIELDS | {"order_id"})
    return PaymentOrder(id=doc.order_id, **data)


def _refund_to_domain(doc: RefundDocument) -> Refund:
    data = doc.model_dump(exclude=_DOC_ONLY_FIELDS | {"refund_id"})
    return Refund(id=doc.refund_id, **data)


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, PaymentStatus) else v) for k, v in fields.items()}


class MongoPaymentStore(PaymentStore):
    def __init__(self, settings: Settings, client: AsyncIOMotorClient | None = None) -> None:
        self._settings = settings
        self._client = client

    async def open(self) -> None:
        from consultpay.db.init import create_client, init_db
        if self._client is None:
            self._client = create_client(self._settings)
        await init_db(self._client, self._settings)
        log.info("payment_store_opened", backend="mongo", db=self._settings.mongodb_db_name)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def insert_order(self, order: PaymentOrder) -> PaymentOrder:
        doc = PaymentOrderDocument(order_id=order.id, **order.model_dump(exclude={"id"}))
        await doc.insert()
        return _order_to_domain(doc)

    async def get_order(self, order_id: str) -> PaymentOrder | None:
        doc = await PaymentOrderDocument.find_one(PaymentOrderDocument.order_id == order_id)
        return _order_to_domain(doc) if doc else None

    async def get_order_by_gateway_order_id(self, gateway_order_id: str) -> PaymentOrder | None:
        doc = await PaymentOrderDocument.find_one(PaymentOrderDocument.gateway_order_id == gateway_order_id)
        return _order_to_domain(doc) if doc else None

    async def get_order_by_gateway_payment_id(self, gateway_payment_id: str) -> PaymentOrder | None:
        doc = await PaymentOrderDocument.find_one(PaymentOrderDocument.gateway_payment_id == gateway_payment_id)
        return _order_to_domain(doc) if doc else None

    async def find_live_order_by_idempotency_key(self, key: str, since: datetime) -> PaymentOrder | None:
        docs = await PaymentOrderDocument.find(
            PaymentOrderDocument.idempotency_key == key,
            PaymentOrderDocument.created_at >= since,
            PaymentOrderDocument.status != PaymentStatus.FAILED.value,
        ).sort(-PaymentOrderDocument.created_at).limit(1).to_list()
        return _order_to_domain(docs[0]) if docs else None

    async def transition(
        self,
        order_id: str,
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        expected_version: int | None = None,
        **fields: Any,
    ) -> PaymentOrder | None:
        criteria = [
            PaymentOrderDocument.order_id == order_id,
            In(PaymentOrderDocument.status, [s.value for s in from_statuses]),
        ]
        if expected_version is not None:
            criteria.append(PaymentOrderDocument.version == expected_version)
        updates = _encode({**fields, "status": to_status, "updated_at": datetime.utcnow()})
        doc = await PaymentOrderDocument.find_one(*criteria).update(
            Set(updates),
            Inc({PaymentOrderDocument.version: 1}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _order_to_domain(doc) if doc else None

    async def update_order_fields(self, order_id: str, **fields: Any) -> PaymentOrder | None:
        updates = _encode({**fields, "updated_at": datetime.utcnow()})
        doc = await PaymentOrderDocument.find_one(PaymentOrderDocument.order_id == order_id).update(
            Set(updates),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _order_to_domain(doc) if doc else None

    async def list_orders(self, consultant_id: str, start: datetime, end: datetime) -> list[PaymentOrder]:
        docs = await PaymentOrderDocument.find(
            PaymentOrderDocument.consultant_id == consultant_id,
            PaymentOrderDocument.created_at >= start,
            PaymentOrderDocument.created_at < end,
        ).to_list()
        return [_order_to_domain(d) for d in docs]

    async def sum_paid_amount(self, consultant_id: str, since: datetime) -> int:
        total = await PaymentOrderDocument.find(
            PaymentOrderDocument.consultant_id == consultant_id,
            In(PaymentOrderDocument.status, [s.value for s in CAPTURED_STATUSES]),
            PaymentOrderDocument.created_at >= since,
        ).sum(PaymentOrderDocument.amount)
        return int(total or 0)

    async def list_unsynced_captured_orders(self, older_than: datetime, limit: int) -> list[PaymentOrder]:
        docs = await PaymentOrderDocument.find(
            In(PaymentOrderDocument.status, [s.value for s in CAPTURED_STATUSES]),
            PaymentOrderDocument.effects_synced == False,  # noqa: E712
            PaymentOrderDocument.updated_at <= older_than,
        ).limit(limit).to_list()
        return [_order_to_domain(d) for d in docs]

    async def insert_refund(self, refund: Refund) -> Refund:
        doc = RefundDocument(refund_id=refund.id, **refund.model_dump(exclude={"id"}))
        await doc.insert()
        return _refund_to_domain(doc)

    async def get_refund_by_gateway_id(self, gateway_refund_id: str) -> Refund | None:
        doc = await RefundDocument.find_one(RefundDocument.gateway_refund_id == gateway_refund_id)
        return _refund_to_domain(doc) if doc else None

    async def update_refund(self, refund_id: str, **fields: Any) -> Refund | None:
        updates = _encode({**fields, "updated_at": datetime.utcnow()})
        doc = await RefundDocument.find_one(RefundDocument.refund_id == refund_id).update(
            Set(updates),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _refund_to_domain(doc) if doc else None

    async def list_refunds(self, order_id: str) -> list[Refund]:
        docs = await RefundDocument.find(RefundDocument.order_id == order_id).sort(
            +RefundDocument.created_at
        ).to_list()
        return [_refund_to_domain(d) for d in docs]

    async def claim_webhook_event(self, event_id: str, event_type: str) -> bool:
        try:
            await ProcessedWebhookEvent(event_id=event_id, event_type=event_type).insert()
        except DuplicateKeyError:
            return False
        return True

    async def release_webhook_event(self, event_id: str) -> None:
        await ProcessedWebhookEvent.find_one(ProcessedWebhookEvent.event_id == event_id).delete()

    async def record_audit(self, entry: AuditEntry) -> None:
        await PaymentAuditLog(**entry.model_dump()).insert()

    async def record_failed_job(
        self, job_name: str, job_id: str, args: list[Any], kwargs: dict[str, Any], reason: str, attempts: int,
        order_id: str | None = None,
    ) -> None:
        await DeadLetterJob(
            job_name=job_name,
            job_id=job_id,
            order_id=order_id,
            args=args,
            kwargs=kwargs,
            reason=reason,
            attempts=attempts,
        ).insert()
