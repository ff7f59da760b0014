"""Payment lifecycle: the only writer of PaymentOrder.status.

CREATED -> PENDING -> PAID | FAILED, PAID -> PARTIALLY_REFUNDED -> REFUNDED.
Every write is a conditional update against the stored status, so racing
confirmations (client callback vs webhook) apply at most once and the loser
reads back the applied state.
"""

from datetime import datetime

from consultpay.core.audit import log_event
from consultpay.core.config import Settings
from consultpay.core.exceptions import (
    ConflictError,
    ExcessiveRefund,
    InvalidSignature,
    InvalidState,
    InvalidTransition,
    OrderNotFound,
)
from consultpay.core.logging import get_logger
from consultpay.core.security import verify_payment_signature
from consultpay.core.task_queue import TaskQueue
from consultpay.schemas.payments import (
    REFUNDABLE_STATUSES,
    PaymentOrder,
    PaymentStatus,
    PaymentVerification,
    allowed_sources,
)
from consultpay.services.collaborators import BookingCollaborator
from consultpay.store.base import PaymentStore

log = get_logger(__name__)

RECONCILE_JOB = "reconcile_payment_effects"
_REFUND_WRITE_ATTEMPTS = 3


def reconcile_job_id(order_id: str) -> str:
    return f"reconcile:{order_id}"


class PaymentStateMachine:
    def __init__(
        self,
        store: PaymentStore,
        collaborator: BookingCollaborator,
        task_queue: TaskQueue,
        settings: Settings,
    ) -> None:
        self._store = store
        self._collaborator = collaborator
        self._queue = task_queue
        self._settings = settings

    async def _get_by_gateway_order(self, gateway_order_id: str) -> PaymentOrder:
        order = await self._store.get_order_by_gateway_order_id(gateway_order_id)
        if order is None:
            raise OrderNotFound(details={"gateway_order_id": gateway_order_id})
        return order

    async def apply_verified_payment(self, verification: PaymentVerification) -> PaymentOrder:
        """Client checkout confirmation. Signature is re-checked here even if the caller did."""
        order = await self._get_by_gateway_order(verification.gateway_order_id)
        ok = verify_payment_signature(
            verification.gateway_order_id,
            verification.gateway_payment_id,
            verification.signature,
            self._settings.razorpay_key_secret,
        )
        await log_event(
            self._store,
            "payment_verification_accepted" if ok else "payment_verification_rejected",
            "payment_order",
            order.id,
            {
                "gateway_order_id": verification.gateway_order_id,
                "gateway_payment_id": verification.gateway_payment_id,
            },
        )
        if not ok:
            log.warning("payment_signature_invalid", order_id=order.id, gateway_order_id=order.gateway_order_id)
            raise InvalidSignature("Invalid payment signature")
        return await self.apply_captured_payment(
            verification.gateway_order_id,
            verification.gateway_payment_id,
            source="client",
        )

    async def apply_captured_payment(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        method: str | None = None,
        source: str = "webhook",
    ) -> PaymentOrder:
        """Capture already authenticated by the caller (verified webhook or checkout signature)."""
        order = await self._get_by_gateway_order(gateway_order_id)
        if order.was_captured:
            return await self._already_captured(order, gateway_payment_id, source)
        if order.status == PaymentStatus.FAILED:
            await self._reject_capture_after_failure(order, gateway_payment_id, source)

        updated = await self._store.transition(
            order.id,
            allowed_sources(PaymentStatus.PAID),
            PaymentStatus.PAID,
            gateway_payment_id=gateway_payment_id,
            payment_method=method or order.payment_method,
            paid_at=datetime.utcnow(),
            effects_synced=False,
        )
        if updated is None:
            current = await self._store.get_order(order.id)
            if current is not None and current.was_captured:
                log.info("payment_capture_already_applied", order_id=order.id, source=source)
                return await self._already_captured(current, gateway_payment_id, source)
            await self._reject_capture_after_failure(current or order, gateway_payment_id, source)

        log.info(
            "payment_paid",
            order_id=updated.id,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            amount=updated.amount,
            source=source,
        )
        await log_event(
            self._store,
            "payment_paid",
            "payment_order",
            updated.id,
            {"gateway_payment_id": gateway_payment_id, "amount": updated.amount, "source": source},
        )
        return await self._run_paid_effects(updated)

    async def _already_captured(self, order: PaymentOrder, gateway_payment_id: str, source: str) -> PaymentOrder:
        if order.gateway_payment_id and order.gateway_payment_id != gateway_payment_id:
            # second payment against the same order; needs a manual refund
            log.warning(
                "payment_duplicate_capture",
                order_id=order.id,
                recorded_payment_id=order.gateway_payment_id,
                gateway_payment_id=gateway_payment_id,
                source=source,
            )
            await log_event(
                self._store,
                "payment_duplicate_capture",
                "payment_order",
                order.id,
                {"recorded_payment_id": order.gateway_payment_id, "gateway_payment_id": gateway_payment_id},
            )
        return order

    async def _reject_capture_after_failure(self, order: PaymentOrder, gateway_payment_id: str, source: str) -> None:
        log.warning(
            "payment_capture_after_failure",
            order_id=order.id,
            status=order.status.value,
            gateway_payment_id=gateway_payment_id,
            source=source,
        )
        await log_event(
            self._store,
            "payment_capture_after_failure",
            "payment_order",
            order.id,
            {"gateway_payment_id": gateway_payment_id, "status": order.status.value, "source": source},
        )
        raise InvalidTransition(
            f"Cannot capture order in status {order.status.value}",
            details={"order_id": order.id, "status": order.status.value},
        )

    async def _run_paid_effects(self, order: PaymentOrder) -> PaymentOrder:
        """Downstream bookkeeping; a failure here never unwinds the PAID record."""
        try:
            await self._collaborator.mark_paid(order)
        except Exception as e:
            log.exception("downstream_effects_failed", order_id=order.id, reason=str(e))
            await log_event(self._store, "downstream_effects_failed", "payment_order", order.id, {"reason": str(e)[:500]})
            await self.queue_reconciliation(order.id)
            return order
        synced = await self._store.update_order_fields(order.id, effects_synced=True)
        return synced or order

    async def queue_reconciliation(self, order_id: str) -> None:
        try:
            await self._queue.enqueue(RECONCILE_JOB, order_id, job_id=reconcile_job_id(order_id))
        except Exception:
            # sweep_unsynced_payments picks the order up on its next run
            log.exception("reconciliation_enqueue_failed", order_id=order_id)

    async def sync_downstream_effects(self, order_id: str) -> PaymentOrder:
        """Reconciliation entry for the worker. Raises so the job can be retried."""
        order = await self._store.get_order(order_id)
        if order is None:
            raise OrderNotFound(details={"order_id": order_id})
        if not order.was_captured or order.effects_synced:
            return order
        await self._collaborator.mark_paid(order)
        if order.refunded_amount:
            await self._collaborator.mark_refunded(order, order.refunded_amount)
        synced = await self._store.update_order_fields(order.id, effects_synced=True)
        log.info("downstream_effects_reconciled", order_id=order.id)
        return synced or order

    async def apply_authorized_payment(
        self, gateway_order_id: str, gateway_payment_id: str, method: str | None = None
    ) -> PaymentOrder:
        """Gateway acknowledged an attempt: CREATED -> PENDING; no-op in any later state."""
        order = await self._get_by_gateway_order(gateway_order_id)
        if order.status != PaymentStatus.CREATED:
            return order
        updated = await self._store.transition(
            order.id,
            allowed_sources(PaymentStatus.PENDING),
            PaymentStatus.PENDING,
            gateway_payment_id=gateway_payment_id,
            payment_method=method,
        )
        if updated is None:
            return await self._store.get_order(order.id) or order
        log.info("payment_pending", order_id=order.id, gateway_payment_id=gateway_payment_id)
        return updated

    async def apply_failed_payment(
        self,
        gateway_order_id: str,
        error_code: str | None = None,
        error_description: str | None = None,
    ) -> PaymentOrder:
        order = await self._get_by_gateway_order(gateway_order_id)
        if order.status == PaymentStatus.FAILED:
            return order
        if not order.was_captured:
            updated = await self._store.transition(
                order.id,
                allowed_sources(PaymentStatus.FAILED),
                PaymentStatus.FAILED,
                failure_code=error_code,
                failure_reason=error_description,
                failed_at=datetime.utcnow(),
            )
            if updated is not None:
                log.info(
                    "payment_failed",
                    order_id=order.id,
                    gateway_order_id=gateway_order_id,
                    error_code=error_code,
                    error_description=error_description,
                )
                await log_event(
                    self._store,
                    "payment_failed",
                    "payment_order",
                    order.id,
                    {"error_code": error_code, "error_description": error_description},
                )
                return updated
            order = await self._store.get_order(order.id) or order
            if order.status == PaymentStatus.FAILED:
                return order

        log.warning(
            "payment_failure_after_capture",
            order_id=order.id,
            status=order.status.value,
            error_code=error_code,
        )
        await log_event(
            self._store,
            "payment_failure_after_capture",
            "payment_order",
            order.id,
            {"status": order.status.value, "error_code": error_code, "error_description": error_description},
        )
        raise InvalidTransition(
            f"Cannot fail order in status {order.status.value}",
            details={"order_id": order.id, "status": order.status.value},
        )

    async def apply_refund(self, order_id: str, amount: int) -> PaymentOrder:
        """Record `amount` refunded: PAID/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED | REFUNDED."""
        for _ in range(_REFUND_WRITE_ATTEMPTS):
            order = await self._store.get_order(order_id)
            if order is None:
                raise OrderNotFound(details={"order_id": order_id})
            if order.status not in REFUNDABLE_STATUSES:
                raise InvalidState(
                    f"Cannot refund order in status {order.status.value}",
                    details={"order_id": order_id, "status": order.status.value},
                )
            if amount <= 0 or amount > order.refundable_amount:
                raise ExcessiveRefund(
                    details={"order_id": order_id, "requested": amount, "refundable": order.refundable_amount}
                )
            refunded = order.refunded_amount + amount
            target = PaymentStatus.REFUNDED if refunded >= order.amount else PaymentStatus.PARTIALLY_REFUNDED
            updated = await self._store.transition(
                order.id,
                allowed_sources(target),
                target,
                expected_version=order.version,
                refunded_amount=refunded,
            )
            if updated is not None:
                log.info(
                    "payment_refund_applied",
                    order_id=order.id,
                    amount=amount,
                    refunded_amount=refunded,
                    status=target.value,
                )
                return updated
        raise ConflictError("Order changed concurrently, retry the refund", details={"order_id": order_id})
