"""Full and partial refunds against captured payments."""

from datetime import datetime, timedelta

from consultpay.core.audit import log_event
from consultpay.core.config import Settings
from consultpay.core.exceptions import ExcessiveRefund, InvalidState, OrderNotFound
from consultpay.core.locks import OrderLocks
from consultpay.core.logging import get_logger
from consultpay.gateway.base import PaymentGateway
from consultpay.gateway.retry import call_with_retry
from consultpay.schemas.payments import REFUNDABLE_STATUSES, PaymentOrder, Refund
from consultpay.schemas.webhooks import RefundProcessedEvent
from consultpay.services.collaborators import BookingCollaborator
from consultpay.services.state_machine import PaymentStateMachine
from consultpay.store.base import PaymentStore

log = get_logger(__name__)


class RefundManager:
    def __init__(
        self,
        store: PaymentStore,
        gateway: PaymentGateway,
        state_machine: PaymentStateMachine,
        collaborator: BookingCollaborator,
        locks: OrderLocks,
        settings: Settings,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._state_machine = state_machine
        self._collaborator = collaborator
        self._locks = locks
        self._settings = settings

    async def _get_order(self, payment_id: str) -> PaymentOrder:
        order = await self._store.get_order_by_gateway_payment_id(payment_id)
        if order is None:
            raise OrderNotFound(details={"gateway_payment_id": payment_id})
        return order

    def _check_refundable(self, order: PaymentOrder, amount: int) -> None:
        if order.status not in REFUNDABLE_STATUSES:
            raise InvalidState(
                f"Cannot refund order in status {order.status.value}",
                details={"order_id": order.id, "status": order.status.value},
            )
        paid_at = order.paid_at or order.created_at
        if datetime.utcnow() - paid_at > timedelta(days=self._settings.refund_window_days):
            raise InvalidState(f"Refund time limit exceeded ({self._settings.refund_window_days} days)")
        if amount <= 0 or amount > order.refundable_amount:
            raise ExcessiveRefund(
                details={"order_id": order.id, "requested": amount, "refundable": order.refundable_amount}
            )

    async def process_refund(
        self,
        payment_id: str,
        amount: int | None = None,
        reason: str | None = None,
        notes: dict[str, str] | None = None,
    ) -> Refund:
        order = await self._get_order(payment_id)
        async with self._locks.hold(f"order:{order.id}"):
            order = await self._get_order(payment_id)
            refund_amount = order.refundable_amount if amount is None else amount
            self._check_refundable(order, refund_amount)

            gateway_notes = {
                "reason": reason or "Requested by consultant",
                "consultantId": order.consultant_id,
                **(notes or {}),
            }
            gateway_refund = await call_with_retry(
                "refund",
                lambda: self._gateway.refund(payment_id, refund_amount, gateway_notes),
                self._settings,
            )
            # from here the money has moved; record it even if the order write conflicts
            refund = await self._store.insert_refund(
                Refund(
                    order_id=order.id,
                    gateway_payment_id=payment_id,
                    gateway_refund_id=gateway_refund.id,
                    amount=refund_amount,
                    reason=reason,
                    status=gateway_refund.status,
                )
            )
            updated = await self._state_machine.apply_refund(order.id, refund_amount)
            refund = await self._store.update_refund(
                refund.id, resulting_order_status=updated.status
            ) or refund

        log.info(
            "refund_processed",
            order_id=order.id,
            gateway_refund_id=gateway_refund.id,
            amount=refund_amount,
            status=updated.status.value,
        )
        await log_event(
            self._store,
            "refund_processed",
            "payment_order",
            order.id,
            {"gateway_refund_id": gateway_refund.id, "amount": refund_amount, "reason": reason},
        )
        await self._notify_refunded(updated, refund_amount)
        return refund

    async def _notify_refunded(self, order: PaymentOrder, amount: int) -> None:
        try:
            await self._collaborator.mark_refunded(order, amount)
        except Exception as e:
            log.exception("downstream_refund_effects_failed", order_id=order.id, reason=str(e))
            await self._store.update_order_fields(order.id, effects_synced=False)
            await self._state_machine.queue_reconciliation(order.id)

    async def reconcile_refund(self, event: RefundProcessedEvent) -> Refund | None:
        """Apply a gateway-reported refund; records refunds initiated outside the platform."""
        existing = await self._store.get_refund_by_gateway_id(event.gateway_refund_id)
        if existing is not None:
            if existing.status != event.status:
                existing = await self._store.update_refund(existing.id, status=event.status) or existing
            log.info("refund_reconciled", refund_id=existing.id, gateway_refund_id=event.gateway_refund_id)
            return existing

        order = await self._get_order(event.gateway_payment_id)
        async with self._locks.hold(f"order:{order.id}"):
            existing = await self._store.get_refund_by_gateway_id(event.gateway_refund_id)
            if existing is not None:
                return existing
            order = await self._get_order(event.gateway_payment_id)
            if order.status not in REFUNDABLE_STATUSES or event.amount > order.refundable_amount:
                log.warning(
                    "refund_reconcile_anomaly",
                    order_id=order.id,
                    status=order.status.value,
                    amount=event.amount,
                    refundable=order.refundable_amount,
                )
                await log_event(
                    self._store,
                    "refund_reconcile_anomaly",
                    "payment_order",
                    order.id,
                    {"gateway_refund_id": event.gateway_refund_id, "amount": event.amount},
                )
                return None
            refund = await self._store.insert_refund(
                Refund(
                    order_id=order.id,
                    gateway_payment_id=event.gateway_payment_id,
                    gateway_refund_id=event.gateway_refund_id,
                    amount=event.amount,
                    reason=event.reason,
                    status=event.status,
                )
            )
            updated = await self._state_machine.apply_refund(order.id, event.amount)
            refund = await self._store.update_refund(refund.id, resulting_order_status=updated.status) or refund

        log.info("refund_recorded_from_webhook", order_id=order.id, gateway_refund_id=event.gateway_refund_id)
        await log_event(
            self._store,
            "refund_recorded_from_webhook",
            "payment_order",
            order.id,
            {"gateway_refund_id": event.gateway_refund_id, "amount": event.amount},
        )
        await self._notify_refunded(updated, event.amount)
        return refund
