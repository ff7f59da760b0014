"""Razorpay webhook: verify raw body, dedup by event id, route into the state machine."""

from pydantic import BaseModel

from consultpay.core.audit import log_event
from consultpay.core.config import Settings
from consultpay.core.exceptions import InvalidSignature, InvalidTransition, OrderNotFound
from consultpay.core.logging import bind_webhook_event, get_logger
from consultpay.core.security import verify_webhook_signature
from consultpay.schemas.webhooks import (
    PaymentAuthorizedEvent,
    PaymentCapturedEvent,
    PaymentFailedEvent,
    RefundProcessedEvent,
    UnknownWebhookEvent,
    WebhookEvent,
    parse_webhook_event,
)
from consultpay.services.refunds import RefundManager
from consultpay.services.state_machine import PaymentStateMachine
from consultpay.store.base import PaymentStore

log = get_logger(__name__)


class WebhookResult(BaseModel):
    event_id: str
    event_type: str
    duplicate: bool = False
    ignored: bool = False


class WebhookDispatcher:
    def __init__(
        self,
        store: PaymentStore,
        state_machine: PaymentStateMachine,
        refunds: RefundManager,
        settings: Settings,
    ) -> None:
        self._store = store
        self._state_machine = state_machine
        self._refunds = refunds
        self._settings = settings

    async def handle(self, raw_payload: bytes, signature: str, event_id: str | None = None) -> WebhookResult:
        if not verify_webhook_signature(raw_payload, signature, self._settings.razorpay_webhook_secret):
            log.warning("webhook_signature_invalid", size=len(raw_payload or b""))
            raise InvalidSignature("Invalid webhook signature")

        event = parse_webhook_event(raw_payload, event_id)
        bind_webhook_event(event.event_id, event.event_type)
        if not await self._store.claim_webhook_event(event.event_id, event.event_type):
            log.info("webhook_duplicate", event_id=event.event_id, event_type=event.event_type)
            return WebhookResult(event_id=event.event_id, event_type=event.event_type, duplicate=True)

        try:
            ignored = await self._route(event)
        except Exception:
            # let the gateway redeliver; the next attempt must not look like a duplicate
            await self._store.release_webhook_event(event.event_id)
            raise
        log.info("webhook_processed", event_id=event.event_id, event_type=event.event_type, ignored=ignored)
        return WebhookResult(event_id=event.event_id, event_type=event.event_type, ignored=ignored)

    async def _route(self, event: WebhookEvent) -> bool:
        """Apply the event; True when it was accepted without effect."""
        try:
            if isinstance(event, PaymentCapturedEvent):
                await self._state_machine.apply_captured_payment(
                    event.gateway_order_id, event.gateway_payment_id, method=event.method, source="webhook"
                )
            elif isinstance(event, PaymentAuthorizedEvent):
                await self._state_machine.apply_authorized_payment(
                    event.gateway_order_id, event.gateway_payment_id, method=event.method
                )
            elif isinstance(event, PaymentFailedEvent):
                await self._state_machine.apply_failed_payment(
                    event.gateway_order_id, event.error_code, event.error_description
                )
            elif isinstance(event, RefundProcessedEvent):
                await self._refunds.reconcile_refund(event)
            elif isinstance(event, UnknownWebhookEvent):
                log.info("webhook_unhandled_event", event_id=event.event_id, event_type=event.event_type)
                return True
        except (InvalidTransition, OrderNotFound) as e:
            log.warning(
                "webhook_anomaly",
                event_id=event.event_id,
                event_type=event.event_type,
                code=e.code,
                reason=e.message,
            )
            await log_event(
                self._store,
                "webhook_anomaly",
                "webhook_event",
                event.event_id,
                {"event_type": event.event_type, "code": e.code, "details": e.details},
            )
            return True
        return False
