"""Gateway order creation: validation, daily limit, idempotent retries."""

import hashlib
import secrets
from datetime import datetime, timedelta

from consultpay.core.audit import log_event
from consultpay.core.config import Settings
from consultpay.core.exceptions import GatewayRejected, InvalidOrderSpec
from consultpay.core.locks import OrderLocks
from consultpay.core.logging import get_logger
from consultpay.gateway.base import PaymentGateway
from consultpay.gateway.retry import call_with_retry
from consultpay.schemas.payments import CreateOrderSpec, PaymentOrder
from consultpay.store.base import PaymentStore

log = get_logger(__name__)


def fingerprint(spec: CreateOrderSpec, currency: str) -> str:
    """Default idempotency key: same consultant, client, target, amount and currency."""
    parts = [
        spec.consultant_id,
        spec.client_email.strip().lower(),
        spec.session_id or "",
        spec.quotation_id or "",
        str(spec.amount),
        currency,
    ]
    return "fp:" + hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def generate_receipt() -> str:
    # Razorpay caps receipts at 40 chars
    return f"rcpt_{int(datetime.utcnow().timestamp())}_{secrets.token_hex(6)}"


class OrderManager:
    def __init__(
        self,
        store: PaymentStore,
        gateway: PaymentGateway,
        locks: OrderLocks,
        settings: Settings,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._locks = locks
        self._settings = settings

    def _resolve_currency(self, spec: CreateOrderSpec) -> str:
        currency = (spec.currency or self._settings.default_currency).strip().upper()
        if currency not in self._settings.supported_currencies:
            raise InvalidOrderSpec(
                f"Unsupported currency {currency}",
                details={"supported": self._settings.supported_currencies},
            )
        return currency

    def _validate(self, spec: CreateOrderSpec) -> None:
        s = self._settings
        if spec.amount <= 0:
            raise InvalidOrderSpec("Amount must be positive", details={"amount": spec.amount})
        if spec.amount < s.min_order_amount:
            raise InvalidOrderSpec(f"Minimum payment amount is {s.min_order_amount}", details={"amount": spec.amount})
        if spec.amount > s.max_order_amount:
            raise InvalidOrderSpec(f"Maximum payment amount is {s.max_order_amount}", details={"amount": spec.amount})
        if not spec.consultant_id:
            raise InvalidOrderSpec("consultant_id is required")
        if not spec.client_email or "@" not in spec.client_email:
            raise InvalidOrderSpec("A valid client_email is required")

    async def _check_daily_limit(self, spec: CreateOrderSpec) -> None:
        today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        paid_today = await self._store.sum_paid_amount(spec.consultant_id, today)
        if paid_today + spec.amount > self._settings.daily_limit_amount:
            raise InvalidOrderSpec(
                "Daily payment limit exceeded",
                details={"paid_today": paid_today, "limit": self._settings.daily_limit_amount},
            )

    async def create_order(self, spec: CreateOrderSpec) -> PaymentOrder:
        self._validate(spec)
        currency = self._resolve_currency(spec)
        key = spec.idempotency_key or fingerprint(spec, currency)

        async with self._locks.hold(f"idem:{key}"):
            since = datetime.utcnow() - timedelta(seconds=self._settings.idempotency_window_seconds)
            existing = await self._store.find_live_order_by_idempotency_key(key, since)
            if existing is not None:
                log.info("payment_order_reused", order_id=existing.id, gateway_order_id=existing.gateway_order_id)
                return existing

            await self._check_daily_limit(spec)
            receipt = spec.receipt or generate_receipt()
            notes = {
                "consultantId": spec.consultant_id,
                "clientEmail": spec.client_email,
                **({"clientName": spec.client_name} if spec.client_name else {}),
                **({"sessionId": spec.session_id} if spec.session_id else {}),
                **({"quotationId": spec.quotation_id} if spec.quotation_id else {}),
                **spec.notes,
            }
            try:
                gateway_order = await call_with_retry(
                    "create_order",
                    lambda: self._gateway.create_order(spec.amount, currency, receipt, notes),
                    self._settings,
                )
            except GatewayRejected as e:
                raise InvalidOrderSpec(f"Payment gateway rejected the order: {e.message}") from e

            order = await self._store.insert_order(
                PaymentOrder(
                    gateway_order_id=gateway_order.id,
                    amount=spec.amount,
                    currency=currency,
                    consultant_id=spec.consultant_id,
                    client_email=spec.client_email,
                    client_name=spec.client_name,
                    session_id=spec.session_id,
                    quotation_id=spec.quotation_id,
                    receipt=gateway_order.receipt or receipt,
                    notes=notes,
                    idempotency_key=key,
                )
            )

        log.info(
            "payment_order_created",
            order_id=order.id,
            gateway_order_id=order.gateway_order_id,
            amount=order.amount,
            currency=order.currency,
            consultant_id=order.consultant_id,
        )
        await log_event(
            self._store,
            "payment_order_created",
            "payment_order",
            order.id,
            {"gateway_order_id": order.gateway_order_id, "amount": order.amount},
        )
        return order
