import os
from itertools import count
from typing import AsyncGenerator

import orjson
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory backend: no MongoDB or Redis needed
os.environ.setdefault("PAYMENT_STORE_BACKEND", "memory")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test-key-secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test-webhook-secret")

from consultpay.core.config import Settings  # noqa: E402
from consultpay.core.locks import LocalOrderLocks  # noqa: E402
from consultpay.core.security import compute_signature  # noqa: E402
from consultpay.core.task_queue import InMemoryTaskQueue  # noqa: E402
from consultpay.gateway.base import GatewayOrder, GatewayRefund, GatewayTransientError, PaymentGateway  # noqa: E402
from consultpay.runtime import PaymentCore, build_payment_core  # noqa: E402
from consultpay.services.collaborators import BookingCollaborator  # noqa: E402
from consultpay.store.memory import InMemoryPaymentStore  # noqa: E402

KEY_SECRET = "test-key-secret"
WEBHOOK_SECRET = "test-webhook-secret"


class FakeGateway(PaymentGateway):
    """Scriptable gateway: queue exceptions in `failures` to raise before succeeding."""

    def __init__(self) -> None:
        self._ids = count(1)
        self.orders: list[dict] = []
        self.refunds: list[dict] = []
        self.failures: list[Exception] = []

    @property
    def key_id(self) -> str:
        return "rzp_test_key"

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    async def create_order(self, amount, currency, receipt, notes):
        self._maybe_fail()
        order = {"id": f"order_{next(self._ids)}", "amount": amount, "currency": currency, "receipt": receipt}
        self.orders.append({**order, "notes": notes})
        return GatewayOrder(**order)

    async def refund(self, payment_id, amount, notes):
        self._maybe_fail()
        refund = {"id": f"rfnd_{next(self._ids)}", "payment_id": payment_id, "amount": amount}
        self.refunds.append({**refund, "notes": notes})
        return GatewayRefund(**refund)


class RecordingCollaborator(BookingCollaborator):
    def __init__(self) -> None:
        self.paid: list[str] = []
        self.refunded: list[tuple[str, int]] = []
        self.fail_next = 0

    async def mark_paid(self, order):
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError("sessions collection unavailable")
        self.paid.append(order.id)

    async def mark_refunded(self, order, amount):
        self.refunded.append((order.id, amount))


def sign_payment(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_signature(f"{order_id}|{payment_id}", secret)


def webhook_body(event: str, **entity) -> bytes:
    kind = "refund" if event.startswith("refund.") else "payment"
    return orjson.dumps(
        {
            "entity": "event",
            "account_id": "acc_test",
            "event": event,
            "contains": [kind],
            "payload": {kind: {"entity": entity}},
            "created_at": 1700000000,
        }
    )


def sign_webhook(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(body, secret)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        payment_store_backend="memory",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        gateway_backoff_base_seconds=0,
        gateway_timeout_seconds=2,
        min_order_amount=100,
        max_order_amount=50_000_000,
        daily_limit_amount=100_000_000,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def collaborator() -> RecordingCollaborator:
    return RecordingCollaborator()


@pytest.fixture
def store(settings) -> InMemoryPaymentStore:
    return InMemoryPaymentStore(settings)


@pytest.fixture
def task_queue() -> InMemoryTaskQueue:
    return InMemoryTaskQueue()


@pytest.fixture
def core(settings, store, gateway, collaborator, task_queue) -> PaymentCore:
    return build_payment_core(
        settings,
        store=store,
        gateway=gateway,
        collaborator=collaborator,
        task_queue=task_queue,
        locks=LocalOrderLocks(),
    )


@pytest_asyncio.fixture
async def client(core) -> AsyncGenerator[AsyncClient, None]:
    from consultpay.main import app
    app.state.payment_core = core
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.state.payment_core = None
