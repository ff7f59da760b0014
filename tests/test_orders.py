"""Order Manager: validation, gateway retries, idempotent creation."""

import asyncio
from datetime import datetime

import pytest

from consultpay.core.exceptions import GatewayRejected, GatewayUnavailable, InvalidOrderSpec
from consultpay.gateway.base import GatewayTransientError
from consultpay.schemas.payments import CreateOrderSpec, PaymentStatus

pytestmark = pytest.mark.asyncio


def _spec(**overrides) -> CreateOrderSpec:
    data = {"amount": 2500, "consultant_id": "c1", "client_email": "a@b.com"}
    data.update(overrides)
    return CreateOrderSpec(**data)


async def test_create_order_persists_created_order(core, gateway, store):
    order = await core.orders.create_order(_spec())
    assert order.status == PaymentStatus.CREATED
    assert order.gateway_order_id == "order_1"
    assert order.amount == 2500
    assert order.currency == "INR"
    stored = await store.get_order_by_gateway_order_id("order_1")
    assert stored.id == order.id
    assert gateway.orders[0]["notes"]["consultantId"] == "c1"
    assert gateway.orders[0]["notes"]["clientEmail"] == "a@b.com"


@pytest.mark.parametrize("amount", [0, -5, 50, 60_000_000])
async def test_rejects_out_of_range_amount(core, gateway, amount):
    with pytest.raises(InvalidOrderSpec):
        await core.orders.create_order(_spec(amount=amount))
    assert gateway.orders == []


async def test_rejects_unsupported_currency(core):
    with pytest.raises(InvalidOrderSpec):
        await core.orders.create_order(_spec(currency="JPY"))


async def test_currency_is_normalized(core):
    order = await core.orders.create_order(_spec(currency="usd"))
    assert order.currency == "USD"


async def test_daily_limit(core, settings):
    settings.daily_limit_amount = 5000
    first = await core.orders.create_order(_spec(amount=4000, session_id="s1"))
    await core.state_machine.apply_captured_payment(first.gateway_order_id, "pay_1")
    with pytest.raises(InvalidOrderSpec, match="Daily"):
        await core.orders.create_order(_spec(amount=2000, session_id="s2"))


async def test_duplicate_request_returns_existing_order(core, gateway):
    first = await core.orders.create_order(_spec(session_id="s1"))
    second = await core.orders.create_order(_spec(session_id="s1"))
    assert second.id == first.id
    assert len(gateway.orders) == 1


async def test_different_clients_get_separate_orders(core, gateway):
    first = await core.orders.create_order(_spec())
    second = await core.orders.create_order(_spec(client_email="other@x.com"))
    assert second.id != first.id
    assert second.gateway_order_id != first.gateway_order_id
    assert len(gateway.orders) == 2


async def test_client_email_case_does_not_split_duplicates(core, gateway):
    first = await core.orders.create_order(_spec())
    again = await core.orders.create_order(_spec(client_email=" A@B.com "))
    assert again.id == first.id
    assert len(gateway.orders) == 1


async def test_explicit_idempotency_key(core, gateway):
    first = await core.orders.create_order(_spec(idempotency_key="k-1"))
    again = await core.orders.create_order(_spec(idempotency_key="k-1"))
    other = await core.orders.create_order(_spec(idempotency_key="k-2"))
    assert again.id == first.id
    assert other.id != first.id
    assert len(gateway.orders) == 2


async def test_concurrent_duplicates_create_one_order(core, gateway):
    results = await asyncio.gather(*(core.orders.create_order(_spec(session_id="s9")) for _ in range(5)))
    assert len({o.id for o in results}) == 1
    assert len(gateway.orders) == 1


async def test_failed_order_is_not_reused(core, gateway):
    first = await core.orders.create_order(_spec(session_id="s1"))
    await core.state_machine.apply_failed_payment(first.gateway_order_id, "BAD_REQUEST_ERROR", "declined")
    second = await core.orders.create_order(_spec(session_id="s1"))
    assert second.id != first.id


async def test_transient_errors_are_retried(core, gateway):
    gateway.failures = [GatewayTransientError("502"), GatewayTransientError("503")]
    order = await core.orders.create_order(_spec())
    assert order.gateway_order_id == "order_1"


async def test_exhausted_retries_raise_gateway_unavailable(core, gateway, store):
    gateway.failures = [GatewayTransientError("down")] * 3
    with pytest.raises(GatewayUnavailable):
        await core.orders.create_order(_spec())
    assert await store.list_orders("c1", datetime(2000, 1, 1), datetime(2100, 1, 1)) == []


async def test_gateway_rejection_is_invalid_spec(core, gateway):
    gateway.failures = [GatewayRejected("amount too low")]
    with pytest.raises(InvalidOrderSpec):
        await core.orders.create_order(_spec())
