"""Refund Manager: full/partial refunds, bounds, gateway failures."""

import asyncio
from datetime import datetime, timedelta

import pytest

from consultpay.core.exceptions import ExcessiveRefund, GatewayUnavailable, InvalidState, OrderNotFound
from consultpay.gateway.base import GatewayTransientError
from consultpay.schemas.payments import CreateOrderSpec, PaymentStatus

pytestmark = pytest.mark.asyncio


async def _paid_order(core, amount=10000, payment_id="pay_1", session_id="sess_1"):
    order = await core.orders.create_order(
        CreateOrderSpec(amount=amount, consultant_id="c1", client_email="a@b.com", session_id=session_id)
    )
    return await core.state_machine.apply_captured_payment(order.gateway_order_id, payment_id)


async def test_full_refund_by_default(core, gateway, collaborator):
    order = await _paid_order(core)
    refund = await core.refunds.process_refund("pay_1", reason="cancelled")
    assert refund.amount == 10000
    assert refund.resulting_order_status == PaymentStatus.REFUNDED
    assert refund.gateway_refund_id == gateway.refunds[0]["id"]
    assert gateway.refunds[0]["notes"]["reason"] == "cancelled"
    assert collaborator.refunded == [(order.id, 10000)]


async def test_partial_refunds_until_exhausted(core, store):
    order = await _paid_order(core)
    first = await core.refunds.process_refund("pay_1", amount=3000)
    assert first.resulting_order_status == PaymentStatus.PARTIALLY_REFUNDED
    second = await core.refunds.process_refund("pay_1", amount=2000)
    assert second.resulting_order_status == PaymentStatus.PARTIALLY_REFUNDED
    rest = await core.refunds.process_refund("pay_1")
    assert rest.amount == 5000
    final = await store.get_order(order.id)
    assert final.status == PaymentStatus.REFUNDED
    assert final.refunded_amount == 10000
    assert len(await store.list_refunds(order.id)) == 3


async def test_excessive_refund_leaves_state_unchanged(core, store, gateway):
    order = await _paid_order(core)
    await core.refunds.process_refund("pay_1", amount=4000)
    before = await store.get_order(order.id)
    with pytest.raises(ExcessiveRefund):
        await core.refunds.process_refund("pay_1", amount=6001)
    after = await store.get_order(order.id)
    assert after == before
    assert len(gateway.refunds) == 1


async def test_unknown_payment(core):
    with pytest.raises(OrderNotFound):
        await core.refunds.process_refund("pay_missing")


async def test_refund_requires_captured_order(core, store):
    order = await core.orders.create_order(CreateOrderSpec(amount=5000, consultant_id="c1", client_email="a@b.com"))
    await core.state_machine.apply_authorized_payment(order.gateway_order_id, "pay_9")
    with pytest.raises(InvalidState):
        await core.refunds.process_refund("pay_9")


async def test_fully_refunded_order_cannot_be_refunded_again(core):
    await _paid_order(core)
    await core.refunds.process_refund("pay_1")
    with pytest.raises(InvalidState):
        await core.refunds.process_refund("pay_1", amount=1)


async def test_refund_window(core, store, settings):
    order = await _paid_order(core)
    await store.update_order_fields(order.id, paid_at=datetime.utcnow() - timedelta(days=settings.refund_window_days + 1))
    with pytest.raises(InvalidState, match="time limit"):
        await core.refunds.process_refund("pay_1")


async def test_gateway_outage_records_nothing(core, gateway, store):
    order = await _paid_order(core)
    gateway.failures = [GatewayTransientError("down")] * 3
    with pytest.raises(GatewayUnavailable):
        await core.refunds.process_refund("pay_1", amount=1000)
    current = await store.get_order(order.id)
    assert current.status == PaymentStatus.PAID
    assert current.refunded_amount == 0
    assert await store.list_refunds(order.id) == []


async def test_concurrent_refunds_never_exceed_captured(core, store, gateway):
    order = await _paid_order(core)
    results = await asyncio.gather(
        *(core.refunds.process_refund("pay_1", amount=4000) for _ in range(3)),
        return_exceptions=True,
    )
    ok = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(ok) == 2
    assert len(errors) == 1 and isinstance(errors[0], ExcessiveRefund)
    final = await store.get_order(order.id)
    assert final.refunded_amount == 8000
    assert len(gateway.refunds) == 2
