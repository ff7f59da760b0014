"""Payment State Machine: transitions, idempotency, races, isolated downstream failures."""

import asyncio

import pytest
from conftest import sign_payment, sign_webhook, webhook_body

from consultpay.core.exceptions import InvalidSignature, InvalidTransition, OrderNotFound
from consultpay.schemas.payments import (
    CreateOrderSpec,
    PaymentStatus,
    PaymentVerification,
    allowed_sources,
    can_transition,
)
from consultpay.services.state_machine import RECONCILE_JOB

pytestmark = pytest.mark.asyncio


async def _new_order(core, **overrides):
    data = {"amount": 2500, "consultant_id": "c1", "client_email": "a@b.com", "session_id": "sess_1"}
    data.update(overrides)
    return await core.orders.create_order(CreateOrderSpec(**data))


def _verification(order, payment_id="pay_1", signature=None) -> PaymentVerification:
    return PaymentVerification(
        gateway_order_id=order.gateway_order_id,
        gateway_payment_id=payment_id,
        signature=signature or sign_payment(order.gateway_order_id, payment_id),
    )


async def test_create_verify_duplicate_scenario(core, collaborator):
    order = await _new_order(core)
    assert order.status == PaymentStatus.CREATED

    paid = await core.state_machine.apply_verified_payment(_verification(order))
    assert paid.status == PaymentStatus.PAID
    assert paid.gateway_payment_id == "pay_1"
    assert paid.effects_synced is True

    again = await core.state_machine.apply_verified_payment(_verification(order))
    assert again == paid
    assert collaborator.paid == [order.id]


async def test_unknown_order(core):
    with pytest.raises(OrderNotFound):
        await core.state_machine.apply_verified_payment(
            PaymentVerification(gateway_order_id="order_x", gateway_payment_id="pay_1", signature="00")
        )


async def test_bad_signature_rejected_without_effect(core, store, collaborator):
    order = await _new_order(core)
    with pytest.raises(InvalidSignature):
        await core.state_machine.apply_verified_payment(_verification(order, signature="0" * 64))
    current = await store.get_order(order.id)
    assert current.status == PaymentStatus.CREATED
    assert collaborator.paid == []
    assert store.audit[-1].event_type == "payment_verification_rejected"


async def test_authorized_moves_to_pending_then_paid(core):
    order = await _new_order(core)
    pending = await core.state_machine.apply_authorized_payment(order.gateway_order_id, "pay_1", method="upi")
    assert pending.status == PaymentStatus.PENDING
    assert pending.payment_method == "upi"
    paid = await core.state_machine.apply_captured_payment(order.gateway_order_id, "pay_1")
    assert paid.status == PaymentStatus.PAID
    assert paid.payment_method == "upi"
    # late authorization is a no-op
    still = await core.state_machine.apply_authorized_payment(order.gateway_order_id, "pay_1")
    assert still.status == PaymentStatus.PAID


async def test_failed_payment_and_idempotent_repeat(core):
    order = await _new_order(core)
    failed = await core.state_machine.apply_failed_payment(order.gateway_order_id, "BAD_REQUEST_ERROR", "declined")
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_code == "BAD_REQUEST_ERROR"
    assert failed.failure_reason == "declined"
    again = await core.state_machine.apply_failed_payment(order.gateway_order_id, "OTHER", "ignored")
    assert again.failure_code == "BAD_REQUEST_ERROR"


async def test_failure_after_paid_is_rejected(core, store):
    order = await _new_order(core)
    await core.state_machine.apply_verified_payment(_verification(order))
    with pytest.raises(InvalidTransition):
        await core.state_machine.apply_failed_payment(order.gateway_order_id, "LATE", "late report")
    assert (await store.get_order(order.id)).status == PaymentStatus.PAID
    assert any(e.event_type == "payment_failure_after_capture" for e in store.audit)


async def test_capture_after_failure_is_anomaly(core, store):
    order = await _new_order(core)
    await core.state_machine.apply_failed_payment(order.gateway_order_id)
    with pytest.raises(InvalidTransition):
        await core.state_machine.apply_captured_payment(order.gateway_order_id, "pay_2")
    assert (await store.get_order(order.id)).status == PaymentStatus.FAILED


async def test_duplicate_capture_with_other_payment_is_audited(core, store):
    order = await _new_order(core)
    await core.state_machine.apply_captured_payment(order.gateway_order_id, "pay_1")
    same = await core.state_machine.apply_captured_payment(order.gateway_order_id, "pay_2")
    assert same.gateway_payment_id == "pay_1"
    assert any(e.event_type == "payment_duplicate_capture" for e in store.audit)


async def test_client_confirmation_races_webhook(core, collaborator, store):
    order = await _new_order(core)
    body = webhook_body("payment.captured", id="pay_1", order_id=order.gateway_order_id, amount=2500, method="card")
    results = await asyncio.gather(
        core.state_machine.apply_verified_payment(_verification(order)),
        core.webhooks.handle(body, sign_webhook(body), "evt_1"),
    )
    paid = results[0]
    assert paid.status == PaymentStatus.PAID
    assert collaborator.paid == [order.id]
    assert sum(1 for e in store.audit if e.event_type == "payment_paid") == 1


async def test_many_concurrent_confirmations_one_transition(core, collaborator, store):
    order = await _new_order(core)
    results = await asyncio.gather(
        *(core.state_machine.apply_verified_payment(_verification(order)) for _ in range(10))
    )
    assert all(r.status == PaymentStatus.PAID for r in results)
    assert collaborator.paid == [order.id]
    final = await store.get_order(order.id)
    # CREATED -> PAID is the only status write
    assert final.version == 1


async def test_downstream_failure_keeps_payment_and_queues_reconciliation(core, collaborator, store, task_queue):
    order = await _new_order(core)
    collaborator.fail_next = 1
    paid = await core.state_machine.apply_verified_payment(_verification(order))
    assert paid.status == PaymentStatus.PAID
    assert paid.effects_synced is False
    assert [j.job_name for j in task_queue.jobs] == [RECONCILE_JOB]
    assert task_queue.jobs[0].args == (order.id,)

    synced = await core.state_machine.sync_downstream_effects(order.id)
    assert synced.effects_synced is True
    assert collaborator.paid == [order.id]


async def test_enqueue_failure_does_not_fail_payment(core, collaborator, task_queue):
    async def broken_enqueue(*args, **kwargs):
        raise ConnectionError("redis down")

    task_queue.enqueue = broken_enqueue
    collaborator.fail_next = 1
    order = await _new_order(core)
    paid = await core.state_machine.apply_verified_payment(_verification(order))
    assert paid.status == PaymentStatus.PAID
    assert paid.effects_synced is False


async def test_conditional_writes_follow_transition_table():
    assert allowed_sources(PaymentStatus.PAID) == {PaymentStatus.CREATED, PaymentStatus.PENDING}
    assert allowed_sources(PaymentStatus.PENDING) == {PaymentStatus.CREATED}
    assert allowed_sources(PaymentStatus.REFUNDED) == {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED}
    assert allowed_sources(PaymentStatus.CREATED) == frozenset()
    assert not can_transition(PaymentStatus.FAILED, PaymentStatus.PAID)
    assert not can_transition(PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED)
