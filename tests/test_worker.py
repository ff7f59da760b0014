"""Reconciliation job and the unsynced-payments sweep."""

import pytest
from arq import Retry

from consultpay.schemas.payments import CreateOrderSpec
from consultpay.worker.tasks import get_redis_settings, reconcile_payment_effects, run_sweep_unsynced_payments

pytestmark = pytest.mark.asyncio


async def _paid_with_failed_effects(core, collaborator):
    order = await core.orders.create_order(
        CreateOrderSpec(amount=1500, consultant_id="c1", client_email="a@b.com", session_id="sess_1")
    )
    collaborator.fail_next = 1
    return await core.state_machine.apply_captured_payment(order.gateway_order_id, "pay_1")


async def test_reconcile_job_syncs_effects(core, collaborator, store):
    order = await _paid_with_failed_effects(core, collaborator)
    await reconcile_payment_effects({"payment_core": core, "job_try": 1}, order.id)
    assert collaborator.paid == [order.id]
    assert (await store.get_order(order.id)).effects_synced is True


async def test_reconcile_job_retries_then_dead_letters(core, collaborator, store):
    order = await _paid_with_failed_effects(core, collaborator)
    collaborator.fail_next = 2
    with pytest.raises(Retry):
        await reconcile_payment_effects({"payment_core": core, "job_try": 1}, order.id)
    with pytest.raises(RuntimeError):
        await reconcile_payment_effects({"payment_core": core, "job_try": 5, "job_id": "reconcile:x"}, order.id)
    assert store.failed_jobs[0]["job_name"] == "reconcile_payment_effects"
    assert store.failed_jobs[0]["job_id"] == "reconcile:x"
    assert store.failed_jobs[0]["attempts"] == 5
    assert store.failed_jobs[0]["order_id"] == order.id


async def test_sweep_picks_up_unsynced_orders(core, collaborator, store):
    order = await _paid_with_failed_effects(core, collaborator)
    core.settings.reconcile_sweep_min_age_seconds = 0
    assert await run_sweep_unsynced_payments(core) == 1
    assert (await store.get_order(order.id)).effects_synced is True
    assert await run_sweep_unsynced_payments(core) == 0


async def test_sweep_skips_recent_orders(core, collaborator):
    await _paid_with_failed_effects(core, collaborator)
    assert await run_sweep_unsynced_payments(core) == 0


def _redis(url, settings):
    return get_redis_settings(settings.model_copy(update={"redis_url": url}))


async def test_redis_settings_from_url(settings):
    rs = _redis("redis://:pw@cache.internal:6380/2", settings)
    assert (rs.host, rs.port, rs.password, rs.database) == ("cache.internal", 6380, "pw", 2)
