"""ARQ job definitions: downstream reconciliation for captured payments."""

import uuid
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlparse

from arq import Retry
from arq.connections import RedisSettings

from consultpay.core.config import Settings, get_settings
from consultpay.core.logging import get_logger
from consultpay.runtime import PaymentCore, build_payment_core

log = get_logger(__name__)

RECONCILE_MAX_TRIES = 5
RECONCILE_RETRY_DELAY_SECONDS = 30


async def _run_with_dlq(
    ctx: dict[str, Any],
    job_name: str,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
    order_id: str | None = None,
) -> Any:
    """Run coroutine; on exception persist to the dead-letter store then re-raise."""
    core: PaymentCore = ctx["payment_core"]
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await core.store.record_failed_job(
            job_name=job_name,
            job_id=fid,
            args=args,
            kwargs=kwargs,
            reason=str(e)[:2000],
            attempts=int(ctx.get("job_try") or 1),
            order_id=order_id,
        )
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


async def reconcile_payment_effects(ctx: dict[str, Any], order_id: str) -> None:
    """Re-apply session/quotation bookkeeping for a PAID order whose effects failed."""
    core: PaymentCore = ctx["payment_core"]
    job_try = int(ctx.get("job_try") or 1)
    log.info("job_start", job="reconcile_payment_effects", order_id=order_id, job_try=job_try)
    if job_try < RECONCILE_MAX_TRIES:
        try:
            await core.state_machine.sync_downstream_effects(order_id)
        except Exception as e:
            log.warning("job_retry", job="reconcile_payment_effects", order_id=order_id, reason=str(e))
            raise Retry(defer=RECONCILE_RETRY_DELAY_SECONDS * job_try) from e
    else:
        await _run_with_dlq(
            ctx,
            "reconcile_payment_effects",
            [order_id],
            {},
            core.state_machine.sync_downstream_effects(order_id),
            order_id=order_id,
        )
    log.info("job_done", job="reconcile_payment_effects", order_id=order_id)


async def run_sweep_unsynced_payments(core: PaymentCore) -> int:
    """Sync captured orders whose effects never landed (e.g. the enqueue itself failed)."""
    settings = core.settings
    older_than = datetime.utcnow() - timedelta(seconds=settings.reconcile_sweep_min_age_seconds)
    orders = await core.store.list_unsynced_captured_orders(older_than, settings.reconcile_sweep_batch)
    if orders:
        log.info("sweep_unsynced_payments", count=len(orders))
    synced = 0
    for order in orders:
        try:
            await core.state_machine.sync_downstream_effects(order.id)
            synced += 1
        except Exception as e:
            log.warning("sweep_order_failed", order_id=order.id, reason=str(e)[:500])
    return synced


# Cron: every few minutes
async def sweep_unsynced_payments(ctx: dict[str, Any]) -> int:
    core: PaymentCore = ctx["payment_core"]
    return await _run_with_dlq(ctx, "sweep_unsynced_payments", [], {}, run_sweep_unsynced_payments(core))


async def startup(ctx: dict) -> None:
    core = build_payment_core(get_settings())
    await core.start()
    ctx["payment_core"] = core


async def shutdown(ctx: dict) -> None:
    core: PaymentCore | None = ctx.get("payment_core")
    if core is not None:
        await core.aclose()


def get_redis_settings(settings: Settings | None = None) -> RedisSettings:
    s = settings or get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
