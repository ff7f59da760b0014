"""Per-consultant payment analytics, recomputed from orders on every call."""

from datetime import datetime, timezone

from consultpay.core.config import Settings
from consultpay.core.exceptions import InvalidAnalyticsWindow
from consultpay.schemas.payments import PaymentAnalytics, PaymentOrder, PaymentStatus
from consultpay.store.base import PaymentStore


def summarize(orders: list[PaymentOrder], count_refunded_as_success: bool = True) -> PaymentAnalytics:
    """Aggregate a snapshot of orders.

    Amounts are gross captured amounts of the successful orders; their refunds
    are reported separately in `refunded_amount` and subtracted only in
    `net_amount`, so `net_amount` never goes negative.
    """
    successful_statuses = {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED}
    if count_refunded_as_success:
        successful_statuses.add(PaymentStatus.REFUNDED)

    successful = [o for o in orders if o.status in successful_statuses]
    failed = sum(1 for o in orders if o.status == PaymentStatus.FAILED)
    total_amount = sum(o.amount for o in successful)
    refunded_amount = sum(o.refunded_amount for o in successful)
    total = len(orders)
    return PaymentAnalytics(
        total_amount=total_amount,
        net_amount=total_amount - refunded_amount,
        total_transactions=total,
        successful_payments=len(successful),
        failed_payments=failed,
        refunded_amount=refunded_amount,
        average_transaction_value=total_amount / len(successful) if successful else 0.0,
        success_rate=len(successful) / total if total else 0.0,
    )


def _as_naive_utc(value: datetime) -> datetime:
    # orders are stored with naive UTC timestamps
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AnalyticsAggregator:
    def __init__(self, store: PaymentStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def get_payment_analytics(self, consultant_id: str, start: datetime, end: datetime) -> PaymentAnalytics:
        start, end = _as_naive_utc(start), _as_naive_utc(end)
        if start >= end:
            raise InvalidAnalyticsWindow()
        # single read: status and refunded_amount come from the same document version
        orders = await self._store.list_orders(consultant_id, start, end)
        return summarize(orders, self._settings.analytics_count_refunded_as_success)
