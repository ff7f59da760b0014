"""Explicit wiring of the payment core. Opened at process start, closed at shutdown."""

from dataclasses import dataclass

from consultpay.core.config import Settings
from consultpay.core.locks import OrderLocks, get_order_locks
from consultpay.core.logging import get_logger
from consultpay.core.task_queue import TaskQueue, get_task_queue
from consultpay.gateway.base import PaymentGateway
from consultpay.services.analytics import AnalyticsAggregator
from consultpay.services.collaborators import (
    BookingCollaborator,
    LoggingBookingCollaborator,
    MongoBookingCollaborator,
)
from consultpay.services.orders import OrderManager
from consultpay.services.refunds import RefundManager
from consultpay.services.state_machine import PaymentStateMachine
from consultpay.services.webhooks import WebhookDispatcher
from consultpay.store.base import PaymentStore

log = get_logger(__name__)


@dataclass
class PaymentCore:
    settings: Settings
    store: PaymentStore
    gateway: PaymentGateway
    locks: OrderLocks
    task_queue: TaskQueue
    collaborator: BookingCollaborator
    orders: OrderManager
    state_machine: PaymentStateMachine
    refunds: RefundManager
    analytics: AnalyticsAggregator
    webhooks: WebhookDispatcher

    async def start(self) -> None:
        await self.store.open()
        log.info("payment_core_started", backend=self.settings.payment_store_backend)

    async def aclose(self) -> None:
        await self.task_queue.close()
        await self.locks.close()
        await self.store.close()
        log.info("payment_core_stopped")


def _default_store_and_collaborator(settings: Settings) -> tuple[PaymentStore, BookingCollaborator]:
    if settings.payment_store_backend == "memory":
        from consultpay.store.memory import InMemoryPaymentStore
        return InMemoryPaymentStore(settings), LoggingBookingCollaborator()
    from consultpay.db.init import create_client
    from consultpay.store.mongo import MongoPaymentStore
    client = create_client(settings)
    return (
        MongoPaymentStore(settings, client),
        MongoBookingCollaborator(client[settings.mongodb_db_name]),
    )


def build_payment_core(
    settings: Settings,
    *,
    store: PaymentStore | None = None,
    gateway: PaymentGateway | None = None,
    collaborator: BookingCollaborator | None = None,
    task_queue: TaskQueue | None = None,
    locks: OrderLocks | None = None,
) -> PaymentCore:
    if store is None or collaborator is None:
        default_store, default_collaborator = _default_store_and_collaborator(settings)
        store = store or default_store
        collaborator = collaborator or default_collaborator
    if gateway is None:
        from consultpay.gateway.razorpay import get_payment_gateway
        gateway = get_payment_gateway(settings)
    task_queue = task_queue or get_task_queue(settings)
    locks = locks or get_order_locks(settings)

    state_machine = PaymentStateMachine(store, collaborator, task_queue, settings)
    refunds = RefundManager(store, gateway, state_machine, collaborator, locks, settings)
    return PaymentCore(
        settings=settings,
        store=store,
        gateway=gateway,
        locks=locks,
        task_queue=task_queue,
        collaborator=collaborator,
        orders=OrderManager(store, gateway, locks, settings),
        state_machine=state_machine,
        refunds=refunds,
        analytics=AnalyticsAggregator(store, settings),
        webhooks=WebhookDispatcher(store, state_machine, refunds, settings),
    )
