"""Session/quotation bookkeeping owned by the booking domain, invoked after payment events."""

from abc import ABC, abstractmethod
from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorDatabase

from consultpay.core.logging import get_logger
from consultpay.schemas.payments import PaymentOrder

log = get_logger(__name__)


class BookingCollaborator(ABC):
    @abstractmethod
    async def mark_paid(self, order: PaymentOrder) -> None:
        """Mark the order's session/quotation as paid. Must be safe to repeat."""
        ...

    @abstractmethod
    async def mark_refunded(self, order: PaymentOrder, amount: int) -> None:
        ...


class MongoBookingCollaborator(BookingCollaborator):
    """Writes to the booking service's `sessions` and `quotations` collections."""

    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self._db = database

    async def mark_paid(self, order: PaymentOrder) -> None:
        now = datetime.utcnow()
        if order.session_id:
            await self._db["sessions"].update_one(
                {"_id": order.session_id},
                {
                    "$set": {
                        "paymentStatus": "PAID",
                        "paymentId": order.gateway_payment_id,
                        "paymentMethod": order.payment_method,
                        "status": "CONFIRMED",
                        "updatedAt": now,
                    }
                },
            )
        if order.quotation_id:
            await self._db["quotations"].update_one(
                {"_id": order.quotation_id},
                {"$set": {"status": "ACCEPTED", "respondedAt": now, "updatedAt": now}},
            )
        log.info(
            "booking_marked_paid",
            order_id=order.id,
            session_id=order.session_id,
            quotation_id=order.quotation_id,
        )

    async def mark_refunded(self, order: PaymentOrder, amount: int) -> None:
        if not order.session_id:
            return
        fully = order.refunded_amount >= order.amount
        update = {"paymentStatus": "REFUNDED" if fully else "PAID", "updatedAt": datetime.utcnow()}
        if fully:
            update["status"] = "RETURNED"
        await self._db["sessions"].update_one({"_id": order.session_id}, {"$set": update})
        log.info("booking_marked_refunded", order_id=order.id, session_id=order.session_id, amount=amount)


class LoggingBookingCollaborator(BookingCollaborator):
    """Used with the memory backend, where no booking store exists."""

    async def mark_paid(self, order: PaymentOrder) -> None:
        log.info("booking_marked_paid", order_id=order.id, session_id=order.session_id, quotation_id=order.quotation_id)

    async def mark_refunded(self, order: PaymentOrder, amount: int) -> None:
        log.info("booking_marked_refunded", order_id=order.id, session_id=order.session_id, amount=amount)
