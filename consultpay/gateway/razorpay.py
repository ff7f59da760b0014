"""Razorpay gateway. The SDK is blocking, so calls run in a worker thread."""

import asyncio
from typing import Any, Callable

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from consultpay.core.config import Settings
from consultpay.core.exceptions import GatewayRejected, GatewayUnavailable
from consultpay.gateway.base import GatewayOrder, GatewayRefund, GatewayTransientError, PaymentGateway


class RazorpayGateway(PaymentGateway):
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._key_id = settings.razorpay_key_id
        if client is None and settings.razorpay_key_id and settings.razorpay_key_secret:
            client = razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))
        self._client = client

    @property
    def key_id(self) -> str:
        return self._key_id

    def _require_client(self) -> Any:
        if self._client is None:
            raise GatewayUnavailable("Payments not configured")
        return self._client

    async def _call(self, fn: Callable[..., dict], *args: Any) -> dict:
        try:
            return await asyncio.to_thread(fn, *args)
        except BadRequestError as e:
            raise GatewayRejected(str(e) or "Gateway rejected the request") from e
        except (ServerError, GatewayError, requests.RequestException) as e:
            raise GatewayTransientError(str(e) or e.__class__.__name__) from e

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict[str, str]
    ) -> GatewayOrder:
        data = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        order = await self._call(self._require_client().order.create, data)
        return GatewayOrder(
            id=order["id"],
            amount=order["amount"],
            currency=order["currency"],
            receipt=order.get("receipt"),
            status=order.get("status", "created"),
            created_at=order.get("created_at"),
        )

    async def refund(self, payment_id: str, amount: int, notes: dict[str, str]) -> GatewayRefund:
        refund = await self._call(self._require_client().payment.refund, payment_id, {"amount": amount, "notes": notes})
        return GatewayRefund(
            id=refund["id"],
            payment_id=refund.get("payment_id", payment_id),
            amount=refund.get("amount", amount),
            status=refund.get("status", "processed"),
            raw=refund,
        )


def get_payment_gateway(settings: Settings) -> PaymentGateway:
    return RazorpayGateway(settings)
