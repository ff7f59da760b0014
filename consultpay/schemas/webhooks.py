"""Razorpay webhook events as a tagged variant. Decode only verified bodies."""

import hashlib
from typing import Any, Literal, Union

import orjson
from pydantic import BaseModel, Field, ValidationError

from consultpay.core.exceptions import InvalidWebhookPayload


class _Event(BaseModel):
    event_id: str
    event_type: str
    created_at: int | None = None


class PaymentAuthorizedEvent(_Event):
    event_type: Literal["payment.authorized"] = "payment.authorized"
    gateway_order_id: str
    gateway_payment_id: str
    amount: int | None = None
    method: str | None = None


class PaymentCapturedEvent(_Event):
    event_type: Literal["payment.captured"] = "payment.captured"
    gateway_order_id: str
    gateway_payment_id: str
    amount: int | None = None
    method: str | None = None


class PaymentFailedEvent(_Event):
    event_type: Literal["payment.failed"] = "payment.failed"
    gateway_order_id: str
    gateway_payment_id: str | None = None
    error_code: str | None = None
    error_description: str | None = None


class RefundProcessedEvent(_Event):
    event_type: Literal["refund.processed"] = "refund.processed"
    gateway_refund_id: str
    gateway_payment_id: str
    amount: int
    status: str = "processed"
    reason: str | None = None


class UnknownWebhookEvent(_Event):
    payload: dict[str, Any] = Field(default_factory=dict)


WebhookEvent = Union[
    PaymentAuthorizedEvent,
    PaymentCapturedEvent,
    PaymentFailedEvent,
    RefundProcessedEvent,
    UnknownWebhookEvent,
]


def _entity(data: dict[str, Any], name: str) -> dict[str, Any]:
    """payload.<name>.entity, or {} when any level is missing or not an object."""
    node: Any = data
    for key in ("payload", name, "entity"):
        node = node.get(key) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


def _payment_fields(data: dict[str, Any]) -> dict[str, Any]:
    payment = _entity(data, "payment")
    return {
        "gateway_order_id": payment.get("order_id"),
        "gateway_payment_id": payment.get("id"),
        "amount": payment.get("amount"),
        "method": payment.get("method"),
    }


def _failed_fields(data: dict[str, Any]) -> dict[str, Any]:
    payment = _entity(data, "payment")
    return {
        "gateway_order_id": payment.get("order_id"),
        "gateway_payment_id": payment.get("id"),
        "error_code": payment.get("error_code"),
        "error_description": payment.get("error_description"),
    }


def _refund_fields(data: dict[str, Any]) -> dict[str, Any]:
    refund = _entity(data, "refund")
    notes = refund.get("notes") or {}
    return {
        "gateway_refund_id": refund.get("id"),
        "gateway_payment_id": refund.get("payment_id"),
        "amount": refund.get("amount"),
        "status": refund.get("status") or "processed",
        "reason": notes.get("reason") if isinstance(notes, dict) else None,
    }


_DECODERS = {
    "payment.authorized": (PaymentAuthorizedEvent, _payment_fields),
    "payment.captured": (PaymentCapturedEvent, _payment_fields),
    "payment.failed": (PaymentFailedEvent, _failed_fields),
    "refund.processed": (RefundProcessedEvent, _refund_fields),
}


def derive_event_id(raw_payload: bytes, data: dict[str, Any], header_event_id: str | None = None) -> str:
    """Header id, then payload id, then a digest of the raw body."""
    if header_event_id and header_event_id.strip():
        return header_event_id.strip()
    payload_id = data.get("id")
    if isinstance(payload_id, str) and payload_id:
        return payload_id
    return "sha256:" + hashlib.sha256(raw_payload).hexdigest()


def parse_webhook_event(raw_payload: bytes, header_event_id: str | None = None) -> WebhookEvent:
    try:
        data = orjson.loads(raw_payload)
    except orjson.JSONDecodeError as e:
        raise InvalidWebhookPayload(f"Webhook body is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidWebhookPayload("Webhook body must be a JSON object")
    event_type = data.get("event")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidWebhookPayload("Webhook body has no event type")

    event_id = derive_event_id(raw_payload, data, header_event_id)
    common = {"event_id": event_id, "event_type": event_type, "created_at": data.get("created_at")}
    decoder = _DECODERS.get(event_type)
    if decoder is None:
        return UnknownWebhookEvent(payload=data, **common)
    model, extract = decoder
    try:
        return model(**common, **extract(data))
    except ValidationError as e:
        raise InvalidWebhookPayload(f"Malformed {event_type} event") from e
