"""Razorpay HMAC-SHA256 signatures for checkout confirmations and webhooks."""

import hashlib
import hmac


def compute_signature(message: bytes | str, secret: str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(message: bytes | str, signature: str, secret: str) -> bool:
    if not secret or not isinstance(signature, str) or not signature:
        return False
    try:
        expected = compute_signature(message, secret)
        return hmac.compare_digest(expected, signature)
    except (TypeError, ValueError, UnicodeError):
        # compare_digest rejects non-ASCII str input
        return False


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Checkout signature: HMAC over "order_id|payment_id" with the key secret."""
    if not isinstance(order_id, str) or not isinstance(payment_id, str):
        return False
    if not order_id or not payment_id:
        return False
    return _matches(f"{order_id}|{payment_id}", signature, secret)


def verify_webhook_signature(raw_payload: bytes, signature: str, secret: str) -> bool:
    """Webhook signature over the raw body; call before parsing."""
    if not isinstance(raw_payload, (bytes, bytearray)):
        return False
    return _matches(bytes(raw_payload), signature, secret)
