"""Checkout and webhook HMAC signatures."""

import pytest

from consultpay.core.security import compute_signature, verify_payment_signature, verify_webhook_signature

SECRET = "s3cret"


def test_valid_payment_signature():
    sig = compute_signature("order_1|pay_1", SECRET)
    assert verify_payment_signature("order_1", "pay_1", sig, SECRET) is True


def test_any_flipped_byte_is_rejected():
    sig = compute_signature("order_1|pay_1", SECRET)
    for i in range(len(sig)):
        flipped = "0" if sig[i] != "0" else "1"
        tampered = sig[:i] + flipped + sig[i + 1:]
        assert verify_payment_signature("order_1", "pay_1", tampered, SECRET) is False


def test_signature_bound_to_order_and_payment():
    sig = compute_signature("order_1|pay_1", SECRET)
    assert verify_payment_signature("order_2", "pay_1", sig, SECRET) is False
    assert verify_payment_signature("order_1", "pay_2", sig, SECRET) is False
    assert verify_payment_signature("order_1", "pay_1", sig, "other") is False


@pytest.mark.parametrize(
    "order_id,payment_id,signature,secret",
    [
        ("", "pay_1", "abc", SECRET),
        ("order_1", "", "abc", SECRET),
        ("order_1", "pay_1", "", SECRET),
        ("order_1", "pay_1", None, SECRET),
        (None, "pay_1", "abc", SECRET),
        ("order_1", "pay_1", "abc", ""),
        ("order_1", "pay_1", "ünïcode", SECRET),
    ],
)
def test_malformed_input_returns_false(order_id, payment_id, signature, secret):
    assert verify_payment_signature(order_id, payment_id, signature, secret) is False


def test_webhook_signature_over_raw_bytes():
    body = b'{"event": "payment.captured", "payload": {}}'
    sig = compute_signature(body, SECRET)
    assert verify_webhook_signature(body, sig, SECRET) is True
    # same JSON, different bytes
    reserialized = b'{"event":"payment.captured","payload":{}}'
    assert verify_webhook_signature(reserialized, sig, SECRET) is False


def test_webhook_signature_rejects_non_bytes():
    sig = compute_signature(b"{}", SECRET)
    assert verify_webhook_signature("{}", sig, SECRET) is False
