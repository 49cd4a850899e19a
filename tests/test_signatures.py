"""Provider callback authentication."""

import hashlib
import hmac
import json
import time

import pytest

from vaultmarket.services.payments.signatures import (
    SignatureError,
    js_number,
    nowpayments_signature,
    verify_nowpayments_signature,
    verify_stripe_event,
)

IPN_SECRET = "ipn-secret"
STRIPE_SECRET = "whsec_test"


def stripe_header(payload: bytes, secret: str = STRIPE_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_nowpayments_signature_sorts_top_level_keys():
    body = {"payment_status": "finished", "order_id": "o-1", "payment_id": 42}
    expected = hmac.new(
        IPN_SECRET.encode(),
        b'{"order_id":"o-1","payment_id":42,"payment_status":"finished"}',
        hashlib.sha512,
    ).hexdigest()

    assert nowpayments_signature(body, IPN_SECRET) == expected
    assert nowpayments_signature(dict(reversed(list(body.items()))), IPN_SECRET) == expected


def test_nowpayments_signature_keeps_non_ascii():
    body = {"order_description": "Café lens"}
    expected = hmac.new(
        IPN_SECRET.encode(),
        '{"order_description":"Café lens"}'.encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()
    assert nowpayments_signature(body, IPN_SECRET) == expected


def test_nowpayments_verification():
    body = {"order_id": "o-1", "payment_status": "finished"}
    signature = nowpayments_signature(body, IPN_SECRET)

    assert verify_nowpayments_signature(body, signature, IPN_SECRET)
    assert not verify_nowpayments_signature({**body, "payment_status": "failed"}, signature, IPN_SECRET)
    assert not verify_nowpayments_signature(body, signature, "other-secret")
    assert not verify_nowpayments_signature(body, None, IPN_SECRET)


def test_nowpayments_fails_closed_without_secret():
    body = {"order_id": "o-1"}
    assert not verify_nowpayments_signature(body, nowpayments_signature(body, ""), None)
    assert not verify_nowpayments_signature(body, nowpayments_signature(body, ""), "")


@pytest.mark.parametrize(
    ("value", "text"),
    [
        (1.0, "1"),
        (0.00005, "0.00005"),
        (0.000001, "0.000001"),
        (1e-7, "1e-7"),
        (123.456, "123.456"),
        (-2.5, "-2.5"),
        (100.0, "100"),
        (1e21, "1e+21"),
        (1.5e22, "1.5e+22"),
        (0.0, "0"),
    ],
)
def test_js_number_formatting(value, text):
    """Floats are written the way JavaScript prints numbers."""

    assert js_number(value) == text


def test_nowpayments_signature_over_provider_number_text():
    """An IPN with small and whole-number floats verifies against the provider's JSON text."""

    signed_text = b'{"actually_paid":0.00005,"order_id":"o1","pay_amount":1,"payment_status":"finished"}'
    signature = hmac.new(IPN_SECRET.encode(), signed_text, hashlib.sha512).hexdigest()
    body = json.loads('{"payment_status":"finished","pay_amount":1.0,"order_id":"o1","actually_paid":0.00005}')

    assert verify_nowpayments_signature(body, signature, IPN_SECRET)


def test_nowpayments_non_ascii_signature_header_is_rejected():
    """A header with non-ASCII characters fails verification instead of raising."""

    body = {"order_id": "o-1", "payment_status": "finished"}
    assert not verify_nowpayments_signature(body, "ÿ" * 128, IPN_SECRET)


def test_stripe_event_verified():
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed"}).encode()
    event = verify_stripe_event(payload, stripe_header(payload), STRIPE_SECRET)
    assert event["id"] == "evt_1"


@pytest.mark.parametrize(
    ("header", "secret"),
    [
        (None, STRIPE_SECRET),
        ("t=1,v1=deadbeef", STRIPE_SECRET),
        ("garbage", STRIPE_SECRET),
        ("valid", None),
    ],
)
def test_stripe_rejections(header, secret):
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed"}).encode()
    if header == "valid":
        header = stripe_header(payload)
    with pytest.raises(SignatureError):
        verify_stripe_event(payload, header, secret)


def test_stripe_rejects_other_secret_and_stale_timestamp():
    payload = b'{"id": "evt_1"}'
    with pytest.raises(SignatureError):
        verify_stripe_event(payload, stripe_header(payload, secret="whsec_other"), STRIPE_SECRET)
    with pytest.raises(SignatureError):
        verify_stripe_event(payload, stripe_header(payload, timestamp=int(time.time()) - 3600), STRIPE_SECRET)
