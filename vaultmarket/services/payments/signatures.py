"""Authenticity checks for payment provider callbacks.

Both checks run before any order state is read or written, and both fail
closed when the shared secret is not configured.
"""

import hashlib
import hmac
import json
import math
from decimal import Decimal

import stripe


class SignatureError(Exception):
    """Callback could not be authenticated."""


def js_number(value: float) -> str:
    """Format a float the way JavaScript's `Number.prototype.toString` does.

    NOWPayments signs the output of `JSON.stringify`, which writes `1` for
    `1.0` and `0.00005` for `5e-05`.
    """

    if math.isnan(value) or math.isinf(value):
        return "null"
    if value == 0:
        return "0"
    sign, digits, exponent = Decimal(repr(value)).normalize().as_tuple()
    prefix = "-" if sign else ""
    mantissa = "".join(str(digit) for digit in digits)
    k = len(mantissa)
    n = exponent + k
    if k <= n <= 21:
        return prefix + mantissa + "0" * (n - k)
    if 0 < n <= 21:
        return f"{prefix}{mantissa[:n]}.{mantissa[n:]}"
    if -6 < n <= 0:
        return f"{prefix}0.{'0' * -n}{mantissa}"
    e = n - 1
    exp = f"e{'+' if e >= 0 else '-'}{abs(e)}"
    if k == 1:
        return prefix + mantissa + exp
    return f"{prefix}{mantissa[0]}.{mantissa[1:]}{exp}"


def js_stringify(value) -> str:
    """Compact JSON text matching `JSON.stringify` for parsed JSON values."""

    if isinstance(value, dict):
        return "{" + ",".join(f"{js_stringify(str(key))}:{js_stringify(item)}" for key, item in value.items()) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(js_stringify(item) for item in value) + "]"
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return js_number(value)
    raise TypeError(f"unsupported JSON value: {type(value).__name__}")


def nowpayments_signature(body: dict, secret: str) -> str:
    """HMAC-SHA512 hex digest over the body with its top-level keys sorted."""

    canonical = js_stringify(dict(sorted(body.items())))
    return hmac.new(secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha512).hexdigest()


def verify_nowpayments_signature(body: dict, signature: str | None, secret: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = nowpayments_signature(body, secret).encode("ascii")
    return hmac.compare_digest(expected, signature.encode("utf-8"))


def verify_stripe_event(payload: bytes, signature_header: str | None, secret: str | None) -> dict:
    """Verify a Stripe delivery and return the event as a plain dict.

    Raises `SignatureError` for a missing header, missing secret, malformed
    payload or a signature mismatch.
    """

    if not secret:
        raise SignatureError("stripe webhook secret is not configured")
    if not signature_header:
        raise SignatureError("missing stripe-signature header")
    try:
        stripe.Webhook.construct_event(payload, signature_header, secret)
        return json.loads(payload)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        raise SignatureError(str(exc)) from exc
