"""Marketplace HTTP surface: identity header, error mapping and checkout limits."""

import pytest
from fastapi.testclient import TestClient

from vaultmarket.common.rate_limit import InMemoryRateLimiter
from vaultmarket.services.marketplace import main as market_main

from conftest import ADMIN_ID, BUYER_ID, LISTING_ID, SELLER_ID, STRANGER_ID


@pytest.fixture
def client(monkeypatch, settlement):
    monkeypatch.setattr(market_main, "service", settlement)
    monkeypatch.setattr(market_main, "limiter", InMemoryRateLimiter(limit=2))
    return TestClient(market_main.app)


def _as(user_id):
    return {"x-user-id": user_id}


CHECKOUT_BODY = {
    "listing_id": LISTING_ID,
    "shipping_address": {
        "full_name": "Bea Buyer",
        "line1": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "postal_code": "62701",
    },
}


def test_checkout_returns_provider_url(client):
    resp = client.post("/checkout/crypto", json=CHECKOUT_BODY, headers=_as(BUYER_ID))
    assert resp.status_code == 200
    assert resp.json()["url"] == "https://pay.test/np_1"

    order = client.get(f"/orders/{resp.json()['order_id']}", headers=_as(BUYER_ID)).json()
    assert order["status"] == "pending"
    assert order["payment_method"] == "crypto"
    assert order["seller_payout_amount"] == 9500


def test_checkout_is_rate_limited_per_user(client):
    for _ in range(2):
        assert client.post("/checkout/stripe", json=CHECKOUT_BODY, headers=_as(BUYER_ID)).status_code == 200

    resp = client.post("/checkout/stripe", json=CHECKOUT_BODY, headers=_as(BUYER_ID))
    assert resp.status_code == 429
    assert resp.json()["code"] == "TOO_MANY_REQUESTS"

    # Budgets are per caller.
    assert client.post("/checkout/stripe", json=CHECKOUT_BODY, headers=_as(ADMIN_ID)).status_code == 200


def test_checkout_of_own_listing_maps_to_400(client):
    resp = client.post("/checkout/stripe", json=CHECKOUT_BODY, headers=_as(SELLER_ID))
    assert resp.status_code == 400
    assert resp.json() == {"code": "BAD_REQUEST", "detail": "Cannot purchase your own listing"}


def test_missing_identity_header_is_rejected(client):
    assert client.post("/checkout/stripe", json=CHECKOUT_BODY).status_code == 422


def test_ship_then_deliver_over_http(client, paid_order):
    resp = client.post(
        f"/orders/{paid_order.id}/status",
        json={"status": "shipped", "tracking_number": "1Z999", "shipping_carrier": "ups"},
        headers=_as(SELLER_ID),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "shipped"
    assert resp.json()["tracking_number"] == "1Z999"

    actions = client.get(f"/orders/{paid_order.id}/actions", headers=_as(BUYER_ID)).json()
    assert actions == {"order_id": paid_order.id, "status": "shipped", "actions": ["delivered", "disputed"]}

    resp = client.post(f"/orders/{paid_order.id}/status", json={"status": "delivered"}, headers=_as(BUYER_ID))
    assert resp.status_code == 200

    balance = client.get("/balance", headers=_as(SELLER_ID)).json()
    assert balance == {"user_id": SELLER_ID, "pending_amount": 0, "available_amount": 9500, "total_earned": 9500}


def test_illegal_status_change_maps_to_400(client, pending_order):
    resp = client.post(f"/orders/{pending_order.id}/status", json={"status": "shipped"}, headers=_as(SELLER_ID))
    assert resp.status_code == 400
    assert resp.json()["code"] == "BAD_REQUEST"


def test_status_outside_user_actions_is_unprocessable(client, paid_order):
    resp = client.post(f"/orders/{paid_order.id}/status", json={"status": "paid"}, headers=_as(SELLER_ID))
    assert resp.status_code == 422


def test_stranger_gets_403(client, paid_order):
    assert client.get(f"/orders/{paid_order.id}", headers=_as(STRANGER_ID)).status_code == 403
    resp = client.post(f"/orders/{paid_order.id}/status", json={"status": "shipped"}, headers=_as(STRANGER_ID))
    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"


def test_unknown_order_gets_404(client):
    assert client.get("/orders/missing", headers=_as(BUYER_ID)).status_code == 404


def test_dispute_flow_over_http(client, paid_order):
    resp = client.post(
        f"/orders/{paid_order.id}/disputes",
        json={"reason": "item_not_received", "description": "Nothing arrived after weeks"},
        headers=_as(BUYER_ID),
    )
    assert resp.status_code == 200
    dispute_id = resp.json()["id"]

    resp = client.post(f"/admin/disputes/{dispute_id}/resolve", json={"outcome": "refunded"}, headers=_as(SELLER_ID))
    assert resp.status_code == 403

    resp = client.post(
        f"/admin/disputes/{dispute_id}/resolve",
        json={"outcome": "refunded", "resolution": "Tracking never updated"},
        headers=_as(ADMIN_ID),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "resolved_buyer"
    assert client.get(f"/orders/{paid_order.id}", headers=_as(BUYER_ID)).json()["status"] == "refunded"


def test_offer_acceptance_over_http(client):
    resp = client.post(
        f"/listings/{LISTING_ID}/offers/accept",
        json={"buyer_id": BUYER_ID, "offer_amount": 8000},
        headers=_as(SELLER_ID),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["total_amount"], body["platform_fee_amount"], body["seller_payout_amount"]) == (8000, 400, 7600)


def test_payout_requires_available_funds(client, paid_order):
    resp = client.post("/payouts", json={"amount": 1000, "method": "stripe"}, headers=_as(SELLER_ID))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Insufficient available balance"


def test_metrics_and_health(client):
    assert client.get("/health").json() == {"ok": True}
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "order_transitions_total" in resp.text
