"""Listing purchase guard, checkout order creation and accepted offers."""

import pytest

from vaultmarket.common.errors import BadRequestError, ForbiddenError, NotFoundError
from vaultmarket.services.marketplace.models import Listing, Order, ShippingAddress

from conftest import BUYER_ID, LISTING_ID, LISTING_PRICE, SELLER_ID, STRANGER_ID, shipping_address


def _set_listing_status(session_factory, status):
    with session_factory() as db:
        db.get(Listing, LISTING_ID).status = status
        db.commit()


def test_guard_accepts_active_listing_from_other_user(settlement, session_factory):
    """An active listing can be bought by another user."""

    with session_factory() as db:
        listing = settlement.validate_listing_for_purchase(db, LISTING_ID, BUYER_ID)
    assert listing.price == LISTING_PRICE


def test_guard_rejects_missing_listing(settlement, session_factory):
    """Buying a listing that does not exist is not found."""

    with session_factory() as db, pytest.raises(NotFoundError) as exc:
        settlement.validate_listing_for_purchase(db, "missing", BUYER_ID)
    assert exc.value.message == "Listing not found"


@pytest.mark.parametrize("status", ["sold", "cancelled", "draft"])
def test_guard_rejects_inactive_listing(settlement, session_factory, status):
    """Only active listings can be bought."""

    _set_listing_status(session_factory, status)
    with session_factory() as db, pytest.raises(BadRequestError) as exc:
        settlement.validate_listing_for_purchase(db, LISTING_ID, BUYER_ID)
    assert exc.value.message == "Listing is no longer available"


def test_guard_rejects_own_listing(settlement, session_factory):
    """Sellers cannot buy their own listing."""

    with session_factory() as db, pytest.raises(BadRequestError) as exc:
        settlement.validate_listing_for_purchase(db, LISTING_ID, SELLER_ID)
    assert exc.value.message == "Cannot purchase your own listing"


def test_stripe_checkout_stores_session_reference(settlement, session_factory, gateways):
    """Stripe checkout stores the session id and shipping address."""

    order, url = settlement.start_checkout(LISTING_ID, BUYER_ID, shipping_address(), "stripe")

    assert url == "https://pay.test/cs_test_1"
    assert gateways["stripe"].calls == [(order.id, LISTING_ID)]
    with session_factory() as db:
        stored = db.get(Order, order.id)
        address = db.get(ShippingAddress, stored.shipping_address_id)
    assert stored.status == "pending"
    assert stored.payment_method == "stripe"
    assert stored.checkout_session_id == "cs_test_1"
    assert (stored.platform_fee_amount, stored.seller_payout_amount) == (500, 9500)
    assert address.postal_code == "62701"


def test_crypto_checkout_stores_payment_reference(settlement, session_factory):
    """Crypto checkout stores the provider payment id."""

    order, _ = settlement.start_checkout(LISTING_ID, BUYER_ID, shipping_address(), "crypto")
    with session_factory() as db:
        assert db.get(Order, order.id).crypto_payment_id == "np_1"


def test_checkout_on_own_listing_creates_nothing(settlement, session_factory, gateways):
    """A rejected checkout creates no order and calls no provider."""

    with pytest.raises(BadRequestError):
        settlement.start_checkout(LISTING_ID, SELLER_ID, shipping_address(), "stripe")
    assert gateways["stripe"].calls == []
    with session_factory() as db:
        assert db.query(Order).count() == 0


def test_unsupported_payment_method(settlement):
    """Unknown payment methods are a bad request."""

    with pytest.raises(BadRequestError):
        settlement.start_checkout(LISTING_ID, BUYER_ID, shipping_address(), "paypal")


def test_accepted_offer_uses_fee_split(settlement, session_factory):
    """An accepted offer creates a pending order split on the offer amount."""

    order = settlement.accept_offer(LISTING_ID, SELLER_ID, BUYER_ID, 7777)

    with session_factory() as db:
        stored = db.get(Order, order.id)
    assert stored.status == "pending"
    assert stored.total_amount == 7777
    assert stored.platform_fee_bps == 500
    assert stored.platform_fee_amount == 389
    assert stored.seller_payout_amount == 7388
    assert stored.payment_method is None


def test_only_seller_accepts_offers(settlement):
    """Only the listing's seller may accept an offer."""

    with pytest.raises(ForbiddenError):
        settlement.accept_offer(LISTING_ID, STRANGER_ID, BUYER_ID, 5000)


def test_offer_on_sold_listing_is_rejected(settlement, session_factory):
    """Offers cannot be accepted on sold listings."""

    _set_listing_status(session_factory, "sold")
    with pytest.raises(BadRequestError):
        settlement.accept_offer(LISTING_ID, SELLER_ID, BUYER_ID, 5000)


def test_offer_from_seller_to_self_is_rejected(settlement):
    """A seller cannot accept an offer as their own buyer."""

    with pytest.raises(BadRequestError):
        settlement.accept_offer(LISTING_ID, SELLER_ID, SELLER_ID, 5000)
