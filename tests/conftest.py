"""Shared fixtures: in-memory SQLite schema, seeded users/listing, settlement wiring."""

import os

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["OTEL_ENABLED"] = "false"
os.environ["RATE_LIMITER_BACKEND"] = "memory"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vaultmarket.common.db import Base
from vaultmarket.common.dispatch import InlineDispatcher
from vaultmarket.services.ledger import models as ledger_models  # noqa: F401
from vaultmarket.services.ledger.service import LedgerService
from vaultmarket.services.marketplace.models import Listing, User
from vaultmarket.services.marketplace.schemas import CreateOrderParams, ShippingAddressIn
from vaultmarket.services.marketplace.service import SettlementService
from vaultmarket.services.notification import models as notification_models  # noqa: F401
from vaultmarket.services.notification.email import EmailClient
from vaultmarket.services.notification.service import NotificationService
from vaultmarket.services.payments.providers import ProviderCheckout

BUYER_ID = "user-buyer"
SELLER_ID = "user-seller"
ADMIN_ID = "user-admin"
STRANGER_ID = "user-stranger"
LISTING_ID = "listing-1"
LISTING_PRICE = 10000


class RecordingEmailClient(EmailClient):
    """Builds real message bodies but records them instead of sending."""

    def __init__(self) -> None:
        super().__init__(api_key="re_test", from_email="The Vault <noreply@test>", base_url="http://vault.test")
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, html: str) -> bool:
        self.sent.append((to, subject, html))
        return True

    def subjects(self) -> list[str]:
        return [subject for _, subject, _ in self.sent]


class FakeGateway:
    """Checkout opener that records orders instead of calling a provider."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.calls = []

    def create_checkout(self, order, listing) -> ProviderCheckout:
        self.calls.append((order.id, listing.id))
        reference = f"{self.prefix}_{len(self.calls)}"
        return ProviderCheckout(url=f"https://pay.test/{reference}", reference=reference)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    with factory() as db:
        db.add_all(
            [
                User(id=BUYER_ID, email="buyer@test", name="Bea Buyer"),
                User(id=SELLER_ID, email="seller@test", name="Sam Seller"),
                User(id=ADMIN_ID, email="admin@test", name="Ada Admin", role="admin"),
                User(id=STRANGER_ID, email="stranger@test", name=None),
            ]
        )
        db.flush()
        db.add(
            Listing(
                id=LISTING_ID,
                seller_id=SELLER_ID,
                title="Vintage Camera",
                description="Works great",
                price=LISTING_PRICE,
                status="active",
            )
        )
        db.commit()
    return factory


@pytest.fixture
def email():
    return RecordingEmailClient()


@pytest.fixture
def gateways():
    return {"stripe": FakeGateway("cs_test"), "crypto": FakeGateway("np")}


@pytest.fixture
def settlement(session_factory, email, gateways):
    return SettlementService(
        session_factory,
        ledger=LedgerService(session_factory, service_name="test"),
        notifications=NotificationService(session_factory, service_name="test"),
        email=email,
        dispatcher=InlineDispatcher(),
        gateways=gateways,
        fee_bps=500,
        service_name="test",
    )


def shipping_address() -> ShippingAddressIn:
    return ShippingAddressIn(
        full_name="Bea Buyer",
        line1="1 Main St",
        city="Springfield",
        state="IL",
        postal_code="62701",
    )


@pytest.fixture
def pending_order(settlement, session_factory):
    """A checkout order awaiting payment."""

    with session_factory() as db:
        order = settlement.create_order_with_shipping(
            db,
            CreateOrderParams(
                listing_id=LISTING_ID,
                buyer_id=BUYER_ID,
                seller_id=SELLER_ID,
                total_amount=LISTING_PRICE,
                shipping_address=shipping_address(),
                payment_method="crypto",
            ),
        )
        db.commit()
        return order


@pytest.fixture
def paid_order(settlement, pending_order, email):
    """A paid order with the seller's payout held as pending funds."""

    assert settlement.confirm_payment(pending_order.id, crypto_payment_id="np-1")
    email.sent.clear()
    return pending_order
