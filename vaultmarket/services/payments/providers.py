"""Checkout openers for the two payment rails.

Card payments go through a Stripe Checkout Session; crypto payments through a
NOWPayments invoice. Both return the hosted payment URL plus the provider
reference stored on the order.
"""

from dataclasses import dataclass
from typing import Protocol

import httpx
import stripe

from vaultmarket.common.config import CommonSettings
from vaultmarket.common.errors import PaymentProviderError
from vaultmarket.common.logging import logger


@dataclass(frozen=True)
class ProviderCheckout:
    url: str
    reference: str


class CheckoutGateway(Protocol):
    def create_checkout(self, order, listing) -> ProviderCheckout: ...


class StripeCheckoutGateway:
    """Opens Stripe Checkout Sessions; the webhook finds the order via metadata."""

    def __init__(self, api_key: str | None, public_base_url: str) -> None:
        self.api_key = api_key
        self.public_base_url = public_base_url.rstrip("/")

    def create_checkout(self, order, listing) -> ProviderCheckout:
        if not self.api_key:
            raise PaymentProviderError("Card payments are not configured")
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": "usd",
                            "product_data": {
                                "name": listing.title,
                                "description": (listing.description or listing.title)[:500],
                            },
                            "unit_amount": order.total_amount,
                        },
                        "quantity": 1,
                    }
                ],
                metadata={"orderId": order.id, "listingId": listing.id},
                success_url=f"{self.public_base_url}/orders/{order.id}?success=true",
                cancel_url=f"{self.public_base_url}/listings/{listing.id}?cancelled=true",
            )
        except stripe.StripeError as exc:
            logger.error("stripe_checkout_failed order_id=%s error=%s", order.id, exc)
            raise PaymentProviderError("Could not start card checkout") from exc
        return ProviderCheckout(url=session.url, reference=session.id)


class NowPaymentsGateway:
    """Creates NOWPayments invoices priced in USD."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        public_base_url: str,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.public_base_url = public_base_url.rstrip("/")
        self.http_client = http_client

    def create_checkout(self, order, listing) -> ProviderCheckout:
        if not self.api_key:
            raise PaymentProviderError("Crypto payments are not configured")
        body = {
            "price_amount": order.total_amount / 100,
            "price_currency": "usd",
            "order_id": order.id,
            "order_description": listing.title,
            "ipn_callback_url": f"{self.public_base_url}/webhooks/nowpayments",
            "success_url": f"{self.public_base_url}/orders/{order.id}?success=true",
            "cancel_url": f"{self.public_base_url}/listings/{listing.id}?cancelled=true",
        }
        client = self.http_client or httpx.Client(timeout=10.0)
        try:
            resp = client.post(f"{self.base_url}/invoice", headers={"x-api-key": self.api_key}, json=body)
            resp.raise_for_status()
            invoice = resp.json()
        except httpx.HTTPError as exc:
            logger.error("nowpayments_invoice_failed order_id=%s error=%s", order.id, exc)
            raise PaymentProviderError("Could not start crypto checkout") from exc
        finally:
            if self.http_client is None:
                client.close()
        return ProviderCheckout(url=invoice["invoice_url"], reference=str(invoice["id"]))


def build_gateways(config: CommonSettings) -> dict[str, CheckoutGateway]:
    """Map each payment method to its configured gateway."""

    return {
        "stripe": StripeCheckoutGateway(config.stripe_api_key, config.public_base_url),
        "crypto": NowPaymentsGateway(
            config.nowpayments_api_key,
            config.nowpayments_base_url,
            config.public_base_url,
        ),
    }
