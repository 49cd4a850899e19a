"""Transactional email through the Resend HTTP API.

Sending never raises: without an API key messages are logged and skipped,
and provider errors are logged and dropped.
"""

from dataclasses import dataclass
from html import escape

import httpx

from vaultmarket.common.config import CommonSettings
from vaultmarket.common.logging import logger

RESEND_URL = "https://api.resend.com/emails"


def format_currency(cents: int) -> str:
    return f"${cents / 100:.2f}"


@dataclass(frozen=True)
class OrderDetails:
    """What the order emails need to know about an order."""

    order_id: str
    listing_title: str
    total_amount: int
    buyer_name: str
    seller_name: str
    tracking_number: str | None = None
    shipping_carrier: str | None = None


def _details_table(rows: list[tuple[str, str]]) -> str:
    cells = "".join(f"<tr><td>{escape(label)}</td><td>{escape(value)}</td></tr>" for label, value in rows)
    return f"<table>{cells}</table>"


def _wrap(heading: str, intro: str, rows: list[tuple[str, str]], button_label: str, link: str) -> str:
    return (
        f"<h2>{escape(heading)}</h2><p>{escape(intro)}</p>{_details_table(rows)}"
        f'<p><a href="{escape(link)}">{escape(button_label)}</a></p>'
    )


class EmailClient:
    """Builds order emails and posts them to the email provider."""

    def __init__(
        self,
        api_key: str | None,
        from_email: str,
        base_url: str,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client

    @classmethod
    def from_settings(cls, config: CommonSettings) -> "EmailClient":
        return cls(config.resend_api_key, config.email_from, config.public_base_url)

    def send(self, to: str, subject: str, html: str) -> bool:
        """Deliver one message. Returns whether the provider accepted it."""

        if not self.api_key:
            logger.info("email_skipped reason=no_api_key subject=%s", subject)
            return False
        try:
            client = self.http_client or httpx.Client(timeout=5.0)
            try:
                resp = client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.from_email, "to": [to], "subject": subject, "html": html},
                )
                resp.raise_for_status()
            finally:
                if self.http_client is None:
                    client.close()
        except httpx.HTTPError as exc:
            logger.error("email_send_failed subject=%s error=%s", subject, exc)
            return False
        return True

    def _order_link(self, order_id: str) -> str:
        return f"{self.base_url}/orders/{order_id}"

    def send_order_confirmation(self, to: str, order: OrderDetails) -> bool:
        """Sent to the buyer once payment is confirmed."""

        html = _wrap(
            "Order Confirmed",
            "Your payment went through. The seller has been notified and will ship your item soon.",
            [
                ("Item", order.listing_title),
                ("Total", format_currency(order.total_amount)),
                ("Seller", order.seller_name),
                ("Order ID", order.order_id),
            ],
            "View Order",
            self._order_link(order.order_id),
        )
        return self.send(to, f"Order Confirmed - {order.listing_title}", html)

    def send_payment_received(self, to: str, order: OrderDetails) -> bool:
        """Sent to the seller once payment is confirmed."""

        html = _wrap(
            "Payment Received",
            "Payment has been confirmed for your listing. Please ship the item as soon as possible.",
            [
                ("Item", order.listing_title),
                ("Amount", format_currency(order.total_amount)),
                ("Buyer", order.buyer_name),
                ("Order ID", order.order_id),
            ],
            "View Sale",
            self._order_link(order.order_id),
        )
        return self.send(to, f"Payment Received - {order.listing_title}", html)

    def send_order_shipped(self, to: str, order: OrderDetails) -> bool:
        """Sent to the buyer when the seller ships, with tracking if known."""

        rows = [("Item", order.listing_title), ("Seller", order.seller_name), ("Order ID", order.order_id)]
        if order.tracking_number:
            rows.append(("Tracking #", order.tracking_number))
        if order.shipping_carrier:
            rows.append(("Carrier", order.shipping_carrier.upper()))
        intro = "The seller has shipped your item. " + (
            "You can track your package using the details below."
            if order.tracking_number
            else "Check your order page for updates."
        )
        html = _wrap("Your Order Has Shipped!", intro, rows, "Track Order", self._order_link(order.order_id))
        return self.send(to, f"Order Shipped - {order.listing_title}", html)

    def send_funds_available(self, to: str, order: OrderDetails) -> bool:
        """Sent to the seller once delivery is confirmed and funds are released."""

        html = _wrap(
            "Delivery Confirmed",
            "Delivery has been confirmed. Your earnings are now available for payout.",
            [
                ("Item", order.listing_title),
                ("Sale Amount", format_currency(order.total_amount)),
                ("Buyer", order.buyer_name),
                ("Order ID", order.order_id),
            ],
            "View Earnings",
            f"{self.base_url}/wallet",
        )
        return self.send(to, f"Delivery Confirmed - {order.listing_title}", html)

    def send_dispute_opened(self, to: str, order: OrderDetails, reason: str) -> bool:
        """Sent to the seller when the buyer files a dispute."""

        html = _wrap(
            "Dispute Opened",
            "The buyer has opened a dispute on this order. An admin will review it.",
            [("Item", order.listing_title), ("Reason", reason.replace("_", " ")), ("Order ID", order.order_id)],
            "View Order",
            self._order_link(order.order_id),
        )
        return self.send(to, f"Dispute Opened - {order.listing_title}", html)

    def send_dispute_resolved(self, to: str, order: OrderDetails, outcome: str) -> bool:
        """Sent to both parties when an admin resolves a dispute."""

        html = _wrap(
            "Dispute Resolved",
            f"The dispute on this order has been resolved. Final order status: {outcome}.",
            [("Item", order.listing_title), ("Order ID", order.order_id)],
            "View Order",
            self._order_link(order.order_id),
        )
        return self.send(to, f"Dispute Resolved - {order.listing_title}", html)
