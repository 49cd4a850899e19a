"""Translate verified provider callbacks into order transitions.

Signature checks happen in the HTTP layer; by the time a callback reaches
this service it is authentic. Redeliveries are expected and harmless: the
conditional update inside `SettlementService` lets exactly one delivery
through and the rest are counted as duplicates.
"""

from vaultmarket.common.config import settings
from vaultmarket.common.errors import BadRequestError
from vaultmarket.common.logging import event_id_ctx, logger, order_id_ctx
from vaultmarket.common.metrics import duplicate_webhooks_skipped_total, webhook_events_total

STRIPE = "stripe"
NOWPAYMENTS = "nowpayments"

STRIPE_PAID_EVENTS = frozenset({"checkout.session.completed", "checkout.session.async_payment_succeeded"})
STRIPE_FAILED_EVENTS = frozenset({"checkout.session.expired", "checkout.session.async_payment_failed"})

NOWPAYMENTS_PAID_STATUSES = frozenset({"finished", "confirmed"})
NOWPAYMENTS_FAILED_STATUSES = frozenset({"expired", "failed"})


class PaymentWebhookService:
    """Applies payment outcomes reported by Stripe and NOWPayments."""

    def __init__(self, settlement, service_name: str | None = None) -> None:
        self.settlement = settlement
        self.service_name = service_name or settings.service_name

    def _record(self, provider: str, outcome: str) -> None:
        webhook_events_total.labels(service=self.service_name, provider=provider, outcome=outcome).inc()

    def _apply(self, provider: str, applied: bool, outcome: str, order_id: str) -> str:
        if not applied:
            duplicate_webhooks_skipped_total.labels(service=self.service_name, provider=provider).inc()
            logger.info("webhook_duplicate_skipped provider=%s order_id=%s outcome=%s", provider, order_id, outcome)
            outcome = "duplicate"
        self._record(provider, outcome)
        return outcome

    def handle_stripe_event(self, event: dict) -> str:
        """Apply one verified Stripe event. Returns the recorded outcome."""

        event_type = event.get("type", "")
        event_id_ctx.set(event.get("id") or "")
        session = (event.get("data") or {}).get("object") or {}
        order_id = (session.get("metadata") or {}).get("orderId")

        if event_type not in STRIPE_PAID_EVENTS and event_type not in STRIPE_FAILED_EVENTS:
            self._record(STRIPE, "ignored")
            return "ignored"
        if not order_id:
            logger.warning("stripe_event_without_order type=%s", event_type)
            self._record(STRIPE, "ignored")
            return "ignored"
        order_id_ctx.set(order_id)

        if event_type in STRIPE_PAID_EVENTS:
            if session.get("payment_status") == "unpaid":
                # Delayed payment methods complete the session before funds settle.
                logger.info("stripe_session_awaiting_payment order_id=%s", order_id)
                self._record(STRIPE, "awaiting_payment")
                return "awaiting_payment"
            applied = self.settlement.confirm_payment(order_id, payment_intent_id=session.get("payment_intent"))
            return self._apply(STRIPE, applied, "paid", order_id)

        applied = self.settlement.cancel_unpaid(order_id, reason=event_type.rsplit(".", 1)[-1])
        return self._apply(STRIPE, applied, "cancelled", order_id)

    def handle_nowpayments_ipn(self, body: dict) -> str:
        """Apply one verified NOWPayments IPN. Returns the recorded outcome."""

        order_id = body.get("order_id")
        if not order_id:
            raise BadRequestError("Missing order_id")
        order_id = str(order_id)
        order_id_ctx.set(order_id)
        payment_id = body.get("payment_id")
        event_id_ctx.set(str(payment_id or ""))
        status = body.get("payment_status")

        if status in NOWPAYMENTS_PAID_STATUSES:
            applied = self.settlement.confirm_payment(
                order_id,
                crypto_payment_id=str(payment_id) if payment_id is not None else None,
                crypto_transaction_hash=body.get("payin_hash"),
            )
            return self._apply(NOWPAYMENTS, applied, "paid", order_id)
        if status in NOWPAYMENTS_FAILED_STATUSES:
            applied = self.settlement.cancel_unpaid(order_id, reason=f"crypto_{status}")
            return self._apply(NOWPAYMENTS, applied, "cancelled", order_id)

        logger.info("nowpayments_status_ignored order_id=%s status=%s", order_id, status)
        self._record(NOWPAYMENTS, "ignored")
        return "ignored"
