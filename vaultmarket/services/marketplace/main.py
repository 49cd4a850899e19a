"""Marketplace API: checkout, order actions, disputes, balances and payouts.

Callers are identified by the `X-User-Id` header set by the upstream auth
proxy.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Header

from vaultmarket.common.config import settings
from vaultmarket.common.db import SessionLocal
from vaultmarket.common.dispatch import BackgroundDispatcher
from vaultmarket.common.errors import RateLimitedError, install_error_handlers
from vaultmarket.common.http import install_request_middleware
from vaultmarket.common.logging import configure_logging, logger
from vaultmarket.common.metrics import metrics_response, rate_limited_total
from vaultmarket.common.rate_limit import build_rate_limiter
from vaultmarket.common.startup import log_startup_config
from vaultmarket.common.tracing import instrument_app, setup_tracing
from vaultmarket.services.marketplace.schemas import (
    BalanceResponse,
    CheckoutRequest,
    CheckoutResponse,
    DisputeCreateRequest,
    DisputeResolveRequest,
    DisputeResponse,
    OfferAcceptRequest,
    OrderActionsResponse,
    OrderResponse,
    PayoutCreateRequest,
    PayoutResponse,
    StatusUpdateRequest,
)
from vaultmarket.services.marketplace.service import SettlementService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "DATABASE_URL",
        "REDIS_URL",
        "PLATFORM_FEE_BPS",
        "CHECKOUT_RATE_LIMIT_PER_MINUTE",
        "RATE_LIMITER_BACKEND",
        "STRIPE_API_KEY",
        "NOWPAYMENTS_API_KEY",
    ],
)
dispatcher = BackgroundDispatcher(max_workers=settings.side_effect_workers)
service = SettlementService.from_settings(settings, SessionLocal, dispatcher)
limiter = build_rate_limiter(settings, settings.checkout_rate_limit_per_minute)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Drain queued side effects on shutdown."""

    yield
    dispatcher.shutdown(wait=True)


app = FastAPI(title="The Vault Marketplace", lifespan=lifespan)
install_request_middleware(app, settings.service_name)
install_error_handlers(app)
instrument_app(app)


def enforce_checkout_limit(user_id: str) -> None:
    if not limiter.check_and_consume(f"checkout:{user_id}"):
        rate_limited_total.labels(service=settings.service_name, scope="checkout").inc()
        logger.info("checkout_rate_limited user_id=%s", user_id)
        raise RateLimitedError("Too many checkout attempts. Please wait a minute and try again.")


def _checkout(req: CheckoutRequest, user_id: str, method: str) -> CheckoutResponse:
    enforce_checkout_limit(user_id)
    order, url = service.start_checkout(req.listing_id, user_id, req.shipping_address, method)
    return CheckoutResponse(order_id=order.id, url=url)


@app.post("/checkout/stripe", response_model=CheckoutResponse)
def checkout_stripe(req: CheckoutRequest, x_user_id: str = Header()):
    """Create a pending order and a Stripe Checkout Session for it."""

    return _checkout(req, x_user_id, "stripe")


@app.post("/checkout/crypto", response_model=CheckoutResponse)
def checkout_crypto(req: CheckoutRequest, x_user_id: str = Header()):
    """Create a pending order and a NOWPayments invoice for it."""

    return _checkout(req, x_user_id, "crypto")


@app.post("/listings/{listing_id}/offers/accept", response_model=OrderResponse)
def accept_offer(listing_id: str, req: OfferAcceptRequest, x_user_id: str = Header()):
    """Seller accepts a buyer's offer; the order awaits the buyer's payment."""

    order = service.accept_offer(listing_id, x_user_id, req.buyer_id, req.offer_amount)
    return OrderResponse.model_validate(order)


@app.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, x_user_id: str = Header()):
    return OrderResponse.model_validate(service.get_order(order_id, x_user_id))


@app.get("/orders/{order_id}/actions", response_model=OrderActionsResponse)
def order_actions(order_id: str, x_user_id: str = Header()):
    """Statuses the caller may move the order to right now."""

    order, actions = service.allowed_actions(order_id, x_user_id)
    return OrderActionsResponse(order_id=order.id, status=order.status, actions=actions)


@app.post("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(order_id: str, req: StatusUpdateRequest, x_user_id: str = Header()):
    """Ship, confirm delivery, or cancel an order."""

    order = service.update_status(order_id, x_user_id, req.status, req.tracking_number, req.shipping_carrier)
    return OrderResponse.model_validate(order)


@app.post("/orders/{order_id}/disputes", response_model=DisputeResponse)
def open_dispute(order_id: str, req: DisputeCreateRequest, x_user_id: str = Header()):
    dispute = service.open_dispute(order_id, x_user_id, req.reason, req.description)
    return DisputeResponse.model_validate(dispute)


@app.post("/admin/disputes/{dispute_id}/resolve", response_model=DisputeResponse)
def resolve_dispute(dispute_id: str, req: DisputeResolveRequest, x_user_id: str = Header()):
    """Admin-only: refund the buyer or complete the sale."""

    dispute = service.resolve_dispute(dispute_id, x_user_id, req.outcome, req.resolution)
    return DisputeResponse.model_validate(dispute)


@app.get("/balance", response_model=BalanceResponse)
def get_balance(x_user_id: str = Header()):
    return BalanceResponse.model_validate(service.ledger.get_balance(x_user_id))


@app.post("/payouts", response_model=PayoutResponse)
def create_payout(req: PayoutCreateRequest, x_user_id: str = Header()):
    """Withdraw available funds."""

    payout = service.ledger.request_payout(x_user_id, req.amount, req.method)
    return PayoutResponse.model_validate(payout)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
