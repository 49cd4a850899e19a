"""Payment provider webhook receiver.

Authenticates Stripe and NOWPayments callbacks and hands verified outcomes to
the settlement service. Unauthenticated deliveries get a 400 and never touch
order state.
"""

import json
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from vaultmarket.common.config import settings
from vaultmarket.common.db import SessionLocal
from vaultmarket.common.dispatch import BackgroundDispatcher
from vaultmarket.common.errors import install_error_handlers
from vaultmarket.common.http import install_request_middleware
from vaultmarket.common.logging import configure_logging, logger
from vaultmarket.common.metrics import metrics_response, webhook_signature_failures_total
from vaultmarket.common.startup import log_startup_config, warn_unverifiable_providers
from vaultmarket.common.tracing import instrument_app, setup_tracing
from vaultmarket.services.marketplace.service import SettlementService
from vaultmarket.services.payments.service import NOWPAYMENTS, STRIPE, PaymentWebhookService
from vaultmarket.services.payments.signatures import SignatureError, verify_nowpayments_signature, verify_stripe_event

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "DATABASE_URL", "STRIPE_WEBHOOK_SECRET", "NOWPAYMENTS_IPN_SECRET", "PUBLIC_BASE_URL"],
)
warn_unverifiable_providers(settings)
dispatcher = BackgroundDispatcher(max_workers=settings.side_effect_workers)
service = PaymentWebhookService(SettlementService.from_settings(settings, SessionLocal, dispatcher))


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Drain queued side effects on shutdown."""

    yield
    dispatcher.shutdown(wait=True)


app = FastAPI(title="The Vault Payment Webhooks", lifespan=lifespan)
install_request_middleware(app, settings.service_name)
install_error_handlers(app)
instrument_app(app)


def _reject(provider: str, reason: str) -> HTTPException:
    webhook_signature_failures_total.labels(service=settings.service_name, provider=provider).inc()
    logger.warning("webhook_rejected provider=%s reason=%s", provider, reason)
    return HTTPException(status_code=400, detail="Invalid signature")


@app.post("/webhooks/stripe")
async def stripe_webhook(request: Request, stripe_signature: str | None = Header(default=None)):
    """Apply checkout session outcomes reported by Stripe."""

    payload = await request.body()
    try:
        event = verify_stripe_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except SignatureError as exc:
        raise _reject(STRIPE, str(exc)) from exc
    await run_in_threadpool(service.handle_stripe_event, event)
    return {"received": True}


@app.post("/webhooks/nowpayments")
async def nowpayments_webhook(request: Request, x_nowpayments_sig: str | None = Header(default=None)):
    """Apply payment status updates from NOWPayments IPN callbacks."""

    payload = await request.body()
    try:
        body = json.loads(payload)
    except ValueError as exc:
        raise _reject(NOWPAYMENTS, "unparsable body") from exc
    if not isinstance(body, dict):
        raise _reject(NOWPAYMENTS, "body is not an object")
    if not verify_nowpayments_signature(body, x_nowpayments_sig, settings.nowpayments_ipn_secret):
        raise _reject(NOWPAYMENTS, "signature mismatch")
    await run_in_threadpool(service.handle_nowpayments_ipn, body)
    return {"received": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
