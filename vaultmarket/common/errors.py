"""Domain error taxonomy and its HTTP mapping.

Services raise these before any write happens; the FastAPI apps translate
them into JSON responses carrying the error code and message.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vaultmarket.common.logging import logger


class MarketError(Exception):
    """Base class for rule violations surfaced to the caller verbatim."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class BadRequestError(MarketError):
    code = "BAD_REQUEST"
    status_code = 400


class ForbiddenError(MarketError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(MarketError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(MarketError):
    code = "CONFLICT"
    status_code = 409


class RateLimitedError(MarketError):
    code = "TOO_MANY_REQUESTS"
    status_code = 429


class PaymentProviderError(MarketError):
    """The card or crypto provider refused or failed to open a checkout."""

    code = "BAD_GATEWAY"
    status_code = 502


def install_error_handlers(app: FastAPI) -> None:
    """Register the `MarketError` -> JSON response translation on an app."""

    @app.exception_handler(MarketError)
    async def _market_error(_: Request, exc: MarketError) -> JSONResponse:
        logger.info("request_rejected code=%s detail=%s", exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": exc.message})
