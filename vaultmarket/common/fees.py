"""Platform fee split on integer minor-unit amounts."""

from pydantic import BaseModel

from vaultmarket.common.config import settings

BPS_DENOMINATOR = 10_000


class FeeSplit(BaseModel):
    """Platform fee and seller payout for one order total."""

    platform_fee_bps: int
    platform_fee_amount: int
    seller_payout_amount: int


def split_fees(total_amount: int, fee_bps: int | None = None) -> FeeSplit:
    """Split `total_amount` into platform fee and seller payout.

    The fee is `total * bps / 10000` rounded half-up in integer arithmetic and
    the payout is the remainder, so the two always sum to the total.
    """

    if fee_bps is None:
        fee_bps = settings.platform_fee_bps
    if total_amount < 0:
        raise ValueError("total_amount must be non-negative")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise ValueError("fee_bps must be between 0 and 10000")
    platform_fee = (total_amount * fee_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR
    return FeeSplit(
        platform_fee_bps=fee_bps,
        platform_fee_amount=platform_fee,
        seller_payout_amount=total_amount - platform_fee,
    )
