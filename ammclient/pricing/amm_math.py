"""Integer constant-product math in raw token units."""

from decimal import ROUND_DOWN, Decimal

from ..core.errors import PricingOverflow

U64_MAX = 2**64 - 1
BPS_DENOMINATOR = 10_000


def _check_u64(name: str, value: int) -> None:
    if value < 0 or value > U64_MAX:
        raise PricingOverflow(f"{name}={value} is outside the u64 range")


def constant_product_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Output of a swap against ``x * y = k`` with no fee.

    ``floor(amount_in * reserve_out / (reserve_in + amount_in))``. A
    non-positive input or an empty output reserve yields 0.

    Raises:
        PricingOverflow: If an operand or ``reserve_in + amount_in`` exceeds u64
    """
    if amount_in <= 0:
        return 0
    _check_u64("amount_in", amount_in)
    _check_u64("reserve_in", reserve_in)
    _check_u64("reserve_out", reserve_out)

    denominator = reserve_in + amount_in
    if denominator > U64_MAX:
        raise PricingOverflow(
            f"reserve_in + amount_in = {denominator} overflows u64"
        )
    if reserve_out == 0:
        return 0

    return amount_in * reserve_out // denominator


def tolerance_from_bps(slippage_bps: int) -> Decimal:
    """Fraction of the quoted output to accept, e.g. 200 bps -> 0.98."""
    if not 0 <= slippage_bps < BPS_DENOMINATOR:
        raise ValueError(f"Invalid slippage: {slippage_bps} bps")
    return Decimal(BPS_DENOMINATOR - slippage_bps) / BPS_DENOMINATOR


def min_amount_out(amount_out: int, tolerance: Decimal | float | str) -> int:
    """``floor(amount_out * tolerance)`` computed exactly in decimal.

    Raises:
        ValueError: If ``tolerance`` is not in (0, 1]
    """
    fraction = Decimal(str(tolerance))
    if not Decimal(0) < fraction <= Decimal(1):
        raise ValueError(f"Slippage tolerance must be in (0, 1], got {tolerance}")
    if amount_out < 0:
        raise ValueError(f"Invalid amount_out: {amount_out}")
    return int((Decimal(amount_out) * fraction).to_integral_value(rounding=ROUND_DOWN))


def spot_price(
    reserve_quote: int, reserve_token: int, quote_decimals: int, token_decimals: int
) -> Decimal:
    """Quote-token units per one token unit at the current reserves.

    Returns 0 for an empty token reserve.
    """
    if reserve_token == 0:
        return Decimal(0)
    quote_ui = Decimal(reserve_quote).scaleb(-quote_decimals)
    token_ui = Decimal(reserve_token).scaleb(-token_decimals)
    return quote_ui / token_ui
