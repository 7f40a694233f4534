"""
Constant-product (Uniswap V2) quote math.

Amounts are exact integers in each token's smallest unit. Decimal is used only
for the display values (effective price and price impact), never for amounts.
"""

from decimal import Decimal, localcontext
from enum import Enum
from typing import Optional, Tuple

from .errors import InsufficientLiquidityError, TokenNotInPairError
from .models import PairInfo, ReservesSnapshot, SwapQuote
from .utils import same_address, units_to_decimal

# 0.3% LP fee
FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000

HIGH_IMPACT_PERCENT = Decimal("1.0")
MODERATE_IMPACT_PERCENT = Decimal("0.5")

_DISPLAY_PRECISION = 50


class ImpactSeverity(str, Enum):
    NONE = "none"
    MODERATE = "moderate"
    HIGH = "high"


def quote_forward(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Output amount for selling `amount_in` into the pool.

    amountOut = amountIn*997*reserveOut / (reserveIn*1000 + amountIn*997)
    """
    if amount_in < 0 or reserve_in < 0 or reserve_out < 0:
        raise ValueError("amounts and reserves must be non-negative")

    amount_in_with_fee = amount_in * FEE_NUMERATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee
    if denominator == 0:
        return 0
    return numerator // denominator


def quote_reverse(amount_out: int, reserve_in: int, reserve_out: int) -> int:
    """Input amount required to receive `amount_out` from the pool.

    The result is rounded up by one so that feeding it back through
    quote_forward yields at least `amount_out`.
    """
    if amount_out < 0 or reserve_in < 0 or reserve_out < 0:
        raise ValueError("amounts and reserves must be non-negative")

    numerator = reserve_in * amount_out * FEE_DENOMINATOR
    denominator = (reserve_out - amount_out) * FEE_NUMERATOR
    if denominator <= 0:
        raise InsufficientLiquidityError(amount_out, reserve_out)
    return numerator // denominator + 1


def effective_price(amount_in: int, amount_out: int) -> Decimal:
    """amountOut / amountIn in raw units; zero for an empty input."""
    if amount_in <= 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = _DISPLAY_PRECISION
        return Decimal(amount_out) / Decimal(amount_in)


def price_impact_percent(amount_in: int, amount_out: int,
                         reserve_in: int, reserve_out: int) -> Decimal:
    """Signed deviation of the trade price from the pre-trade spot price, in percent."""
    if reserve_in <= 0 or reserve_out <= 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = _DISPLAY_PRECISION
        spot = Decimal(reserve_out) / Decimal(reserve_in)
        price = effective_price(amount_in, amount_out)
        return (spot - price) / spot * 100


def classify_price_impact(impact: Decimal) -> ImpactSeverity:
    if impact > HIGH_IMPACT_PERCENT:
        return ImpactSeverity.HIGH
    if impact > MODERATE_IMPACT_PERCENT:
        return ImpactSeverity.MODERATE
    return ImpactSeverity.NONE


def price_impact_warning(impact: Decimal) -> Optional[str]:
    severity = classify_price_impact(impact)
    if severity is ImpactSeverity.HIGH:
        return f"⚠ High price impact: {impact:.2f}%"
    if severity is ImpactSeverity.MODERATE:
        return f"⚠ Moderate price impact: {impact:.2f}%"
    return None


def resolve_reserves(token_in: str, pair: PairInfo,
                     reserves: ReservesSnapshot) -> Tuple[int, int]:
    """(reserveIn, reserveOut) for selling `token_in` into `pair`.

    Sides are matched by address; the pair contract decides token order.
    """
    if same_address(token_in, pair.token0):
        return reserves.reserve0, reserves.reserve1
    if same_address(token_in, pair.token1):
        return reserves.reserve1, reserves.reserve0
    raise TokenNotInPairError(token_in, pair.token0, pair.token1)


def _build_quote(amount_in: int, amount_out: int, reserve_in: int, reserve_out: int,
                 reserves: ReservesSnapshot) -> SwapQuote:
    return SwapQuote(
        amount_in=amount_in,
        amount_out=amount_out,
        reserve0=reserves.reserve0,
        reserve1=reserves.reserve1,
        price_impact_percent=price_impact_percent(
            amount_in, amount_out, reserve_in, reserve_out),
        effective_price=effective_price(amount_in, amount_out),
    )


def build_forward_quote(token_in: str, amount_in: int, pair: PairInfo,
                        reserves: ReservesSnapshot) -> SwapQuote:
    reserve_in, reserve_out = resolve_reserves(token_in, pair, reserves)
    amount_out = quote_forward(amount_in, reserve_in, reserve_out)
    return _build_quote(amount_in, amount_out, reserve_in, reserve_out, reserves)


def build_reverse_quote(token_in: str, amount_out: int, pair: PairInfo,
                        reserves: ReservesSnapshot) -> SwapQuote:
    reserve_in, reserve_out = resolve_reserves(token_in, pair, reserves)
    amount_in = quote_reverse(amount_out, reserve_in, reserve_out)
    return _build_quote(amount_in, amount_out, reserve_in, reserve_out, reserves)


def format_swap_quote(quote: Optional[SwapQuote], in_symbol: str, out_symbol: str,
                      in_decimals: int, out_decimals: int) -> str:
    """Human-readable one-line summary of a quote."""
    if quote is None:
        return "No quote available"

    amount_in = units_to_decimal(quote.amount_in, in_decimals)
    amount_out = units_to_decimal(quote.amount_out, out_decimals)
    return (f"{amount_in:.4f} {in_symbol} → {amount_out:.4f} {out_symbol} "
            f"(impact: {quote.price_impact_percent:.2f}%)")
