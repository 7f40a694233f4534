"""
Utility functions for addresses and token amounts.
"""

from decimal import Decimal, DecimalException, ROUND_DOWN, ROUND_HALF_EVEN, localcontext
import re
import logging
from typing import Union

logger = logging.getLogger(__name__)

# Enough digits for any uint256 scaled by up to 255 decimals
_PRECISION = 400

# Largest value an EVM word can hold
MAX_UINT256 = 2**256 - 1

_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')


def is_valid_ethereum_address(address: str) -> bool:
    """Check if a string is a 0x-prefixed, 40 hex character address."""
    if not address:
        return False
    return bool(_ADDRESS_RE.match(address))


def normalize_address(address: str) -> str:
    """Normalize an Ethereum address to lowercase with 0x prefix."""
    if not address:
        return ""

    address = address.lower()
    if not address.startswith('0x'):
        address = '0x' + address

    return address


def same_address(a: str, b: str) -> bool:
    return normalize_address(a) == normalize_address(b)


def shorten_address(address: str) -> str:
    """0x1234…abcd style display form."""
    if len(address) < 10:
        return address
    return f"{address[:6]}…{address[-4:]}"


def parse_units(amount: Union[str, Decimal], decimals: int) -> int:
    """Convert a decimal amount string into the token's smallest unit.

    Digits beyond the token's precision are truncated. Raises ValueError on
    text that is not a finite decimal number, including exponents too large
    to scale.
    """
    try:
        value = Decimal(str(amount).strip())
        if not value.is_finite():
            raise ValueError(f"invalid amount: {amount!r}")
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            scaled = value.scaleb(decimals)
            return int(scaled.to_integral_value(rounding=ROUND_DOWN))
    except DecimalException as e:
        raise ValueError(f"invalid amount: {amount!r}") from e


def units_to_decimal(amount: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(amount).scaleb(-decimals)


def format_units(amount: int, decimals: int, places: int = 6) -> str:
    """Format a smallest-unit integer with a fixed number of decimal places."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = Decimal(amount).scaleb(-decimals)
        quantum = Decimal(1).scaleb(-places)
        return f"{value.quantize(quantum, rounding=ROUND_HALF_EVEN):f}"


def format_eth(wei: int) -> str:
    return f"{format_units(wei or 0, 18, 6)} ETH"


def format_token(balance: int, decimals: int, symbol: str) -> str:
    return f"{format_units(balance or 0, decimals, 4)} {symbol}"
