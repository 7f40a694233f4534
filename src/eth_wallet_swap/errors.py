"""
Exception types raised by the node, quote and packaging layers.
"""


class WalletSwapError(Exception):
    """Base class for all errors raised by this package."""


class NodeConnectionError(WalletSwapError):
    """Connecting to the JSON-RPC endpoint failed (DNS, TLS, timeout, bad URL)."""

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"failed to connect to {url}: {cause}")
        self.url = url
        self.cause = cause


class BalanceFetchError(WalletSwapError):
    """A balance read failed."""


class PairReadError(WalletSwapError):
    """token0()/token1() returned an error or a malformed word."""


class ReservesError(WalletSwapError):
    """getReserves() failed or returned too little data."""


class InsufficientLiquidityError(WalletSwapError):
    """The desired output cannot be taken from the pool."""

    def __init__(self, amount_out: int, reserve_out: int):
        super().__init__("insufficient liquidity for desired output amount")
        self.amount_out = amount_out
        self.reserve_out = reserve_out


class TokenNotInPairError(WalletSwapError):
    def __init__(self, token_in: str, token0: str, token1: str):
        super().__init__(
            f"tokenIn {token_in} is not in pair (token0: {token0}, token1: {token1})")
        self.token_in = token_in


class UnsupportedPairError(WalletSwapError):
    """No known on-chain pool for the requested symbol pair."""

    def __init__(self, from_symbol: str, to_symbol: str):
        super().__init__(f"Swap pair {from_symbol}/{to_symbol} not supported yet")
        self.from_symbol = from_symbol
        self.to_symbol = to_symbol


class PackagingError(WalletSwapError):
    """A transaction could not be packaged (usually an unparseable amount)."""


class NoRPCClientError(WalletSwapError):
    """An operation needed a node connection but none is established."""

    def __init__(self, message: str = "no RPC client"):
        super().__init__(message)
