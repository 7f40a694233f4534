"""
Data models for wallet balances, AMM quotes and transaction packages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional


@dataclass(frozen=True)
class NodeConnection:
    """Handle to a JSON-RPC node plus the URL it was opened with."""
    w3: Any
    url: str
    chain_id: Optional[int] = None


@dataclass(frozen=True)
class ConnectResult:
    """Outcome of a connect attempt: a connection or the error that prevented it."""
    connection: Optional[NodeConnection] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.connection is not None and self.error is None


@dataclass(frozen=True)
class WatchedToken:
    """ERC-20 token queried by the balance loader."""
    symbol: str
    decimals: int
    contract_address: str


@dataclass(frozen=True)
class TokenBalance:
    """Balance of one watched token in its smallest unit."""
    symbol: str
    decimals: int
    balance: int


@dataclass
class WalletDetails:
    """Native and token balances for an address."""
    address: str
    native_balance: int = 0
    tokens: List[TokenBalance] = field(default_factory=list)
    loaded_at: datetime = field(default_factory=datetime.now)
    error_message: Optional[str] = None


@dataclass(frozen=True)
class PairInfo:
    """Token addresses of a Uniswap V2 pair, in the pair contract's order."""
    pair_address: str
    token0: str
    token1: str


@dataclass(frozen=True)
class ReservesSnapshot:
    """Pair reserves read from a single getReserves() call."""
    reserve0: int
    reserve1: int


@dataclass(frozen=True)
class SwapQuote:
    """Result of a forward or reverse constant-product quote."""
    amount_in: int
    amount_out: int
    reserve0: int
    reserve1: int
    price_impact_percent: Decimal
    effective_price: Decimal


@dataclass(frozen=True)
class TokenOption:
    """A token selectable in the swap form."""
    symbol: str
    decimals: int
    balance: int = 0
    is_native: bool = False


class QuoteMode(str, Enum):
    FORWARD = "forward"
    REVERSE = "reverse"


@dataclass(frozen=True)
class QuoteRequestFingerprint:
    """Memo key for the parameters of the last issued quote request.

    Amounts compare as text, so "1.0" and "1" are different fingerprints.
    """
    mode: QuoteMode
    amount_text: str
    from_token_index: int
    to_token_index: int


@dataclass(frozen=True)
class QuoteRequest:
    """Everything a background worker needs to fetch one quote."""
    fingerprint: QuoteRequestFingerprint
    pair_address: str
    token_in: str
    amount: int


@dataclass(frozen=True)
class TransactionPackage:
    """Unsigned transaction description ready for display and QR encoding."""
    display_text: str = ""
    qr_payload: str = ""
    format: str = "EIP-681"
    raw_hex: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
