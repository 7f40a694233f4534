"""
Swap form state: which side the user typed, when to fetch a new quote, and how
a fetched quote is applied back onto the form.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from .amm import build_forward_quote, build_reverse_quote, price_impact_warning
from .errors import UnsupportedPairError
from .models import (
    NodeConnection,
    QuoteMode,
    QuoteRequest,
    QuoteRequestFingerprint,
    SwapQuote,
    TokenOption,
    WalletDetails,
)
from .node import DEFAULT_CALL_TIMEOUT, describe_error, require_connection
from .pairs import KNOWN_PAIRS, KnownPair, NATIVE_SYMBOL, get_pair, get_reserves, resolve_pair
from .utils import MAX_UINT256, format_units, parse_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuoteResult:
    """Outcome of one background quote fetch, tagged with its request fingerprint."""
    fingerprint: QuoteRequestFingerprint
    quote: Optional[SwapQuote] = None
    error: Optional[str] = None


def build_token_options(details: Optional[WalletDetails]) -> List[TokenOption]:
    """Native ETH first, then every token the wallet holds."""
    options = [TokenOption(
        symbol=NATIVE_SYMBOL,
        decimals=18,
        balance=details.native_balance if details else 0,
        is_native=True,
    )]
    if details:
        for token in details.tokens:
            options.append(TokenOption(
                symbol=token.symbol,
                decimals=token.decimals,
                balance=token.balance,
            ))
    return options


def _is_empty_amount(text: str) -> bool:
    return text == "" or text == "0"


class SwapQuoteOrchestrator:
    """State of the swap form and the rules for issuing quote requests.

    Only one of from_amount/to_amount is live at a time, chosen by `mode`.
    Request methods return a QuoteRequest to run in the background, or None
    when nothing needs fetching.
    """

    def __init__(self, tokens: Optional[List[TokenOption]] = None,
                 known_pairs: Dict[FrozenSet[str], KnownPair] = KNOWN_PAIRS):
        self.tokens: List[TokenOption] = list(tokens) if tokens else build_token_options(None)
        self.known_pairs = known_pairs

        self.from_token_index = 0
        self.to_token_index = 1 if len(self.tokens) > 1 else 0
        self.from_amount = ""
        self.to_amount = ""
        self.mode = QuoteMode.FORWARD

        self.quote: Optional[SwapQuote] = None
        self.quote_error = ""
        self.price_impact_warning = ""
        self.pair_warning = ""
        self.estimating = False

        self.last_fingerprint: Optional[QuoteRequestFingerprint] = None

    # ------------------------------------------------------------------
    # Form input
    # ------------------------------------------------------------------

    def set_tokens(self, tokens: List[TokenOption]):
        self.tokens = list(tokens)
        if self.from_token_index >= len(self.tokens):
            self.from_token_index = 0
        if (self.to_token_index >= len(self.tokens)
                or self.to_token_index == self.from_token_index):
            self.to_token_index = 1 if len(self.tokens) > 1 and self.from_token_index == 0 else 0
        # Indices may now point at different tokens; in-flight results are stale
        self.last_fingerprint = None
        self.estimating = False

    def set_from_amount(self, text: str) -> Optional[QuoteRequest]:
        self.from_amount = text.strip()
        return self.request_forward_quote()

    def set_to_amount(self, text: str) -> Optional[QuoteRequest]:
        self.to_amount = text.strip()
        return self.request_reverse_quote()

    def select_tokens(self, from_index: int, to_index: int) -> Optional[QuoteRequest]:
        self.from_token_index = from_index
        self.to_token_index = to_index
        return self.refresh()

    def refresh(self) -> Optional[QuoteRequest]:
        """Re-request a quote for whichever side is currently live."""
        if self.mode is QuoteMode.REVERSE:
            return self.request_reverse_quote()
        return self.request_forward_quote()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request_forward_quote(self) -> Optional[QuoteRequest]:
        """Quote the output for the typed input amount."""
        return self._request(QuoteMode.FORWARD)

    def request_reverse_quote(self) -> Optional[QuoteRequest]:
        """Quote the input required for the typed output amount."""
        return self._request(QuoteMode.REVERSE)

    def _live_amount(self, mode: QuoteMode) -> str:
        return self.from_amount if mode is QuoteMode.FORWARD else self.to_amount

    def _derived_amount(self, mode: QuoteMode) -> str:
        return self.to_amount if mode is QuoteMode.FORWARD else self.from_amount

    def _clear_derived(self, mode: QuoteMode):
        if mode is QuoteMode.FORWARD:
            self.to_amount = ""
        else:
            self.from_amount = ""
        self.quote = None
        self.quote_error = ""
        self.price_impact_warning = ""

    def _request(self, mode: QuoteMode) -> Optional[QuoteRequest]:
        self.mode = mode
        amount_text = self._live_amount(mode)

        if _is_empty_amount(amount_text):
            self._clear_derived(mode)
            self.pair_warning = ""
            self.last_fingerprint = None
            self.estimating = False
            return None

        if not (0 <= self.from_token_index < len(self.tokens)):
            return None
        if not (0 <= self.to_token_index < len(self.tokens)):
            return None

        from_token = self.tokens[self.from_token_index]
        to_token = self.tokens[self.to_token_index]

        # Can't swap same token
        if from_token.symbol == to_token.symbol:
            return None

        fingerprint = QuoteRequestFingerprint(
            mode=mode,
            amount_text=amount_text,
            from_token_index=self.from_token_index,
            to_token_index=self.to_token_index,
        )
        if (fingerprint == self.last_fingerprint and self.quote is not None
                and self._derived_amount(mode) != ""):
            # Nothing changed and we already have a quote
            return None

        amount_token = from_token if mode is QuoteMode.FORWARD else to_token
        try:
            amount = parse_units(amount_text, amount_token.decimals)
        except ValueError:
            amount = None
        if amount is None or amount <= 0 or amount > MAX_UINT256:
            logger.debug(f"Ignoring unusable amount {amount_text!r}")
            # The old output no longer matches the typed text
            self._clear_derived(mode)
            self.last_fingerprint = None
            self.estimating = False
            return None

        try:
            pair_address, token_in = resolve_pair(
                from_token.symbol, to_token.symbol, self.known_pairs)
        except UnsupportedPairError as e:
            self._clear_derived(mode)
            self.pair_warning = str(e)
            self.last_fingerprint = None
            self.estimating = False
            logger.warning(self.pair_warning)
            return None

        self.last_fingerprint = fingerprint
        self._clear_derived(mode)
        self.pair_warning = ""
        self.estimating = True

        if mode is QuoteMode.REVERSE:
            logger.info(
                f"Calculating required input for {amount_text} {to_token.symbol}")

        return QuoteRequest(
            fingerprint=fingerprint,
            pair_address=pair_address,
            token_in=token_in,
            amount=amount,
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def apply_quote_result(self, result: QuoteResult) -> bool:
        """Apply a fetched quote. Returns False when the result is stale and dropped."""
        if result.fingerprint != self.last_fingerprint:
            logger.debug(f"Dropping stale quote result for {result.fingerprint}")
            return False

        self.estimating = False
        mode = result.fingerprint.mode

        if result.error is not None or result.quote is None:
            self._clear_derived(mode)
            self.quote_error = result.error or "no quote returned"
            logger.error(f"Swap quote error: {self.quote_error}")
            return True

        quote = result.quote
        from_token = self.tokens[result.fingerprint.from_token_index]
        to_token = self.tokens[result.fingerprint.to_token_index]

        self.quote = quote
        self.quote_error = ""
        if mode is QuoteMode.REVERSE:
            self.from_amount = format_units(quote.amount_in, from_token.decimals, 6)
        else:
            self.to_amount = format_units(quote.amount_out, to_token.decimals, 6)

        logger.info(
            f"Swap quote {mode.value}: {self.from_amount} {from_token.symbol} → "
            f"{self.to_amount} {to_token.symbol}, impact {quote.price_impact_percent:.4f}%")

        self.price_impact_warning = price_impact_warning(quote.price_impact_percent) or ""
        if self.price_impact_warning:
            logger.warning(self.price_impact_warning)
        return True

    @property
    def from_token(self) -> Optional[TokenOption]:
        if 0 <= self.from_token_index < len(self.tokens):
            return self.tokens[self.from_token_index]
        return None

    @property
    def to_token(self) -> Optional[TokenOption]:
        if 0 <= self.to_token_index < len(self.tokens):
            return self.tokens[self.to_token_index]
        return None


def execute_quote_request(connection: Optional[NodeConnection], request: QuoteRequest,
                          timeout: float = DEFAULT_CALL_TIMEOUT) -> QuoteResult:
    """Read the pair and its reserves, then compute the quote. Never raises."""
    try:
        connection = require_connection(connection)
        pair = get_pair(connection, request.pair_address, timeout)
        reserves = get_reserves(connection, request.pair_address, timeout)
        if request.fingerprint.mode is QuoteMode.REVERSE:
            quote = build_reverse_quote(request.token_in, request.amount, pair, reserves)
        else:
            quote = build_forward_quote(request.token_in, request.amount, pair, reserves)
    except Exception as e:
        return QuoteResult(fingerprint=request.fingerprint, error=describe_error(e))

    return QuoteResult(fingerprint=request.fingerprint, quote=quote)
