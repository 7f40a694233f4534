"""
Background work and the single-threaded state applier.

Network operations run on worker threads and each produces exactly one result
message. Messages are applied to AppState only by `apply_message`, on the
thread that calls `BackgroundRunner.drain`, so state needs no locks.
"""

import queue
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

from .balances import DEFAULT_BALANCE_TIMEOUT, load_wallet_details
from .models import (
    ConnectResult,
    NodeConnection,
    QuoteRequest,
    TokenOption,
    TransactionPackage,
    WalletDetails,
    WatchedToken,
)
from .node import DEFAULT_CALL_TIMEOUT, DEFAULT_CONNECT_TIMEOUT, connect, describe_error
from .orchestrator import QuoteResult, SwapQuoteOrchestrator, build_token_options, execute_quote_request
from .packaging import package_swap, package_transfer
from .utils import format_eth, shorten_address

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class RpcConnected:
    result: ConnectResult


@dataclass(frozen=True)
class DetailsLoaded:
    details: WalletDetails


@dataclass(frozen=True)
class QuoteFetched:
    result: QuoteResult


@dataclass(frozen=True)
class TransactionPackaged:
    package: TransactionPackage


Message = Union[RpcConnected, DetailsLoaded, QuoteFetched, TransactionPackaged]
Command = Callable[[], Message]


# ----------------------------------------------------------------------
# Commands: zero-argument callables run on a worker thread
# ----------------------------------------------------------------------

def connect_command(url: str, timeout: float = DEFAULT_CONNECT_TIMEOUT) -> Command:
    return lambda: RpcConnected(connect(url, timeout))


def load_details_command(connection: Optional[NodeConnection], address: str,
                         watchlist: Sequence[WatchedToken],
                         timeout: float = DEFAULT_BALANCE_TIMEOUT) -> Command:
    return lambda: DetailsLoaded(load_wallet_details(connection, address, watchlist, timeout))


def quote_command(connection: Optional[NodeConnection], request: QuoteRequest,
                  timeout: float = DEFAULT_CALL_TIMEOUT) -> Command:
    return lambda: QuoteFetched(execute_quote_request(connection, request, timeout))


def package_transfer_command(from_address: str, to_address: str, amount: str,
                             rpc_url: str, connection: Optional[NodeConnection] = None) -> Command:
    return lambda: TransactionPackaged(
        package_transfer(from_address, to_address, amount, rpc_url, connection))


def package_swap_command(from_address: str, from_token: TokenOption, to_token: TokenOption,
                         amount_in: str, min_amount_out: int) -> Command:
    return lambda: TransactionPackaged(
        package_swap(from_address, from_token, to_token, amount_in, min_amount_out))


# ----------------------------------------------------------------------
# State
# ----------------------------------------------------------------------

@dataclass
class AppState:
    """Everything the background results are applied onto."""
    connection: Optional[NodeConnection] = None
    connecting: bool = False
    connection_error: str = ""

    details: Optional[WalletDetails] = None
    details_cache: Dict[str, WalletDetails] = field(default_factory=dict)
    loading: bool = False

    swap: SwapQuoteOrchestrator = field(default_factory=SwapQuoteOrchestrator)

    transaction: Optional[TransactionPackage] = None
    packaging: bool = False

    def cached_details(self, address: str) -> Optional[WalletDetails]:
        return self.details_cache.get(address.lower())


def apply_message(state: AppState, msg: Message):
    """Apply one result message to the state. The only writer of AppState."""
    if isinstance(msg, RpcConnected):
        state.connecting = False
        if msg.result.ok:
            # Replace the handle wholesale; calls on the old one finish on their own
            state.connection = msg.result.connection
            state.connection_error = ""
            logger.info(f"RPC connected to {state.connection.url}")
        else:
            state.connection = None
            state.connection_error = describe_error(msg.result.error)
            logger.error(f"RPC connection failed: {state.connection_error}")

    elif isinstance(msg, DetailsLoaded):
        state.loading = False
        state.details = msg.details
        if msg.details.address:
            state.details_cache[msg.details.address.lower()] = msg.details
        if msg.details.error_message:
            logger.error(
                f"Wallet {shorten_address(msg.details.address)}: {msg.details.error_message}")
        else:
            logger.info(
                f"Loaded details for {shorten_address(msg.details.address)} - "
                f"ETH: {format_eth(msg.details.native_balance)}")
        state.swap.set_tokens(build_token_options(msg.details))

    elif isinstance(msg, QuoteFetched):
        state.swap.apply_quote_result(msg.result)

    elif isinstance(msg, TransactionPackaged):
        state.packaging = False
        state.transaction = msg.package
        if msg.package.error:
            logger.error(f"Transaction packaging failed: {msg.package.error}")
        else:
            logger.info(f"Transaction packaged successfully ({msg.package.format})")

    else:
        raise TypeError(f"unknown message type: {type(msg).__name__}")


# ----------------------------------------------------------------------
# Runner
# ----------------------------------------------------------------------

class BackgroundRunner:
    """Runs commands on worker threads and queues their result messages."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="command")
        self._messages: "queue.Queue[Message]" = queue.Queue()
        self._pending = 0

    def submit(self, command: Optional[Command]) -> Optional[Future]:
        if command is None:
            return None
        self._pending += 1
        future = self._executor.submit(command)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future):
        if future.cancelled():
            self._messages.put(None)
            return
        try:
            message = future.result()
        except Exception:
            # Commands convert their own errors; anything here is a bug
            logger.exception("Background command raised")
            self._messages.put(None)
            return
        self._messages.put(message)

    @property
    def pending(self) -> int:
        return self._pending

    def _apply_next(self, state: AppState, block: bool,
                    timeout: Optional[float]) -> Optional[Message]:
        msg = self._messages.get(block=block, timeout=timeout)
        self._pending -= 1
        if msg is not None:
            apply_message(state, msg)
        return msg

    def drain(self, state: AppState) -> List[Message]:
        """Apply every message that is already queued, without waiting."""
        applied = []
        while self._pending > 0:
            try:
                msg = self._apply_next(state, block=False, timeout=None)
            except queue.Empty:
                break
            if msg is not None:
                applied.append(msg)
        return applied

    def run_until_idle(self, state: AppState, timeout: Optional[float] = None) -> List[Message]:
        """Wait for and apply messages until no submitted command is outstanding.

        `timeout` bounds each wait; when it passes, the remaining commands are
        left outstanding and their messages can be drained later.
        """
        applied = []
        while self._pending > 0:
            try:
                msg = self._apply_next(state, block=True, timeout=timeout)
            except queue.Empty:
                break
            if msg is not None:
                applied.append(msg)
        return applied

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
