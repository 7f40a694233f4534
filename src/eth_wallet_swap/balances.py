"""
Native and ERC-20 balance loading for a wallet address.
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional, Sequence

from web3 import Web3

from .errors import BalanceFetchError
from .models import NodeConnection, TokenBalance, WalletDetails, WatchedToken
from .node import eth_call, run_with_timeout, describe_error

logger = logging.getLogger(__name__)

DEFAULT_BALANCE_TIMEOUT = 12.0

# balanceOf(address)
BALANCE_OF_SELECTOR = bytes.fromhex("70a08231")


def balance_of_calldata(owner: str) -> bytes:
    """Selector followed by the owner address left-padded to 32 bytes."""
    owner_bytes = bytes.fromhex(owner[2:] if owner.lower().startswith("0x") else owner)
    return BALANCE_OF_SELECTOR + owner_bytes.rjust(32, b"\x00")


def erc20_balance_of(connection: NodeConnection, token: str, owner: str) -> int:
    """Minimal ERC-20 balanceOf via eth_call. Empty return data reads as zero."""
    try:
        out = eth_call(connection, token, balance_of_calldata(owner))
    except Exception as e:
        raise BalanceFetchError(f"balanceOf {token} failed: {describe_error(e)}") from e
    if not out:
        return 0
    return int.from_bytes(out, "big")


def load_wallet_details(connection: Optional[NodeConnection], address: str,
                        watchlist: Sequence[WatchedToken],
                        timeout: float = DEFAULT_BALANCE_TIMEOUT) -> WalletDetails:
    """Fetch the native balance and every watched token balance for `address`.

    A failed native balance read fails the whole result. A failed token read
    only drops that token. Tokens still in flight when the deadline passes are
    dropped the same way.
    """
    deadline = time.monotonic() + timeout
    details = WalletDetails(address=address)

    if connection is None or connection.w3 is None:
        details.error_message = "no RPC client"
        return details

    try:
        owner = Web3.to_checksum_address(address)
    except ValueError as e:
        details.error_message = f"Invalid address: {e}"
        return details
    details.address = owner

    try:
        details.native_balance = run_with_timeout(
            lambda: connection.w3.eth.get_balance(owner), timeout)
    except Exception as e:
        details.native_balance = 0
        details.error_message = f"Failed to load ETH balance: {describe_error(e)}"
        logger.warning(f"ETH balance for {owner} failed: {e!r}")
        return details

    details.tokens = _load_token_balances(
        connection, owner, watchlist, deadline - time.monotonic())

    logger.info(
        f"Loaded {owner}: {details.native_balance} wei, {len(details.tokens)} tokens")
    return details


def _load_token_balances(connection: NodeConnection, owner: str,
                         watchlist: Sequence[WatchedToken],
                         remaining: float) -> List[TokenBalance]:
    if not watchlist:
        return []

    pool = ThreadPoolExecutor(max_workers=len(watchlist),
                              thread_name_prefix="balance")
    try:
        futures = {
            pool.submit(erc20_balance_of, connection, token.contract_address, owner): token
            for token in watchlist
        }
        done, not_done = wait(futures, timeout=max(remaining, 0))
    finally:
        # Abandon calls still in flight; they finish or fail on their own
        pool.shutdown(wait=False, cancel_futures=True)

    for future in not_done:
        logger.debug(f"balanceOf {futures[future].symbol} timed out, skipping")

    tokens = []
    for future in done:
        token = futures[future]
        try:
            balance = future.result()
        except Exception as e:
            logger.debug(f"balanceOf {token.symbol} failed, skipping: {e!r}")
            continue
        if balance > 0:
            tokens.append(TokenBalance(
                symbol=token.symbol,
                decimals=token.decimals,
                balance=balance,
            ))

    tokens.sort(key=lambda t: t.symbol.lower())
    return tokens
