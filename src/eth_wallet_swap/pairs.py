"""
Uniswap V2 pair reads and the table of pools the swap form can quote against.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple

from web3 import Web3

from .errors import PairReadError, ReservesError, UnsupportedPairError
from .models import NodeConnection, PairInfo, ReservesSnapshot
from .node import DEFAULT_CALL_TIMEOUT, eth_call, run_with_timeout, describe_error

logger = logging.getLogger(__name__)

# Function selectors pre-computed with keccak-256
TOKEN0_SELECTOR = bytes.fromhex("0dfe1681")        # token0()
TOKEN1_SELECTOR = bytes.fromhex("d21220a7")        # token1()
GET_RESERVES_SELECTOR = bytes.fromhex("0902f1ac")  # getReserves()

WORD_SIZE = 32

# Ethereum mainnet
WETH_ADDRESS = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
DAI_ADDRESS = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
USDC_WETH_PAIR_ADDRESS = "0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc"
DAI_WETH_PAIR_ADDRESS = "0xA478c2975Ab1Ea89e8196811F51A7B7Ade33eB11"

NATIVE_SYMBOL = "ETH"


@dataclass(frozen=True)
class KnownPair:
    """An on-chain pool and the token address each form symbol trades as."""
    pair_address: str
    token_addresses: Dict[str, str]


KNOWN_PAIRS: Dict[FrozenSet[str], KnownPair] = {
    frozenset({NATIVE_SYMBOL, "USDC"}): KnownPair(
        pair_address=USDC_WETH_PAIR_ADDRESS,
        token_addresses={NATIVE_SYMBOL: WETH_ADDRESS, "USDC": USDC_ADDRESS},
    ),
}


def resolve_pair(from_symbol: str, to_symbol: str,
                 known_pairs: Dict[FrozenSet[str], KnownPair] = KNOWN_PAIRS) -> Tuple[str, str]:
    """Return (pair_address, token_in_address) for a symbol pair.

    Raises UnsupportedPairError when no pool is registered for the pair.
    """
    known = known_pairs.get(frozenset({from_symbol, to_symbol}))
    if known is None or from_symbol == to_symbol:
        raise UnsupportedPairError(from_symbol, to_symbol)
    return known.pair_address, known.token_addresses[from_symbol]


def _read_address_word(connection: NodeConnection, pair_address: str,
                       selector: bytes, name: str, timeout: float) -> str:
    try:
        data = run_with_timeout(
            lambda: eth_call(connection, pair_address, selector), timeout)
    except Exception as e:
        raise PairReadError(f"failed to get {name}: {describe_error(e)}") from e

    if len(data) != WORD_SIZE:
        raise PairReadError(
            f"{name} call returned unexpected data length: {len(data)}")
    return Web3.to_checksum_address("0x" + data[-20:].hex())


def get_pair(connection: NodeConnection, pair_address: str,
             timeout: float = DEFAULT_CALL_TIMEOUT) -> PairInfo:
    """Read token0() and token1() of a pair."""
    token0 = _read_address_word(
        connection, pair_address, TOKEN0_SELECTOR, "token0", timeout)
    token1 = _read_address_word(
        connection, pair_address, TOKEN1_SELECTOR, "token1", timeout)
    return PairInfo(pair_address=pair_address, token0=token0, token1=token1)


def decode_reserves(data: bytes, allow_single_reserve: bool = False) -> ReservesSnapshot:
    """Decode the (reserve0, reserve1, blockTimestampLast) words of getReserves()."""
    if len(data) < WORD_SIZE:
        raise ReservesError(f"invalid reserves data length: {len(data)}")
    if len(data) < 2 * WORD_SIZE and not allow_single_reserve:
        raise ReservesError(
            f"reserves data too short for two reserves: {len(data)}")

    reserve0 = int.from_bytes(data[0:WORD_SIZE], "big")
    reserve1 = 0
    if len(data) >= 2 * WORD_SIZE:
        reserve1 = int.from_bytes(data[WORD_SIZE:2 * WORD_SIZE], "big")
    return ReservesSnapshot(reserve0=reserve0, reserve1=reserve1)


def get_reserves(connection: NodeConnection, pair_address: str,
                 timeout: float = DEFAULT_CALL_TIMEOUT,
                 allow_single_reserve: bool = False) -> ReservesSnapshot:
    """Read both reserves of a pair in one getReserves() call."""
    try:
        data = run_with_timeout(
            lambda: eth_call(connection, pair_address, GET_RESERVES_SELECTOR), timeout)
    except Exception as e:
        raise ReservesError(f"failed to get reserves: {describe_error(e)}") from e

    return decode_reserves(data, allow_single_reserve)
