"""
JSON-RPC node connection and low-level call helpers.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar, Union
from urllib.parse import urlparse

from web3 import Web3, HTTPProvider, IPCProvider, LegacyWebSocketProvider

from .errors import NodeConnectionError, NoRPCClientError
from .models import ConnectResult, NodeConnection

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 8.0
DEFAULT_CALL_TIMEOUT = 10.0
DEFAULT_BLOCK_HEIGHT_TIMEOUT = 5.0

T = TypeVar("T")

# Worker threads for bounded RPC calls. A timed-out call keeps running until
# the transport gives up; only the caller stops waiting for it.
_rpc_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="rpc")


def run_with_timeout(fn: Callable[[], T], timeout: float) -> T:
    """Run a blocking call and wait at most `timeout` seconds for its result.

    Raises concurrent.futures.TimeoutError when the deadline passes.
    """
    future = _rpc_executor.submit(fn)
    return future.result(timeout=timeout)


def _make_provider(url: str, timeout: float):
    scheme = urlparse(url).scheme.lower()
    if scheme in ("http", "https"):
        return HTTPProvider(url, request_kwargs={"timeout": timeout})
    if scheme in ("ws", "wss"):
        return LegacyWebSocketProvider(url, websocket_timeout=timeout)
    if url.endswith(".ipc"):
        return IPCProvider(url, timeout=timeout)
    raise ValueError(f"unsupported RPC URL: {url!r}")


def connect(url: str, timeout: float = DEFAULT_CONNECT_TIMEOUT) -> ConnectResult:
    """Open a connection to a JSON-RPC endpoint.

    The endpoint is probed with eth_chainId so DNS, TLS and timeout failures
    surface here rather than on the first real call. Never retries.
    """
    try:
        provider = _make_provider(url, timeout)
        w3 = Web3(provider)
        chain_id = run_with_timeout(lambda: w3.eth.chain_id, timeout)
    except Exception as e:
        logger.warning(f"RPC connection to {url} failed: {e!r}")
        return ConnectResult(error=NodeConnectionError(url, e))

    logger.info(f"RPC connected to {url} (chain {chain_id})")
    return ConnectResult(connection=NodeConnection(w3=w3, url=url, chain_id=chain_id))


def require_connection(connection: Optional[NodeConnection]) -> NodeConnection:
    if connection is None or connection.w3 is None:
        raise NoRPCClientError()
    return connection


def eth_call(connection: NodeConnection, to: str, data: Union[bytes, str]) -> bytes:
    """eth_call against the latest block, returning the raw return data."""
    if isinstance(data, bytes):
        data = "0x" + data.hex()
    result = connection.w3.eth.call({
        "to": Web3.to_checksum_address(to),
        "data": data,
    })
    return bytes(result)


def get_block_height(connection: Optional[NodeConnection],
                     timeout: float = DEFAULT_BLOCK_HEIGHT_TIMEOUT) -> int:
    """Latest block number seen by the node."""
    connection = require_connection(connection)
    return run_with_timeout(lambda: connection.w3.eth.block_number, timeout)


def get_chain_id(connection: NodeConnection, timeout: float = DEFAULT_CALL_TIMEOUT) -> int:
    if connection.chain_id is not None:
        return connection.chain_id
    return run_with_timeout(lambda: connection.w3.eth.chain_id, timeout)


def describe_error(error: Any) -> str:
    """Short message for an exception, including its type when the text is empty."""
    text = str(error)
    if not text:
        return type(error).__name__
    return text
