"""
Unsigned transaction packaging for out-of-band signing (QR / EIP-681 / EIP-4527).
"""

import io
import json
import logging
from dataclasses import dataclass
from typing import Optional

import qrcode
import rlp
from web3 import Web3

from .errors import PackagingError
from .models import NodeConnection, TokenOption, TransactionPackage
from .node import DEFAULT_CALL_TIMEOUT, connect, get_chain_id, run_with_timeout, describe_error
from .utils import MAX_UINT256, format_units, is_valid_ethereum_address, normalize_address, parse_units

logger = logging.getLogger(__name__)

FORMAT_EIP681 = "EIP-681"
FORMAT_EIP4527 = "EIP-4527"

UNISWAP_V2_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
TRANSFER_GAS_LIMIT = 21000
NATIVE_DECIMALS = 18


@dataclass(frozen=True)
class NetworkParams:
    """Values the node must supply before a transfer can be described."""
    nonce: int
    gas_price: int
    chain_id: int


def parse_amount(amount: str, decimals: int) -> int:
    """Decimal amount string to smallest units, raising PackagingError on bad input."""
    try:
        value = parse_units(amount, decimals)
    except ValueError as e:
        raise PackagingError(f"cannot parse amount {amount!r}: {e}") from e
    if value < 0:
        raise PackagingError(f"amount must not be negative: {amount!r}")
    if value > MAX_UINT256:
        raise PackagingError(f"amount does not fit in uint256: {amount!r}")
    return value


def _checked_address(address: str, role: str) -> str:
    if not is_valid_ethereum_address(address):
        raise PackagingError(f"invalid {role} address: {address!r}")
    return Web3.to_checksum_address(address)


def eip681_uri(to_address: str, chain_id: int, value_wei: int) -> str:
    """ethereum:<address>@<chainId>?value=<wei>"""
    return f"ethereum:{normalize_address(to_address)}@{chain_id}?value={value_wei}"


def encode_unsigned_transfer(params: NetworkParams, to_address: str, value_wei: int,
                             gas: int = TRANSFER_GAS_LIMIT) -> str:
    """RLP hex of an unsigned legacy transaction with empty v, r, s."""
    to_bytes = bytes.fromhex(normalize_address(to_address)[2:])
    fields = [params.nonce, params.gas_price, gas, to_bytes, value_wei, b"", 0, 0, 0]
    return rlp.encode(fields).hex()


def fetch_network_params(connection: NodeConnection, from_address: str,
                         timeout: float = DEFAULT_CALL_TIMEOUT) -> NetworkParams:
    """Pending nonce, suggested gas price and chain id from the node."""
    w3 = connection.w3
    nonce = run_with_timeout(
        lambda: w3.eth.get_transaction_count(from_address, "pending"), timeout)
    gas_price = run_with_timeout(lambda: w3.eth.gas_price, timeout)
    chain_id = get_chain_id(connection, timeout)
    return NetworkParams(nonce=nonce, gas_price=gas_price, chain_id=chain_id)


def build_transfer_package(to_address: str, value_wei: int,
                           params: NetworkParams) -> TransactionPackage:
    uri = eip681_uri(to_address, params.chain_id, value_wei)
    return TransactionPackage(
        display_text=uri,
        qr_payload=uri,
        format=FORMAT_EIP681,
        raw_hex=encode_unsigned_transfer(params, to_address, value_wei),
    )


def build_transfer_package_eip4527(from_address: str, to_address: str, value_wei: int,
                                   params: NetworkParams) -> TransactionPackage:
    """Full JSON for display, minimal to/value/chainId JSON for the QR code."""
    to_checksum = Web3.to_checksum_address(to_address)
    full = {
        "from": Web3.to_checksum_address(from_address),
        "to": to_checksum,
        "value": hex(value_wei),
        "gas": hex(TRANSFER_GAS_LIMIT),
        "gasPrice": hex(params.gas_price),
        "nonce": hex(params.nonce),
        "chainId": hex(params.chain_id),
    }
    compact = {
        "to": to_checksum,
        "value": hex(value_wei),
        "chainId": hex(params.chain_id),
    }
    return TransactionPackage(
        display_text=json.dumps(full, separators=(",", ":")),
        qr_payload=json.dumps(compact, separators=(",", ":")),
        format=FORMAT_EIP4527,
    )


def _package_transfer(from_address: str, to_address: str, amount: str,
                      rpc_url: str, connection: Optional[NodeConnection],
                      eip4527: bool) -> TransactionPackage:
    try:
        sender = _checked_address(from_address, "from")
        recipient = _checked_address(to_address, "to")
        value_wei = parse_amount(amount, NATIVE_DECIMALS)

        if connection is None:
            result = connect(rpc_url)
            if not result.ok:
                raise result.error
            connection = result.connection

        params = fetch_network_params(connection, sender)
    except Exception as e:
        logger.error(f"Transaction packaging failed: {e}")
        return TransactionPackage(
            format=FORMAT_EIP4527 if eip4527 else FORMAT_EIP681,
            error=describe_error(e),
        )

    if eip4527:
        package = build_transfer_package_eip4527(sender, recipient, value_wei, params)
    else:
        package = build_transfer_package(recipient, value_wei, params)
    logger.info(f"Transaction packaged successfully ({package.format})")
    return package


def package_transfer(from_address: str, to_address: str, amount: str, rpc_url: str,
                     connection: Optional[NodeConnection] = None) -> TransactionPackage:
    """Package a native-currency transfer as an EIP-681 URI plus raw unsigned hex.

    Nonce, gas price and chain id come from the node at `rpc_url`, or from
    `connection` when one is already open.
    """
    return _package_transfer(from_address, to_address, amount, rpc_url, connection, False)


def package_transfer_eip4527(from_address: str, to_address: str, amount: str, rpc_url: str,
                             connection: Optional[NodeConnection] = None) -> TransactionPackage:
    """Package a native-currency transfer as EIP-4527 style JSON."""
    return _package_transfer(from_address, to_address, amount, rpc_url, connection, True)


def package_swap(from_address: str, from_token: TokenOption, to_token: TokenOption,
                 amount_in: str, min_amount_out: int) -> TransactionPackage:
    """Describe a Uniswap V2 router swap for display and QR encoding.

    This is a human-readable description, not ABI-encoded calldata.
    Swaps that spend an ERC-20 carry a reminder that the router needs an
    approval first.
    """
    try:
        amount_in_units = parse_amount(amount_in, from_token.decimals)
    except PackagingError as e:
        logger.error(f"Swap packaging failed: {e}")
        return TransactionPackage(format=FORMAT_EIP4527, error=str(e))

    min_out = format_units(min_amount_out, to_token.decimals, 6)
    summary = f"{amount_in} {from_token.symbol} -> {to_token.symbol} (min {min_out})"
    note = (f"Uniswap V2 Swap: {amount_in} {from_token.symbol} "
            f"to {min_out} {to_token.symbol}")

    if from_token.is_native:
        # swapExactETHForTokens
        value = hex(amount_in_units)
        qr_payload = f"{UNISWAP_V2_ROUTER}?value={amount_in_units}"
    else:
        # swapExactTokensForETH / swapExactTokensForTokens
        value = "0x0"
        note += ". IMPORTANT: Approve token first!"
        qr_payload = UNISWAP_V2_ROUTER

    description = {
        "from": from_address,
        "to": UNISWAP_V2_ROUTER,
        "value": value,
        "data": f"SWAP: {summary}",
        "note": note,
    }
    logger.info(f"Packaging swap: {amount_in} {from_token.symbol} → {to_token.symbol}")
    return TransactionPackage(
        display_text=json.dumps(description, indent=2),
        qr_payload=qr_payload,
        format=FORMAT_EIP4527,
    )


def render_qr(payload: str) -> str:
    """Terminal QR code for a package payload, two module rows per text line.

    Uses the lowest error correction level so long JSON payloads stay scannable.
    """
    if not payload:
        return ""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_L, border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()
