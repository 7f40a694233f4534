import os
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Any
from dotenv import load_dotenv

from .models import WatchedToken
from .pairs import DAI_ADDRESS, USDC_ADDRESS, WETH_ADDRESS

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://ethereum-rpc.publicnode.com"


@dataclass
class Config:
    """Application configuration."""

    # Node
    rpc_url: str = DEFAULT_RPC_URL
    wallet_address: Optional[str] = None
    chain_id: Optional[int] = None

    # Timeouts (seconds)
    connect_timeout: float = 8.0
    balance_timeout: float = 12.0
    call_timeout: float = 10.0
    block_height_timeout: float = 5.0

    # Logging
    log_enabled: bool = False
    log_level: str = "WARNING"

    # Path to the JSON document holding rpc_urls/wallets/dapps
    config_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        chain_id = os.getenv("CHAIN_ID")
        config = cls(
            rpc_url=os.getenv("ETH_RPC_URL", DEFAULT_RPC_URL),
            wallet_address=os.getenv("WALLET_ADDRESS") or None,
            chain_id=int(chain_id) if chain_id else None,
            connect_timeout=float(os.getenv("CONNECT_TIMEOUT", "8.0")),
            balance_timeout=float(os.getenv("BALANCE_TIMEOUT", "12.0")),
            call_timeout=float(os.getenv("CALL_TIMEOUT", "10.0")),
            block_height_timeout=float(
                os.getenv("BLOCK_HEIGHT_TIMEOUT", "5.0")),
            log_enabled=os.getenv("LOGGER", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "WARNING").upper(),
            config_file=os.getenv("WALLET_CONFIG") or None,
        )

        for name in ("connect_timeout", "balance_timeout", "call_timeout", "block_height_timeout"):
            if getattr(config, name) <= 0:
                raise ValueError(f"{name.upper()} must be positive")

        # A wallet config document overrides the env RPC URL with its active entry
        if config.config_file:
            doc = read_wallet_config(config.config_file)
            url = active_rpc_url(doc)
            if url:
                config.rpc_url = url
            wallet = active_wallet(doc)
            if wallet and not config.wallet_address:
                config.wallet_address = wallet
            if doc.get("logger"):
                config.log_enabled = True

        return config


def default_watchlist() -> List[WatchedToken]:
    """Tokens whose balances are loaded for every wallet."""
    return [
        WatchedToken("WETH", 18, WETH_ADDRESS),
        WatchedToken("USDC", 6, USDC_ADDRESS),
        WatchedToken("USDT", 6, "0xdAC17F958D2ee523a2206206994597C13D831ec7"),
        WatchedToken("DAI", 18, DAI_ADDRESS),
    ]


def read_wallet_config(path: str) -> Dict[str, Any]:
    """Read the wallet config document. A missing file yields an empty document."""
    config_path = Path(path).expanduser()
    if not config_path.exists():
        logger.info(f"Wallet config {config_path} not found, using defaults")
        return {"rpc_urls": [], "wallets": [], "dapps": [], "logger": False}

    with open(config_path) as f:
        return json.load(f)


def _pick_active(entries: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not entries:
        return None
    for entry in entries:
        if entry.get("active"):
            return entry
    return entries[0]


def active_rpc_url(doc: Dict[str, Any]) -> Optional[str]:
    """URL of the active rpc_urls entry, or the first entry if none is active."""
    entry = _pick_active(doc.get("rpc_urls") or [])
    return entry.get("url") if entry else None


def active_wallet(doc: Dict[str, Any]) -> Optional[str]:
    """Address of the active wallet entry, or the first entry if none is active."""
    entry = _pick_active(doc.get("wallets") or [])
    return entry.get("address") if entry else None
