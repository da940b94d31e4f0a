"""
Environment variable loading and parsing for solxen-bridge.

- X1_RPC_URL: RPC endpoint of the X1 network (default: public testnet RPC)
- TOKEN_MINT / TOKEN_PROGRAM_ID: the Token-2022 mint receiving mints
- MINT_AUTHORITY_KEYPAIR / MINT_AUTHORITY_PRIVATE_KEY: signer of mint transactions
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

from solxen_bridge.core.exceptions import ConfigError

# Project root: config is solxen_bridge/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

X1_TESTNET_RPC_URL = "https://rpc-testnet.x1.wiki"
X1_TESTNET_EXPLORER_TX_URL = "https://explorer.x1-testnet.xen.network/tx/{signature}"
# solXEN mint on X1 testnet, created by the one-shot admin setup
DEFAULT_TOKEN_MINT = "2oaSsGnq1eNjMavSxh1g2XFqtV7SVYwaRJZaBznMyYJT"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def load_bridge_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides set vars."""
    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    if not raw:
        return default
    raise ConfigError(f"{name} must be a boolean (1/0, true/false, yes/no), got {raw!r}")


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def env_decimal(name: str, default: str) -> Decimal:
    """Parse a Decimal from env. Never goes through float."""
    raw = (os.getenv(name) or "").strip() or default
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise ConfigError(f"{name} must be a decimal number, got {raw!r}") from e
    if not value.is_finite():
        raise ConfigError(f"{name} must be finite, got {raw!r}")
    return value


def default_keypair_path() -> Path:
    """Solana CLI default keypair location, overridable with MINT_AUTHORITY_KEYPAIR."""
    raw = env_str("MINT_AUTHORITY_KEYPAIR")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".config" / "solana" / "id.json"


def mask_rpc_url(url: str) -> str:
    """Hide API keys embedded in RPC URLs before logging them."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
