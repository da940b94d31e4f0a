"""Address validation utilities."""

from __future__ import annotations

from solders.pubkey import Pubkey


def is_valid_address(address: str | None) -> bool:
    """Return True if address is a valid base58 Solana/X1 public key."""
    if not address or not isinstance(address, str):
        return False
    try:
        Pubkey.from_string(address.strip())
        return True
    except Exception:
        return False


def short(value: str | None, n: int = 8) -> str:
    """Truncate signatures/addresses for log lines."""
    if not value:
        return "?"
    return value if len(value) <= n else value[:n] + "..."
