"""
Burn amount -> mint amount conversion rules.

A rule is any callable (Decimal) -> Decimal that is pure and deterministic.
Results are quantized down to the mint's decimals so the on-chain base-unit
amount is always an exact integer; never through float.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Callable

ConversionRule = Callable[[Decimal], Decimal]


def quantize_down(amount: Decimal, decimals: int) -> Decimal:
    """Truncate to `decimals` places (never rounds up a mint)."""
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


@dataclass(frozen=True)
class IdentityConversion:
    """Mint exactly what was burned (1 burned solXEN -> 1 minted solXEN)."""

    decimals: int = 6

    def __call__(self, burn_amount: Decimal) -> Decimal:
        return quantize_down(burn_amount, self.decimals)


@dataclass(frozen=True)
class RateConversion:
    """mint = burn * rate, truncated to the mint's decimals."""

    rate: Decimal
    decimals: int = 6

    def __post_init__(self) -> None:
        if not isinstance(self.rate, Decimal):
            object.__setattr__(self, "rate", Decimal(str(self.rate)))
        if self.rate <= 0:
            raise ValueError("conversion rate must be > 0")

    def __call__(self, burn_amount: Decimal) -> Decimal:
        return quantize_down(burn_amount * self.rate, self.decimals)


def build_conversion_rule(rate: Decimal, decimals: int) -> ConversionRule:
    """Rule from settings: identity when rate == 1, else a fixed rate."""
    if rate == 1:
        return IdentityConversion(decimals=decimals)
    return RateConversion(rate=rate, decimals=decimals)


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Token units -> integer base units. Raises ValueError if not exactly representable."""
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount {amount} has more than {decimals} decimal places")
    units = int(scaled)
    if units <= 0:
        raise ValueError(f"amount {amount} must be positive")
    if units >= 2**64:
        raise ValueError(f"amount {amount} exceeds u64 base units")
    return units
