"""
Application settings.

Every tunable of the pipeline (storage paths, chain endpoint, conversion rule,
throttling, retry budget) is read from the environment with a documented
default, and may be overridden explicitly (CLI flags, tests). Validation runs
in __post_init__ and raises ConfigError.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from solxen_bridge.config.env import (
    DEFAULT_TOKEN_MINT,
    TOKEN_2022_PROGRAM_ID,
    X1_TESTNET_EXPLORER_TX_URL,
    X1_TESTNET_RPC_URL,
    default_keypair_path,
    env_bool,
    env_decimal,
    env_float,
    env_int,
    env_str,
    load_bridge_env,
)
from solxen_bridge.core.exceptions import ConfigError

DEFAULT_BURN_STORE_PATH = "burn-data/burns.db"
DEFAULT_LEDGER_PATH = "database/sol_burn_x1_mint.db"
DEFAULT_REPORT_DIR = "report"
DEFAULT_TOKEN_DECIMALS = 6
DEFAULT_SOURCE_AMOUNT_DECIMALS = 6
DEFAULT_MIN_BURN_AMOUNT = "420"
DEFAULT_CONVERSION_RATE = "1"
DEFAULT_CONCURRENCY = 1
DEFAULT_MIN_SUBMIT_INTERVAL_SEC = 2.0
DEFAULT_MAX_TX_PER_MINUTE = 30
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_MAX_TOTAL_ATTEMPTS = 9
DEFAULT_RETRY_BACKOFF_SEC = 2.0
DEFAULT_RETRY_BACKOFF_CAP_SEC = 30.0
DEFAULT_CONFIRM_TIMEOUT_SEC = 60.0
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
MAX_DECIMALS = 18


def _to_decimal(name: str, value: Any) -> Decimal:
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e
    if not result.is_finite():
        raise ConfigError(f"{name} must be finite, got {value!r}")
    return result


@dataclass
class Settings:
    """Pipeline configuration (env or explicit)."""

    burn_store_path: Path = field(default_factory=lambda: Path(env_str("BURN_STORE_PATH", DEFAULT_BURN_STORE_PATH)))
    ledger_path: Path = field(default_factory=lambda: Path(env_str("LEDGER_DB_PATH", DEFAULT_LEDGER_PATH)))
    report_dir: Path = field(default_factory=lambda: Path(env_str("REPORT_DIR", DEFAULT_REPORT_DIR)))

    rpc_url: str = field(default_factory=lambda: env_str("X1_RPC_URL", X1_TESTNET_RPC_URL))
    explorer_tx_url: str = field(default_factory=lambda: env_str("EXPLORER_TX_URL", X1_TESTNET_EXPLORER_TX_URL))
    token_mint: str = field(default_factory=lambda: env_str("TOKEN_MINT", DEFAULT_TOKEN_MINT))
    token_program_id: str = field(default_factory=lambda: env_str("TOKEN_PROGRAM_ID", TOKEN_2022_PROGRAM_ID))
    token_decimals: int = field(default_factory=lambda: env_int("TOKEN_DECIMALS", DEFAULT_TOKEN_DECIMALS))
    source_amount_decimals: int = field(
        default_factory=lambda: env_int("SOURCE_AMOUNT_DECIMALS", DEFAULT_SOURCE_AMOUNT_DECIMALS)
    )
    keypair_path: Path = field(default_factory=default_keypair_path)
    private_key: str = field(default_factory=lambda: env_str("MINT_AUTHORITY_PRIVATE_KEY"))

    min_burn_amount: Decimal = field(default_factory=lambda: env_decimal("MIN_BURN_AMOUNT", DEFAULT_MIN_BURN_AMOUNT))
    conversion_rate: Decimal = field(default_factory=lambda: env_decimal("CONVERSION_RATE", DEFAULT_CONVERSION_RATE))

    concurrency: int = field(default_factory=lambda: env_int("MINT_CONCURRENCY", DEFAULT_CONCURRENCY))
    min_submit_interval_sec: float = field(
        default_factory=lambda: env_float("MIN_SUBMIT_INTERVAL_SEC", DEFAULT_MIN_SUBMIT_INTERVAL_SEC)
    )
    max_tx_per_minute: int = field(default_factory=lambda: env_int("MAX_TX_PER_MINUTE", DEFAULT_MAX_TX_PER_MINUTE))
    retry_attempts: int = field(default_factory=lambda: env_int("RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS))
    max_total_attempts: int = field(default_factory=lambda: env_int("MAX_TOTAL_ATTEMPTS", DEFAULT_MAX_TOTAL_ATTEMPTS))
    retry_backoff_sec: float = field(default_factory=lambda: env_float("RETRY_BACKOFF_SEC", DEFAULT_RETRY_BACKOFF_SEC))
    retry_backoff_cap_sec: float = field(
        default_factory=lambda: env_float("RETRY_BACKOFF_CAP_SEC", DEFAULT_RETRY_BACKOFF_CAP_SEC)
    )
    confirm_timeout_sec: float = field(
        default_factory=lambda: env_float("CONFIRM_TIMEOUT_SEC", DEFAULT_CONFIRM_TIMEOUT_SEC)
    )
    confirm_poll_interval_sec: float = field(
        default_factory=lambda: env_float("CONFIRM_POLL_INTERVAL_SEC", DEFAULT_CONFIRM_POLL_INTERVAL_SEC)
    )
    dry_run: bool = field(default_factory=lambda: env_bool("DRY_RUN", False))

    def __post_init__(self) -> None:
        self.burn_store_path = Path(self.burn_store_path)
        self.ledger_path = Path(self.ledger_path)
        self.report_dir = Path(self.report_dir)
        self.keypair_path = Path(self.keypair_path).expanduser()
        self.min_burn_amount = _to_decimal("min_burn_amount", self.min_burn_amount)
        self.conversion_rate = _to_decimal("conversion_rate", self.conversion_rate)

        if not self.rpc_url:
            raise ConfigError("X1_RPC_URL must not be empty")
        if not self.token_mint:
            raise ConfigError("TOKEN_MINT must not be empty")
        for name in ("token_decimals", "source_amount_decimals"):
            value = getattr(self, name)
            if not 0 <= value <= MAX_DECIMALS:
                raise ConfigError(f"{name} must be between 0 and {MAX_DECIMALS}, got {value}")
        if self.min_burn_amount < 0:
            raise ConfigError("MIN_BURN_AMOUNT must be >= 0")
        if self.conversion_rate <= 0:
            raise ConfigError("CONVERSION_RATE must be > 0")
        if self.concurrency < 1:
            raise ConfigError("MINT_CONCURRENCY must be >= 1")
        if self.min_submit_interval_sec < 0:
            raise ConfigError("MIN_SUBMIT_INTERVAL_SEC must be >= 0")
        if self.max_tx_per_minute < 1:
            raise ConfigError("MAX_TX_PER_MINUTE must be >= 1")
        if self.retry_attempts < 1:
            raise ConfigError("RETRY_ATTEMPTS must be >= 1")
        if self.max_total_attempts < self.retry_attempts:
            raise ConfigError("MAX_TOTAL_ATTEMPTS must be >= RETRY_ATTEMPTS")
        if self.retry_backoff_sec < 0 or self.retry_backoff_cap_sec < 0:
            raise ConfigError("retry backoff values must be >= 0")
        if self.retry_backoff_cap_sec < self.retry_backoff_sec:
            raise ConfigError("RETRY_BACKOFF_CAP_SEC must be >= RETRY_BACKOFF_SEC")
        if self.confirm_timeout_sec <= 0 or self.confirm_poll_interval_sec <= 0:
            raise ConfigError("confirmation timeout and poll interval must be > 0")

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with non-None overrides applied (CLI flags)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def explorer_link(self, signature: str) -> str:
        return self.explorer_tx_url.format(signature=signature)


def get_settings(**overrides: Any) -> Settings:
    """
    Return the current application settings.

    Loads .env first, then builds Settings from the environment; explicit
    keyword overrides win over env values.
    """
    load_bridge_env()
    settings = Settings()
    if overrides:
        settings = settings.with_overrides(**overrides)
    return settings
