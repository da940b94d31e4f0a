"""
Read-only adapter over the burn dataset.

The dataset is a pre-populated SQLite file with a `burns` table (signature,
burner, amount, memo, token, timestamp, created_at), or a CSV export with the
same columns. Amounts are raw integers in the source token's base units (or
text/real in dirty exports) and are scaled by source_amount_decimals.
Timestamps may be unix seconds or ISO-ish strings. Rows are never modified.
"""

from __future__ import annotations

import csv
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterator

from solxen_bridge.core.exceptions import BurnStoreError
from solxen_bridge.database.models import BurnRecord
from solxen_bridge.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TABLE = "burns"
REQUIRED_COLUMNS = ("signature", "burner", "amount")
# Alternate column names accepted for each field, first match wins
_ID_COLUMNS = ("signature", "burn_id")
_ADDRESS_COLUMNS = ("burner", "depositor_address")
_AMOUNT_COLUMNS = ("amount", "burn_amount")
_TIME_COLUMNS = ("timestamp", "observed_at", "created_at")

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S.%f",
)


def parse_amount(raw: Any, decimals: int) -> Decimal | None:
    """Raw source amount -> token units. None when the value cannot be parsed."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        if isinstance(raw, int):
            value = Decimal(raw)
        elif isinstance(raw, float):
            # repr keeps the shortest round-tripping form, avoiding binary noise
            value = Decimal(repr(raw))
        else:
            text = str(raw).strip()
            if not text:
                return None
            value = Decimal(text)
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value.scaleb(-decimals) if decimals else value


def _from_unix_seconds(value: Any) -> datetime | None:
    # Milliseconds, NaN and values past year 9999 are not usable timestamps
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def parse_timestamp(raw: Any) -> datetime | None:
    """
    Unix seconds (int or numeric string) or ISO/`%Y-%m-%d %H:%M:%S` string -> aware UTC datetime.

    Returns None for anything unparseable or out of range.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return _from_unix_seconds(raw)
    text = str(raw).strip()
    if text.lstrip("-").isdigit():
        return _from_unix_seconds(text)
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        dt = None
        for fmt in _DATETIME_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _first(row: dict[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        if name in row and row[name] not in (None, ""):
            return row[name]
    return None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class BurnStore:
    """
    Iterable of BurnRecord over a SQLite or CSV burn dataset.

    Iteration order is the source order; ordering for settlement is the
    reconciler's job. Duplicates and malformed rows are passed through as-is.
    """

    def __init__(self, path: str | Path, *, amount_decimals: int = 6, table: str = DEFAULT_TABLE) -> None:
        self._path = Path(path)
        self._amount_decimals = amount_decimals
        self._table = table

    @property
    def path(self) -> Path:
        return self._path

    def __iter__(self) -> Iterator[BurnRecord]:
        return self.records()

    def records(self, *, burner: str | None = None) -> Iterator[BurnRecord]:
        """Yield burn records, optionally only those of one burner."""
        if not self._path.is_file():
            raise BurnStoreError(f"Burn store not found: {self._path}")
        if self._path.suffix.lower() == ".csv":
            rows = self._csv_rows()
        else:
            rows = self._sqlite_rows()
        for row in rows:
            record = self._row_to_record(row)
            if record is None:
                continue
            if burner is not None and record.depositor_address != burner:
                continue
            yield record

    def _sqlite_rows(self) -> Iterator[dict[str, Any]]:
        uri = f"{self._path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True)
        except sqlite3.Error as e:
            raise BurnStoreError(f"Cannot open burn store {self._path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            columns = {row["name"] for row in conn.execute(f'PRAGMA table_info("{self._table}")')}
            if not columns:
                raise BurnStoreError(f"Burn store {self._path} has no table {self._table!r}")
            self._check_columns(columns)
            for row in conn.execute(f'SELECT * FROM "{self._table}" ORDER BY rowid'):
                yield dict(row)
        except sqlite3.Error as e:
            raise BurnStoreError(f"Failed reading burn store {self._path}: {e}") from e
        finally:
            conn.close()

    def _csv_rows(self) -> Iterator[dict[str, Any]]:
        try:
            with open(self._path, newline="", encoding="utf-8") as f:
                reader = csv.DictReader(f)
                self._check_columns(set(reader.fieldnames or ()))
                for row in reader:
                    yield row
        except OSError as e:
            raise BurnStoreError(f"Failed reading burn store {self._path}: {e}") from e

    @staticmethod
    def _check_columns(columns: set[str]) -> None:
        for options in (_ID_COLUMNS, _ADDRESS_COLUMNS, _AMOUNT_COLUMNS):
            if not columns.intersection(options):
                raise BurnStoreError(f"Burn store is missing a column: one of {', '.join(options)}")

    def _row_to_record(self, row: dict[str, Any]) -> BurnRecord | None:
        burn_id = _clean(_first(row, _ID_COLUMNS))
        if burn_id is None:
            logger.warning("burn_store_row_without_id", row=str({k: row[k] for k in list(row)[:4]}))
            return None
        raw_amount = _first(row, _AMOUNT_COLUMNS)
        raw_time = _first(row, _TIME_COLUMNS)
        observed_at = parse_timestamp(raw_time)
        if raw_time is not None and observed_at is None:
            logger.warning("burn_store_bad_timestamp", burn_id=burn_id, timestamp=str(raw_time))
        return BurnRecord(
            burn_id=burn_id,
            depositor_address=_clean(_first(row, _ADDRESS_COLUMNS)) or "",
            burn_amount=parse_amount(raw_amount, self._amount_decimals),
            observed_at=observed_at,
            memo=_clean(row.get("memo")),
            token=_clean(row.get("token")),
            raw_amount=None if raw_amount is None else str(raw_amount),
        )
