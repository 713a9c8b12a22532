from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.engine import Connection

from finance_backend.decimal_math import ZERO, Numeric, mul, to_decimal
from finance_backend.domain import is_currency_code
from finance_backend.errors import FinanceError
from finance_backend.rate_store import (
    get_current_exchange_rate,
    get_historical_exchange_rate,
    normalize_rate_date,
)
from finance_backend.schema import currency_rates


@dataclass(frozen=True)
class MoneyEntry:
    amount: Decimal
    currency: str
    date: Optional[date] = None


def convert_current_rate(
    conn: Connection, value: Numeric, from_currency: str, to_currency: str
) -> Decimal:
    """Convert ``value`` at the latest known rate; same currency needs no lookup."""
    amount = to_decimal(value)
    if from_currency == to_currency:
        return amount
    return mul(amount, get_current_exchange_rate(conn, from_currency, to_currency))


def convert_historical_rate(
    conn: Connection,
    value: Numeric,
    from_currency: str,
    to_currency: str,
    on_date: date | datetime,
) -> Decimal:
    """Convert ``value`` at the rate in effect on ``on_date``."""
    amount = to_decimal(value)
    if from_currency == to_currency:
        return amount
    rate = get_historical_exchange_rate(conn, from_currency, to_currency, on_date)
    return mul(amount, rate)


def batch_convert(
    conn: Connection, items: Sequence[MoneyEntry | Mapping[str, Any]], to_currency: str
) -> list[Decimal]:
    """Same results as ``convert_current_rate`` per item, with one rate query."""
    entries = [_as_entry(item) for item in items]
    pairs = {(entry.currency, to_currency) for entry in entries if entry.currency != to_currency}

    rate_map: dict[tuple[str, str], Decimal] = {}
    if pairs:
        rows = conn.execute(
            select(currency_rates.c.base, currency_rates.c.target, currency_rates.c.rate).where(
                or_(
                    *(
                        and_(currency_rates.c.base == base, currency_rates.c.target == target)
                        for base, target in sorted(pairs)
                    )
                )
            )
        ).fetchall()
        rate_map = {(row.base, row.target): row.rate for row in rows}

    results: list[Decimal] = []
    for entry in entries:
        amount = to_decimal(entry.amount)
        if entry.currency == to_currency:
            results.append(amount)
            continue
        rate = rate_map.get((entry.currency, to_currency))
        if rate is None:
            # Defer to the single lookup so the failure is reported the same way.
            rate = get_current_exchange_rate(conn, entry.currency, to_currency)
        results.append(mul(amount, rate))
    return results


def batch_convert_historical(
    conn: Connection, items: Sequence[MoneyEntry | Mapping[str, Any]], to_currency: str
) -> list[Decimal]:
    """Same results as ``convert_historical_rate`` per item.

    Rate lookups are issued once per distinct (currency, day) pair.
    """
    entries = [_as_entry(item) for item in items]
    rate_map: dict[tuple[str, date], Decimal] = {}
    results: list[Decimal] = []
    for entry in entries:
        amount = to_decimal(entry.amount)
        if entry.currency == to_currency:
            results.append(amount)
            continue
        if entry.date is None:
            raise FinanceError.validation(
                "Historical conversion requires a date.", field="date"
            )
        key = (entry.currency, normalize_rate_date(entry.date))
        if key not in rate_map:
            rate_map[key] = get_historical_exchange_rate(conn, entry.currency, to_currency, key[1])
        results.append(mul(amount, rate_map[key]))
    return results


def get_total_converted(
    conn: Connection, entries: Iterable[MoneyEntry | Mapping[str, Any]], to_currency: str
) -> Decimal:
    """Sum ``entries`` in ``to_currency`` at current rates, at full precision."""
    validated = validate_entries(entries, require_date=False)
    return sum(batch_convert(conn, validated, to_currency), ZERO)


def get_total_converted_historical(
    conn: Connection, entries: Iterable[MoneyEntry | Mapping[str, Any]], to_currency: str
) -> Decimal:
    """Sum ``entries`` in ``to_currency``, each at the rate of its own date."""
    validated = validate_entries(entries, require_date=True)
    return sum(batch_convert_historical(conn, validated, to_currency), ZERO)


def validate_entries(
    entries: Iterable[MoneyEntry | Mapping[str, Any]], require_date: bool
) -> list[MoneyEntry]:
    """Check every entry before any is converted; the first bad one aborts."""
    if isinstance(entries, (str, bytes)) or not isinstance(entries, Iterable):
        raise FinanceError.validation("Conversion entries must be a list.")
    validated: list[MoneyEntry] = []
    for index, item in enumerate(entries):
        entry = _as_entry(item)
        amount = entry.amount
        if isinstance(amount, bool) or not isinstance(amount, (Decimal, int, float)):
            raise FinanceError.validation(
                f"Invalid amount in conversion entry {index}.", field="amount"
            )
        if not to_decimal(amount).is_finite():
            raise FinanceError.validation(
                f"Invalid amount in conversion entry {index}.", field="amount"
            )
        if not is_currency_code(entry.currency):
            raise FinanceError.validation(
                f"Invalid currency in conversion entry {index}.", field="currency"
            )
        if require_date and not isinstance(entry.date, date):
            raise FinanceError.validation(
                f"Invalid date in conversion entry {index}.", field="date"
            )
        validated.append(entry)
    return validated


def _as_entry(item: MoneyEntry | Mapping[str, Any]) -> MoneyEntry:
    if isinstance(item, MoneyEntry):
        return item
    if isinstance(item, Mapping):
        return MoneyEntry(
            amount=item.get("amount"),
            currency=item.get("currency"),
            date=item.get("date"),
        )
    raise FinanceError.validation("Conversion entries must have amount and currency.")
