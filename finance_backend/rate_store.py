from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Iterable, Mapping, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from finance_backend.config import MAX_RATE_STALENESS_DAYS, RATE_BASE_CURRENCIES
from finance_backend.db import upsert
from finance_backend.decimal_math import ONE
from finance_backend.domain import is_currency_code
from finance_backend.errors import FinanceError
from finance_backend.periods import as_utc_date, utc_now, utc_today
from finance_backend.rate_providers import RateProvider, RateProviderUnavailable
from finance_backend.schema import currency_rate_history, currency_rates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateRefreshResult:
    base: str
    rate_count: int
    rate_date: date
    used_fallback: bool
    # Oldest day any of the written rates was actually observed by a provider.
    source_date: date


def normalize_rate_date(value: date | datetime | str) -> date:
    """Reduce a date, datetime or ``YYYY-MM-DD`` string to its UTC calendar day."""
    if isinstance(value, (date, datetime)):
        return as_utc_date(value)
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValueError("Date must be in YYYY-MM-DD format.") from exc


def update_currency_rates(
    engine: Engine,
    provider: RateProvider,
    base: str = "USD",
    today: Optional[date | datetime] = None,
) -> RateRefreshResult:
    """Fetch ``base`` rates and store them as the current and today's rates.

    Both tables are written in one transaction. When the provider fails or
    returns nothing usable, yesterday's snapshot is carried forward by
    ``use_previous_day_rates`` instead.
    """
    if not is_currency_code(base):
        raise FinanceError.validation(
            "Base currency must be a 3-letter uppercase ISO 4217 code.",
            resource="CurrencyRate",
            field="base",
        )
    rate_date = normalize_rate_date(today if today is not None else utc_today())

    try:
        fetched = provider.fetch_rates(base)
    except RateProviderUnavailable as exc:
        logger.warning("Rate provider failed for %s, using previous rates: %s", base, exc)
        return use_previous_day_rates(engine, base, rate_date)

    rates = _filter_rates(base, fetched)
    if not rates:
        logger.warning("Rate provider returned no usable rates for %s, using previous rates", base)
        return use_previous_day_rates(engine, base, rate_date)

    with engine.begin() as conn:
        _write_snapshot(
            conn,
            base,
            [(target, rate, rate_date) for target, rate in rates.items()],
            rate_date,
        )
    logger.info("Stored %d %s rates for %s", len(rates), base, rate_date.isoformat())
    return RateRefreshResult(
        base=base,
        rate_count=len(rates),
        rate_date=rate_date,
        used_fallback=False,
        source_date=rate_date,
    )


def use_previous_day_rates(
    engine: Engine,
    base: str = "USD",
    today: Optional[date | datetime] = None,
    max_staleness_days: int = MAX_RATE_STALENESS_DAYS,
) -> RateRefreshResult:
    """Staleness-tolerant fallback: carry the latest earlier snapshot forward.

    Copies every rate from the most recent day strictly before ``today`` into
    the current table and into today's history slot. Copied rows keep the
    day the provider originally observed them, and the copy is refused once
    that day is more than ``max_staleness_days`` old.
    """
    rate_date = normalize_rate_date(today if today is not None else utc_today())

    with engine.begin() as conn:
        previous_date = conn.execute(
            select(func.max(currency_rate_history.c.rate_date)).where(
                and_(
                    currency_rate_history.c.base == base,
                    currency_rate_history.c.rate_date < rate_date,
                )
            )
        ).scalar()
        if previous_date is None:
            logger.error("No previous %s rates to fall back on for %s", base, rate_date)
            raise FinanceError.data_integrity(
                f"No previous {base} rates available to fall back on.",
                reason="no_previous_rates",
                context={"base": base, "date": rate_date.isoformat()},
            )

        rows = conn.execute(
            select(
                currency_rate_history.c.target,
                currency_rate_history.c.rate,
                currency_rate_history.c.source_date,
            ).where(
                and_(
                    currency_rate_history.c.base == base,
                    currency_rate_history.c.rate_date == previous_date,
                )
            )
        ).fetchall()

        source_date = min(row.source_date for row in rows)
        staleness = (rate_date - source_date).days
        if staleness > max_staleness_days:
            logger.error(
                "Refusing to reuse %s rates observed on %s: %d days old (limit %d)",
                base,
                source_date,
                staleness,
                max_staleness_days,
            )
            raise FinanceError.data_integrity(
                f"Previous {base} rates are {staleness} days old.",
                reason="rates_too_stale",
                context={
                    "base": base,
                    "date": rate_date.isoformat(),
                    "source_date": source_date.isoformat(),
                },
            )

        _write_snapshot(
            conn,
            base,
            [(row.target, row.rate, row.source_date) for row in rows],
            rate_date,
        )

    logger.warning(
        "Carried %d %s rates forward from %s to %s",
        len(rows),
        base,
        previous_date,
        rate_date,
    )
    return RateRefreshResult(
        base=base,
        rate_count=len(rows),
        rate_date=rate_date,
        used_fallback=True,
        source_date=source_date,
    )


def ensure_currency_rates_exist(
    engine: Engine,
    provider: RateProvider,
    bases: Iterable[str] = RATE_BASE_CURRENCIES,
    today: Optional[date | datetime] = None,
) -> list[RateRefreshResult]:
    """Refresh any base with no current rates or no snapshot for today.

    Raises when a needed refresh fails outright, so callers can refuse to
    start without usable rates.
    """
    rate_date = normalize_rate_date(today if today is not None else utc_today())
    refreshed: list[RateRefreshResult] = []
    for base in bases:
        with engine.connect() as conn:
            current_count = conn.execute(
                select(func.count())
                .select_from(currency_rates)
                .where(currency_rates.c.base == base)
            ).scalar_one()
            todays_count = conn.execute(
                select(func.count())
                .select_from(currency_rate_history)
                .where(
                    and_(
                        currency_rate_history.c.base == base,
                        currency_rate_history.c.rate_date == rate_date,
                    )
                )
            ).scalar_one()
        if current_count and todays_count:
            continue
        logger.info(
            "Refreshing %s rates (current=%d, today=%d)", base, current_count, todays_count
        )
        refreshed.append(update_currency_rates(engine, provider, base, rate_date))
    return refreshed


def get_historical_exchange_rate(
    conn: Connection,
    from_currency: str,
    to_currency: str,
    on_date: date | datetime | str,
) -> Decimal:
    """Rate in effect on ``on_date``: that day's row, else the closest earlier one.

    Never looks forward in time. No row at all is a data-integrity failure.
    """
    if from_currency == to_currency:
        return ONE
    rate_date = normalize_rate_date(on_date)
    pair_filter = and_(
        currency_rate_history.c.base == from_currency,
        currency_rate_history.c.target == to_currency,
    )
    try:
        rate = conn.execute(
            select(currency_rate_history.c.rate).where(
                and_(pair_filter, currency_rate_history.c.rate_date == rate_date)
            )
        ).scalar()
        if rate is None:
            rate = conn.execute(
                select(currency_rate_history.c.rate)
                .where(and_(pair_filter, currency_rate_history.c.rate_date < rate_date))
                .order_by(currency_rate_history.c.rate_date.desc())
                .limit(1)
            ).scalar()
    except SQLAlchemyError as exc:
        raise FinanceError.data_integrity(
            f"Historical rate lookup failed for {from_currency}->{to_currency}.",
            reason="rate_lookup_failed",
            context=_pair_context(from_currency, to_currency, rate_date),
        ) from exc

    if rate is None:
        logger.error(
            "Missing historical rate %s->%s on or before %s",
            from_currency,
            to_currency,
            rate_date,
        )
        raise FinanceError.data_integrity(
            f"No historical exchange rate from {from_currency} to {to_currency} "
            f"on or before {rate_date.isoformat()}.",
            reason="historical_rate_missing",
            context=_pair_context(from_currency, to_currency, rate_date),
        )
    return rate


def get_current_exchange_rate(conn: Connection, from_currency: str, to_currency: str) -> Decimal:
    if from_currency == to_currency:
        return ONE
    try:
        rate = conn.execute(
            select(currency_rates.c.rate).where(
                and_(
                    currency_rates.c.base == from_currency,
                    currency_rates.c.target == to_currency,
                )
            )
        ).scalar()
    except SQLAlchemyError as exc:
        raise FinanceError.data_integrity(
            f"Current rate lookup failed for {from_currency}->{to_currency}.",
            reason="rate_lookup_failed",
            context=_pair_context(from_currency, to_currency),
        ) from exc

    if rate is None:
        logger.error("Missing current rate %s->%s", from_currency, to_currency)
        raise FinanceError.data_integrity(
            f"Missing current exchange rate from {from_currency} to {to_currency}.",
            reason="current_rate_missing",
            context=_pair_context(from_currency, to_currency),
        )
    return rate


def _filter_rates(base: str, rates: Mapping[str, Decimal]) -> dict[str, Decimal]:
    filtered: dict[str, Decimal] = {}
    for target, rate in rates.items():
        if target == base or not is_currency_code(target):
            continue
        filtered[target] = rate
    dropped = len(rates) - len(filtered)
    if dropped:
        logger.debug("Dropped %d %s rate entries with unusable targets", dropped, base)
    return filtered


def _write_snapshot(
    conn: Connection,
    base: str,
    rows: list[tuple[str, Decimal, date]],
    rate_date: date,
) -> None:
    """Upsert current rates and the ``rate_date`` history slot on one connection."""
    stamp = utc_now().replace(tzinfo=None)
    upsert(
        conn,
        currency_rates,
        [
            {"base": base, "target": target, "rate": rate, "updated_at": stamp}
            for target, rate, _ in rows
        ],
        index_elements=("base", "target"),
        update_columns=("rate", "updated_at"),
    )
    upsert(
        conn,
        currency_rate_history,
        [
            {
                "base": base,
                "target": target,
                "rate": rate,
                "rate_date": rate_date,
                "source_date": source_date,
            }
            for target, rate, source_date in rows
        ],
        index_elements=("base", "target", "rate_date"),
        update_columns=("rate", "source_date"),
    )


def _pair_context(from_currency: str, to_currency: str, rate_date: date | None = None) -> dict:
    context = {"from": from_currency, "to": to_currency}
    if rate_date is not None:
        context["date"] = rate_date.isoformat()
    return context
