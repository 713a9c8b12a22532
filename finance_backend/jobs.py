"""
Background jobs run inside the API process.

Jobs:
  - Currency rate refresh for every configured base (every RATE_REFRESH_HOURS)
  - Holding price refresh (every HOLDING_REFRESH_HOURS)

A failed run is logged and dropped; the next scheduled run tries again.
"""
from __future__ import annotations

import logging
from typing import Iterable

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.engine import Engine

from finance_backend.config import (
    HOLDING_REFRESH_HOURS,
    RATE_BASE_CURRENCIES,
    RATE_REFRESH_HOURS,
)
from finance_backend.holdings import update_holding_prices
from finance_backend.prices import PriceSource
from finance_backend.rate_providers import RateProvider
from finance_backend.rate_store import update_currency_rates

logger = logging.getLogger(__name__)

RATE_JOB_ID = "refresh_currency_rates"
HOLDING_JOB_ID = "refresh_holding_prices"


def refresh_currency_rates_job(
    engine: Engine, provider: RateProvider, bases: Iterable[str] = RATE_BASE_CURRENCIES
) -> None:
    for base in bases:
        try:
            result = update_currency_rates(engine, provider, base)
        except Exception:
            logger.exception("Currency rate refresh failed for %s", base)
            continue
        if result.used_fallback:
            logger.warning(
                "Currency rates for %s carried forward from %s", base, result.source_date
            )
        else:
            logger.info("Currency rates for %s refreshed (%d pairs)", base, result.rate_count)


def refresh_holding_prices_job(engine: Engine, price_source: PriceSource) -> None:
    try:
        update_holding_prices(engine, price_source)
    except Exception:
        logger.exception("Holding price refresh failed")


def start_scheduler(
    engine: Engine,
    provider: RateProvider,
    price_source: PriceSource,
    bases: Iterable[str] = RATE_BASE_CURRENCIES,
) -> BackgroundScheduler:
    """Start a daemon scheduler with the rate and holding-price jobs."""
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        refresh_currency_rates_job,
        "interval",
        hours=RATE_REFRESH_HOURS,
        args=[engine, provider, list(bases)],
        id=RATE_JOB_ID,
        replace_existing=True,
    )
    scheduler.add_job(
        refresh_holding_prices_job,
        "interval",
        hours=HOLDING_REFRESH_HOURS,
        args=[engine, price_source],
        id=HOLDING_JOB_ID,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler started: rates every %dh, holdings every %dh",
        RATE_REFRESH_HOURS,
        HOLDING_REFRESH_HOURS,
    )
    return scheduler


def shutdown_scheduler(scheduler: BackgroundScheduler | None) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
