from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Mapping, Optional, Sequence

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.engine import Engine

from finance_backend.config import HOLDING_CONCURRENCY_LIMIT
from finance_backend.conversion import convert_current_rate
from finance_backend.decimal_math import ZERO, mul, to_decimal
from finance_backend.domain import AssetType, normalize_currency
from finance_backend.errors import FinanceError
from finance_backend.periods import utc_now
from finance_backend.prices import (
    PRICE_CURRENCY,
    PriceSource,
    PriceUnavailable,
    fetch_current_price,
)
from finance_backend.schema import holdings, users

logger = logging.getLogger(__name__)

RESOURCE = "Holding"


@dataclass(frozen=True)
class PriceRefreshSummary:
    updated: int
    skipped: int


def create_holding(
    engine: Engine,
    user_id: int,
    price_source: PriceSource,
    *,
    platform: str,
    ticker: str,
    name: str,
    asset_type: str,
    quantity: Decimal,
    avg_cost: Decimal,
    holding_currency: str,
) -> dict:
    """Store a holding, pricing it immediately when a live quote is available.

    A failed quote leaves ``last_price`` and ``converted_value`` at 0 until the
    next price refresh.
    """
    platform = (platform or "").strip()
    ticker = (ticker or "").strip().upper()
    name = (name or "").strip()
    if not platform:
        raise FinanceError.validation("Platform is required.", resource=RESOURCE, field="platform")
    if not ticker:
        raise FinanceError.validation("Ticker is required.", resource=RESOURCE, field="ticker")
    if not name:
        raise FinanceError.validation("Name is required.", resource=RESOURCE, field="name")
    try:
        asset_type = AssetType.validate(asset_type or "")
        holding_currency = normalize_currency(holding_currency or "")
    except ValueError as exc:
        raise FinanceError.validation(str(exc), resource=RESOURCE) from exc
    quantity = _positive(quantity, "quantity", "Quantity must be greater than 0.")
    avg_cost = _positive(avg_cost, "avg_cost", "Average cost must be greater than 0.")

    price = fetch_current_price(price_source, ticker, asset_type)
    with engine.begin() as conn:
        base_currency = conn.execute(
            select(users.c.base_currency).where(users.c.id == user_id)
        ).scalar_one_or_none()
        if base_currency is None:
            raise FinanceError.not_found("User")
        converted_value = ZERO
        if price is not None:
            converted_value = convert_current_rate(
                conn, mul(quantity, price), PRICE_CURRENCY, base_currency
            )
        row = conn.execute(
            insert(holdings)
            .values(
                user_id=user_id,
                platform=platform,
                ticker=ticker,
                name=name,
                asset_type=asset_type,
                quantity=quantity,
                avg_cost=avg_cost,
                holding_currency=holding_currency,
                last_price=price if price is not None else ZERO,
                converted_value=converted_value,
            )
            .returning(*holdings.c)
        ).mappings().first()

    holding = dict(row)
    holding["note"] = (
        "Current price fetched automatically"
        if price is not None
        else "Price will be updated in next refresh cycle"
    )
    return holding


def list_holdings(engine: Engine, user_id: int) -> list[dict]:
    with engine.connect() as conn:
        rows = conn.execute(
            select(holdings).where(holdings.c.user_id == user_id).order_by(holdings.c.id)
        ).mappings().all()
    return [dict(row) for row in rows]


def delete_holding(engine: Engine, user_id: int, holding_id: int) -> None:
    with engine.begin() as conn:
        result = conn.execute(
            delete(holdings).where(
                and_(holdings.c.id == holding_id, holdings.c.user_id == user_id)
            )
        )
        if result.rowcount == 0:
            raise FinanceError.not_found(RESOURCE)


def update_holding_prices(
    engine: Engine,
    price_source: PriceSource,
    concurrency: int = HOLDING_CONCURRENCY_LIMIT,
) -> PriceRefreshSummary:
    """Reprice every stock, crypto and metal holding.

    Stock quotes are fetched ``concurrency`` at a time; crypto is one batched
    call and metals one spot call. A symbol that fails to price or convert is
    skipped and logged; the others are still written.
    """
    with engine.connect() as conn:
        rows = conn.execute(
            select(
                holdings.c.id,
                holdings.c.ticker,
                holdings.c.asset_type,
                holdings.c.quantity,
                users.c.base_currency,
            ).select_from(holdings.join(users, holdings.c.user_id == users.c.id))
        ).fetchall()

    by_type: dict[str, list] = {}
    for row in rows:
        by_type.setdefault(row.asset_type, []).append(row)

    prices: dict[tuple[str, str], Decimal] = {}
    stocks = sorted({row.ticker for row in by_type.get(AssetType.STOCK, [])})
    for ticker, price in _stock_prices(price_source, stocks, concurrency).items():
        prices[(AssetType.STOCK, ticker)] = price
    cryptos = sorted({row.ticker.lower() for row in by_type.get(AssetType.CRYPTO, [])})
    for coin_id, price in _crypto_prices(price_source, cryptos).items():
        prices[(AssetType.CRYPTO, coin_id)] = price
    if by_type.get(AssetType.METAL):
        for metal, price in _metal_prices(price_source).items():
            prices[(AssetType.METAL, metal)] = price

    updated = 0
    skipped = 0
    stamp = utc_now().replace(tzinfo=None)
    with engine.begin() as conn:
        for row in rows:
            lookup = row.ticker if row.asset_type == AssetType.STOCK else row.ticker.lower()
            price = prices.get((row.asset_type, lookup))
            if price is None:
                skipped += 1
                continue
            try:
                converted = convert_current_rate(
                    conn, mul(row.quantity, price), PRICE_CURRENCY, row.base_currency
                )
            except FinanceError as exc:
                logger.warning("Failed to value holding %s (%s): %s", row.id, row.ticker, exc)
                skipped += 1
                continue
            conn.execute(
                update(holdings)
                .where(holdings.c.id == row.id)
                .values(last_price=price, converted_value=converted, updated_at=stamp)
            )
            updated += 1

    logger.info("Holding prices refreshed: %d updated, %d skipped", updated, skipped)
    return PriceRefreshSummary(updated=updated, skipped=skipped)


def _stock_prices(
    price_source: PriceSource, tickers: Sequence[str], concurrency: int
) -> Mapping[str, Decimal]:
    def quote(ticker: str) -> Optional[Decimal]:
        try:
            return price_source.stock_price(ticker)
        except PriceUnavailable as exc:
            logger.warning("[Stock] Failed to update %s: %s", ticker, exc)
            return None

    prices: dict[str, Decimal] = {}
    if not tickers:
        return prices
    workers = max(1, concurrency)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        for offset in range(0, len(tickers), workers):
            chunk = tickers[offset : offset + workers]
            for ticker, price in zip(chunk, pool.map(quote, chunk)):
                if price is not None:
                    prices[ticker] = price
    return prices


def _crypto_prices(price_source: PriceSource, ids: Sequence[str]) -> Mapping[str, Decimal]:
    if not ids:
        return {}
    try:
        return price_source.crypto_prices(ids)
    except PriceUnavailable as exc:
        logger.error("Failed to update crypto prices: %s", exc)
        return {}


def _metal_prices(price_source: PriceSource) -> Mapping[str, Decimal]:
    try:
        return price_source.metal_prices()
    except PriceUnavailable as exc:
        logger.error("Failed to update metal prices: %s", exc)
        return {}


def _positive(value, field: str, message: str) -> Decimal:
    if value is None or isinstance(value, bool) or to_decimal(value) <= ZERO:
        raise FinanceError.validation(message, resource=RESOURCE, field=field)
    return to_decimal(value)
