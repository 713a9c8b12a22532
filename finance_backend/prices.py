from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from http.client import HTTPException
import json
import logging
from typing import Any, Mapping, Optional, Protocol, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import urlopen

from finance_backend.config import (
    COINGECKO_URL,
    FINNHUB_API_KEY,
    FINNHUB_URL,
    METALS_URL,
    PROVIDER_TIMEOUT_SECONDS,
)
from finance_backend.domain import AssetType

logger = logging.getLogger(__name__)

# All three providers quote in US dollars.
PRICE_CURRENCY = "USD"


class PriceUnavailable(RuntimeError):
    """Raised when a price provider cannot be reached or answers nonsense."""


class PriceSource(Protocol):
    def stock_price(self, symbol: str) -> Optional[Decimal]:
        ...

    def crypto_prices(self, ids: Sequence[str]) -> Mapping[str, Decimal]:
        ...

    def metal_prices(self) -> Mapping[str, Decimal]:
        ...


@dataclass(frozen=True)
class HttpPriceSource:
    finnhub_url: str = FINNHUB_URL
    finnhub_api_key: str = FINNHUB_API_KEY
    coingecko_url: str = COINGECKO_URL
    metals_url: str = METALS_URL
    timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS

    def stock_price(self, symbol: str) -> Optional[Decimal]:
        """Finnhub quote; ``c`` is the current price, 0 for unknown symbols."""
        query = urlencode({"symbol": symbol, "token": self.finnhub_api_key})
        payload = self._get_json(f"{self.finnhub_url}?{query}")
        if not isinstance(payload, dict):
            raise PriceUnavailable(f"Unexpected quote for {symbol}")
        return _positive_price(payload.get("c"))

    def crypto_prices(self, ids: Sequence[str]) -> Mapping[str, Decimal]:
        if not ids:
            return {}
        query = urlencode({"ids": ",".join(ids), "vs_currencies": "usd"})
        payload = self._get_json(f"{self.coingecko_url}?{query}")
        if not isinstance(payload, dict):
            raise PriceUnavailable("Unexpected CoinGecko response")
        prices: dict[str, Decimal] = {}
        for coin_id, quote in payload.items():
            price = _positive_price(quote.get("usd")) if isinstance(quote, dict) else None
            if price is not None:
                prices[coin_id.lower()] = price
        return prices

    def metal_prices(self) -> Mapping[str, Decimal]:
        """metals.live spot: a list of single-key objects like ``{"gold": 2300.1}``."""
        payload = self._get_json(self.metals_url)
        if not isinstance(payload, list):
            raise PriceUnavailable("Unexpected metals response")
        prices: dict[str, Decimal] = {}
        for item in payload:
            if not isinstance(item, dict):
                continue
            for metal, value in item.items():
                price = _positive_price(value)
                if price is not None:
                    prices.setdefault(str(metal).lower(), price)
        return prices

    def _get_json(self, url: str) -> Any:
        try:
            with urlopen(url, timeout=self.timeout_seconds) as response:
                return json.load(response)
        except (HTTPError, URLError, TimeoutError, OSError, HTTPException, ValueError) as exc:
            raise PriceUnavailable(f"Price API unavailable: {exc}") from exc


def fetch_current_price(source: PriceSource, ticker: str, asset_type: str) -> Optional[Decimal]:
    """Best-effort single price lookup; ``None`` when it cannot be had."""
    try:
        if asset_type == AssetType.STOCK:
            return source.stock_price(ticker)
        if asset_type == AssetType.CRYPTO:
            return source.crypto_prices([ticker.lower()]).get(ticker.lower())
        if asset_type == AssetType.METAL:
            return source.metal_prices().get(ticker.lower())
    except PriceUnavailable as exc:
        logger.warning("Failed to fetch price for %s: %s", ticker, exc)
    return None


def _positive_price(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price
