from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from http.client import HTTPException
import json
import logging
from typing import Mapping, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import urlopen

from finance_backend.config import FX_API_URL, PROVIDER_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_RATES: dict[str, Decimal] = {
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "INR": Decimal("83.12"),
    "JPY": Decimal("147.50"),
    "CAD": Decimal("1.34"),
    "AUD": Decimal("1.52"),
    "CHF": Decimal("0.88"),
    "CNY": Decimal("7.19"),
}


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


class RateProvider(Protocol):
    def fetch_rates(self, base: str) -> Mapping[str, Decimal]:
        """Return the full table of ``base -> target`` rates."""
        ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates keyed by base currency.

    Tables without an entry for the requested base raise
    ``RateProviderUnavailable`` like a live outage would.
    """

    tables: Optional[Mapping[str, Mapping[str, Decimal]]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", dict(self.tables or {"USD": DEFAULT_RATES}))

    def fetch_rates(self, base: str) -> Mapping[str, Decimal]:
        try:
            return dict(self.tables[base])
        except KeyError as exc:
            raise RateProviderUnavailable(f"No static rates for base {base}") from exc


@dataclass(frozen=True)
class FxRatesApiProvider:
    """Latest rates from an fxratesapi-compatible endpoint.

    Response shape: ``{"base": "USD", "rates": {"EUR": 0.92, ...}}``.
    """

    base_url: str = FX_API_URL
    timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS

    def fetch_rates(self, base: str) -> Mapping[str, Decimal]:
        url = f"{self.base_url}?{urlencode({'base': base})}"
        try:
            with urlopen(url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, OSError, HTTPException, ValueError) as exc:
            raise RateProviderUnavailable("FX rate API unavailable") from exc

        if not isinstance(payload, dict):
            raise RateProviderUnavailable("FX rate response is not an object")
        rates = payload.get("rates")
        if not isinstance(rates, dict) or not rates:
            raise RateProviderUnavailable("FX rate response missing rates")
        reported_base = payload.get("base")
        if reported_base is not None and str(reported_base).upper() != base:
            raise RateProviderUnavailable(
                f"FX rate response base {reported_base} does not match {base}"
            )
        return _parse_rates(rates)


def _parse_rates(rates: Mapping[str, object]) -> dict[str, Decimal]:
    parsed: dict[str, Decimal] = {}
    for code, value in rates.items():
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            logger.warning("Skipping non-numeric rate for %s: %r", code, value)
            continue
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            logger.warning("Skipping unparseable rate for %s: %r", code, value)
            continue
        if not rate.is_finite() or rate <= 0:
            logger.warning("Skipping non-positive rate for %s: %s", code, rate)
            continue
        parsed[str(code)] = rate
    return parsed
