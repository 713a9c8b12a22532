from __future__ import annotations

import os

from finance_backend.domain import normalize_currency


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "USD")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "USD"


def get_rate_base_currencies() -> list[str]:
    raw = os.getenv("RATE_BASE_CURRENCIES", "USD")
    bases: list[str] = []
    for item in raw.split(","):
        if not item.strip():
            continue
        try:
            code = normalize_currency(item)
        except ValueError:
            continue
        if code not in bases:
            bases.append(code)
    return bases or ["USD"]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./finance.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()

FX_API_URL = os.getenv("FX_API_URL", "https://api.fxratesapi.com/latest")
RATE_BASE_CURRENCIES = get_rate_base_currencies()
PROVIDER_TIMEOUT_SECONDS = _env_int("PROVIDER_TIMEOUT_SECONDS", 8)
MAX_RATE_STALENESS_DAYS = _env_int("MAX_RATE_STALENESS_DAYS", 7)

FINNHUB_API_KEY = os.getenv("FINNHUB_API_KEY", "")
FINNHUB_URL = os.getenv("FINNHUB_URL", "https://finnhub.io/api/v1/quote")
COINGECKO_URL = os.getenv("COINGECKO_URL", "https://api.coingecko.com/api/v3/simple/price")
METALS_URL = os.getenv("METALS_URL", "https://api.metals.live/v1/spot")
HOLDING_CONCURRENCY_LIMIT = _env_int("HOLDING_CONCURRENCY_LIMIT", 5)

ENABLE_SCHEDULER = _env_flag("ENABLE_SCHEDULER", True)
RATE_REFRESH_HOURS = _env_int("RATE_REFRESH_HOURS", 6)
HOLDING_REFRESH_HOURS = _env_int("HOLDING_REFRESH_HOURS", 6)
