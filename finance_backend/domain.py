from __future__ import annotations

import re

CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def is_currency_code(value: object) -> bool:
    return isinstance(value, str) and bool(CURRENCY_CODE_PATTERN.match(value))


class _Choice:
    values: frozenset[str] = frozenset()
    label = "value"

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError(f"Invalid {cls.label}.")
        return normalized


class Periodicity(_Choice):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    YEARLY = "YEARLY"
    ONE_TIME = "ONE_TIME"
    values = frozenset(
        {DAILY, WEEKLY, MONTHLY, QUARTERLY, HALF_YEARLY, YEARLY, ONE_TIME}
    )
    label = "period"


class TransactionType(_Choice):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    values = frozenset({INCOME, EXPENSE})
    label = "transaction type"


class Category(_Choice):
    OTHER = "OTHER"
    values = frozenset(
        {
            "GROCERY",
            "RENT",
            "UTILITIES",
            "TRANSPORTATION",
            "HEALTHCARE",
            "ENTERTAINMENT",
            "CLOTHING",
            "EDUCATION",
            "TRAVEL",
            "SALARY",
            "INVESTMENT",
            OTHER,
        }
    )
    label = "category"


class AssetType(_Choice):
    STOCK = "STOCK"
    CRYPTO = "CRYPTO"
    METAL = "METAL"
    values = frozenset({STOCK, CRYPTO, METAL, "MUTUAL_FUND", "BOND", "OTHER"})
    label = "asset type"


class AllocationDimension:
    values = frozenset({"asset_type", "platform", "ticker"})

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        aliases = {"assettype": "asset_type"}
        normalized = aliases.get(normalized, normalized)
        if normalized not in cls.values:
            raise ValueError("Invalid allocation grouping.")
        return normalized
