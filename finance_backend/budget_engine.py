from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from finance_backend.decimal_math import ZERO, div, percent_of, sub, to_decimal

TRANSACTION = "TRANSACTION"
PLANNED_EVENT = "PLANNED_EVENT"


@dataclass(frozen=True)
class Spending:
    """One outflow already converted into the user's base currency."""

    category: str
    amount: Decimal
    date: date
    source: str = TRANSACTION


@dataclass(frozen=True)
class BudgetLine:
    category: str
    amount: Decimal
    period: str
    id: Optional[int] = None


@dataclass(frozen=True)
class BudgetEvaluation:
    budget: BudgetLine
    spent: Decimal
    remaining: Decimal
    status: str

    @property
    def within_budget(self) -> bool:
        return self.spent <= self.budget.amount


def sum_by_category(spending: Iterable[Spending]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for item in spending:
        totals[item.category] = totals.get(item.category, ZERO) + to_decimal(item.amount)
    return totals


def evaluate_budget(budget: BudgetLine, spent: Decimal) -> BudgetEvaluation:
    budgeted = to_decimal(budget.amount)
    if budgeted <= ZERO:
        raise ValueError("budget.amount must be greater than zero.")
    return BudgetEvaluation(
        budget=budget,
        spent=spent,
        remaining=sub(budgeted, spent),
        status="ok" if spent <= budgeted else "over",
    )


def evaluate_budgets(
    budgets: Iterable[BudgetLine], spending: Iterable[Spending]
) -> list[BudgetEvaluation]:
    """Evaluate each budget against the spending of its category.

    Several budgets may share a category; each one sees the full total.
    """
    totals = sum_by_category(spending)
    return [evaluate_budget(budget, totals.get(budget.category, ZERO)) for budget in budgets]


def goal_progress(saved: Decimal, target: Decimal) -> Decimal:
    """Percent saved, clamped to [0, 100]; 0 for a zero target."""
    progress = percent_of(saved, target)
    return progress if progress > ZERO else ZERO


def per_month_requirement(amount_left: Decimal, months_left: int) -> Decimal:
    """Spread ``amount_left`` evenly; everything is due now once no months remain."""
    if months_left <= 0:
        return to_decimal(amount_left)
    return div(amount_left, months_left)
