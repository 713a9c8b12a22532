from __future__ import annotations

import calendar
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import functools
import logging
from typing import List, Optional

from sqlalchemy import and_, select
from sqlalchemy.engine import Connection, Engine

from finance_backend.budget_engine import (
    PLANNED_EVENT,
    TRANSACTION,
    BudgetLine,
    Spending,
    evaluate_budgets,
    goal_progress,
    per_month_requirement,
)
from finance_backend.conversion import (
    MoneyEntry,
    batch_convert,
    batch_convert_historical,
    get_total_converted_historical,
)
from finance_backend.decimal_math import (
    ZERO,
    compare,
    money_out,
    mul,
    round_money,
    sub,
    to_decimal,
)
from finance_backend.domain import AllocationDimension, Periodicity, TransactionType
from finance_backend.errors import ErrorKind, FinanceError
from finance_backend.periods import (
    PeriodRange,
    days_between,
    get_period_dates,
    monthly_equivalent,
    months_between,
    period_label,
    utc_now,
    utc_today,
)
from finance_backend.prices import PRICE_CURRENCY
from finance_backend.recurring_detection import TransactionRecord, detect_recurring
from finance_backend.schema import budgets, goals, holdings, planned_events, transactions, users

logger = logging.getLogger(__name__)

GOAL = "GOAL"


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: float


@dataclass(frozen=True)
class SummaryReport:
    total: float
    currency: str
    start: date
    end: date
    by_category: List[CategoryTotal] = field(default_factory=list)


@dataclass(frozen=True)
class CategoryAmount:
    category: str
    amount: float


@dataclass(frozen=True)
class CategoryBreakdown:
    total: float
    currency: str
    breakdown: List[CategoryAmount] = field(default_factory=list)


@dataclass(frozen=True)
class IncomeVsExpense:
    period: str
    period_type: str
    income: float
    expense: float
    net: float
    currency: str


@dataclass(frozen=True)
class BudgetActual:
    category: str
    budgeted: float
    spent: float


@dataclass(frozen=True)
class BudgetVsActual:
    currency: str
    period: str
    result: List[BudgetActual] = field(default_factory=list)


@dataclass(frozen=True)
class BudgetPerformance:
    budget_id: int
    category: str
    period: str
    budget_amount: float
    actual_spending: float
    currency: str
    within_budget: bool


@dataclass(frozen=True)
class AllocationGroup:
    group: str
    value: float


@dataclass(frozen=True)
class AssetAllocation:
    total: float
    currency: str
    grouped_by: str
    breakdown: List[AllocationGroup] = field(default_factory=list)


@dataclass(frozen=True)
class GoalProgress:
    id: int
    name: str
    target_amount: float
    saved_amount: float
    currency: str
    target_date: date
    progress: float
    days_left: int


@dataclass(frozen=True)
class ConflictItem:
    type: str
    id: int
    name: str
    per_month: float
    original_currency: str
    target_date: date
    months_left: Optional[int] = None
    recurrence: Optional[str] = None


@dataclass(frozen=True)
class GoalConflictReport:
    conflict: bool
    total_required_per_month: float
    available_monthly_income: float
    over_budget_by: Optional[float]
    below_budget_by: Optional[float]
    currency: str
    breakdown: List[ConflictItem] = field(default_factory=list)


@dataclass(frozen=True)
class RecurringReportItem:
    key: str
    frequency: str
    count: int
    amount: float
    category: str
    description: Optional[str]
    grouping: str
    transaction_ids: List[int] = field(default_factory=list)


def _report(name: str):
    """Tag data-integrity failures with the report that hit them, then re-raise."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(engine: Engine, user_id: int, *args, **kwargs):
            try:
                return func(engine, user_id, *args, **kwargs)
            except FinanceError as exc:
                if exc.kind is ErrorKind.DATA_INTEGRITY:
                    exc.context.setdefault("report", name)
                    logger.error(
                        "Report %s failed for user %s: %s (%s)",
                        name,
                        user_id,
                        exc.message,
                        exc.context,
                    )
                raise

        return wrapper

    return decorator


@_report("expense_summary")
def get_expense_summary(
    engine: Engine,
    user_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> SummaryReport:
    """Expenses in ``[start, end]`` by category, each at its own day's rate.

    Defaults to the current calendar month.
    """
    return _summarize(engine, user_id, TransactionType.EXPENSE, start, end)


@_report("income_summary")
def get_income_summary(
    engine: Engine,
    user_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> SummaryReport:
    return _summarize(engine, user_id, TransactionType.INCOME, start, end)


@_report("category_breakdown")
def get_category_breakdown(
    engine: Engine,
    user_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> CategoryBreakdown:
    summary = _summarize(engine, user_id, TransactionType.EXPENSE, start, end)
    return CategoryBreakdown(
        total=summary.total,
        currency=summary.currency,
        breakdown=[
            CategoryAmount(category=item.category, amount=item.total)
            for item in summary.by_category
        ],
    )


@_report("income_vs_expense")
def get_income_vs_expense(
    engine: Engine,
    user_id: int,
    period: str = Periodicity.MONTHLY,
    reference: Optional[date | datetime] = None,
) -> IncomeVsExpense:
    reference = reference if reference is not None else utc_now()
    window = _resolve_window(period, reference)
    with engine.connect() as conn:
        base_currency = _base_currency(conn, user_id)
        rows = conn.execute(
            select(
                transactions.c.amount,
                transactions.c.currency,
                transactions.c.date,
                transactions.c.type,
            ).where(
                and_(
                    transactions.c.user_id == user_id,
                    transactions.c.date >= window.start_date,
                    transactions.c.date <= window.end_date,
                )
            )
        ).fetchall()
        converted = batch_convert_historical(conn, [_entry(row) for row in rows], base_currency)

    income = ZERO
    expense = ZERO
    for row, amount in zip(rows, converted):
        if row.type == TransactionType.INCOME:
            income += amount
        else:
            expense += amount

    return IncomeVsExpense(
        period=period_label(window.period, reference),
        period_type=window.period,
        income=money_out(income),
        expense=money_out(expense),
        net=money_out(sub(income, expense)),
        currency=base_currency,
    )


def get_monthly_income_vs_expense(engine: Engine, user_id: int) -> IncomeVsExpense:
    return get_income_vs_expense(engine, user_id, Periodicity.MONTHLY)


@_report("budget_vs_actual")
def get_budget_vs_actual(
    engine: Engine,
    user_id: int,
    period: str = Periodicity.MONTHLY,
    reference: Optional[date | datetime] = None,
) -> BudgetVsActual:
    """Spent-so-far per budget of ``period``.

    Spending is EXPENSE transactions plus incomplete planned events due
    inside the window, both converted at their own day's rate. Budgets are
    kept in the base currency, so ``budgeted`` is reported as stored.
    """
    window = _resolve_window(period, reference)
    with engine.connect() as conn:
        base_currency = _base_currency(conn, user_id)

    # The three reads are independent; each runs on its own connection.
    with ThreadPoolExecutor(max_workers=3) as pool:
        budget_future = pool.submit(_fetch_budgets, engine, user_id, window.period)
        expense_future = pool.submit(_fetch_expenses, engine, user_id, window, None)
        event_future = pool.submit(_fetch_open_events, engine, user_id, window, None)
        budget_rows = budget_future.result()
        expense_rows = expense_future.result()
        event_rows = event_future.result()

    with engine.connect() as conn:
        spending = _convert_spending(conn, expense_rows, event_rows, base_currency)

    evaluations = evaluate_budgets(
        [
            BudgetLine(category=row.category, amount=row.amount, period=row.period, id=row.id)
            for row in budget_rows
        ],
        spending,
    )
    return BudgetVsActual(
        currency=base_currency,
        period=window.period,
        result=[
            BudgetActual(
                category=evaluation.budget.category,
                budgeted=money_out(evaluation.budget.amount),
                spent=money_out(evaluation.spent),
            )
            for evaluation in evaluations
        ],
    )


@_report("budget_performance")
def get_user_budget_performance(
    engine: Engine,
    user_id: int,
    reference: Optional[date | datetime] = None,
) -> List[BudgetPerformance]:
    """Every budget checked against its own period's window."""
    results: List[BudgetPerformance] = []
    with engine.connect() as conn:
        base_currency = _base_currency(conn, user_id)
        budget_rows = conn.execute(
            select(budgets).where(budgets.c.user_id == user_id).order_by(budgets.c.id)
        ).fetchall()
        for budget in budget_rows:
            window = _resolve_window(budget.period, reference)
            expense_rows = _select_expenses(conn, user_id, window, budget.category)
            event_rows = _select_open_events(conn, user_id, window, budget.category)
            entries = [_entry(row) for row in expense_rows] + [
                MoneyEntry(amount=row.estimated_cost, currency=row.currency, date=row.target_date)
                for row in event_rows
            ]
            spent = get_total_converted_historical(conn, entries, base_currency)
            results.append(
                BudgetPerformance(
                    budget_id=budget.id,
                    category=budget.category,
                    period=budget.period,
                    budget_amount=money_out(budget.amount),
                    actual_spending=money_out(spent),
                    currency=base_currency,
                    within_budget=compare(spent, budget.amount) <= 0,
                )
            )
    return results


@_report("asset_allocation")
def get_asset_allocation(
    engine: Engine, user_id: int, group_by: str = "asset_type"
) -> AssetAllocation:
    """Holdings value per group, in the base currency at current rates.

    The cached ``converted_value`` is used when nonzero; otherwise
    ``quantity * last_price`` is converted on the fly from the quote
    currency. Holdings that were never priced count as zero.
    """
    try:
        dimension = AllocationDimension.validate(group_by)
    except ValueError as exc:
        raise FinanceError.validation(str(exc), resource="Holding", field="group_by") from exc

    with engine.connect() as conn:
        base_currency = _base_currency(conn, user_id)
        rows = conn.execute(
            select(holdings).where(holdings.c.user_id == user_id).order_by(holdings.c.id)
        ).fetchall()
        stale = [
            row
            for row in rows
            if not to_decimal(row.converted_value or ZERO)
            and mul(row.quantity, row.last_price or ZERO) != ZERO
        ]
        recomputed = batch_convert(
            conn,
            [
                MoneyEntry(amount=mul(row.quantity, row.last_price), currency=PRICE_CURRENCY)
                for row in stale
            ],
            base_currency,
        )
    recomputed_by_id = {row.id: value for row, value in zip(stale, recomputed)}

    groups: dict[str, Decimal] = {}
    total = ZERO
    for row in rows:
        value = recomputed_by_id.get(row.id, to_decimal(row.converted_value or ZERO))
        key = str(getattr(row, dimension))
        groups[key] = groups.get(key, ZERO) + value
        total += value

    return AssetAllocation(
        total=money_out(total),
        currency=base_currency,
        grouped_by=dimension,
        breakdown=[AllocationGroup(group=key, value=money_out(value)) for key, value in groups.items()],
    )


@_report("goal_progress")
def get_goal_progress_report(
    engine: Engine, user_id: int, reference: Optional[date | datetime] = None
) -> List[GoalProgress]:
    now = reference if reference is not None else utc_now()
    with engine.connect() as conn:
        _base_currency(conn, user_id)
        rows = conn.execute(
            select(goals).where(goals.c.user_id == user_id).order_by(goals.c.target_date)
        ).fetchall()
    return [
        GoalProgress(
            id=row.id,
            name=row.name,
            target_amount=money_out(row.target_amount),
            saved_amount=money_out(row.saved_amount),
            currency=row.currency,
            target_date=row.target_date,
            progress=money_out(goal_progress(row.saved_amount, row.target_amount)),
            days_left=days_between(now, row.target_date),
        )
        for row in rows
    ]


@_report("goal_conflicts")
def check_goal_conflicts(
    engine: Engine, user_id: int, today: Optional[date | datetime] = None
) -> GoalConflictReport:
    """Project what open goals and planned events need per month against income.

    Goals and one-time events spread their remaining amount over the whole
    months left before the target date. Recurring events use their
    monthly-equivalent cost. Each figure is converted from its own currency
    at the current rate.
    """
    now = today if today is not None else utc_today()
    with engine.connect() as conn:
        user = _load_user(conn, user_id)
        base_currency = user.base_currency
        goal_rows = conn.execute(
            select(goals)
            .where(and_(goals.c.user_id == user_id, goals.c.completed.is_(False)))
            .order_by(goals.c.target_date, goals.c.id)
        ).fetchall()
        event_rows = conn.execute(
            select(planned_events)
            .where(
                and_(
                    planned_events.c.user_id == user_id,
                    planned_events.c.completed.is_(False),
                )
            )
            .order_by(planned_events.c.target_date, planned_events.c.id)
        ).fetchall()

        goal_months = [months_between(now, row.target_date) for row in goal_rows]
        goal_needs = [
            MoneyEntry(
                amount=per_month_requirement(_amount_left(row.target_amount, row.saved_amount), months),
                currency=row.currency,
            )
            for row, months in zip(goal_rows, goal_months)
        ]
        event_months: List[Optional[int]] = []
        event_needs: List[MoneyEntry] = []
        for row in event_rows:
            if row.recurrence == Periodicity.ONE_TIME:
                months = months_between(now, row.target_date)
                need = per_month_requirement(
                    _amount_left(row.estimated_cost, row.saved_so_far), months
                )
            else:
                months = None
                need = monthly_equivalent(row.estimated_cost, row.recurrence)
            event_months.append(months)
            event_needs.append(MoneyEntry(amount=need, currency=row.currency))

        converted = batch_convert(conn, goal_needs + event_needs, base_currency)

    goal_converted = converted[: len(goal_needs)]
    event_converted = converted[len(goal_needs) :]
    breakdown: List[ConflictItem] = []
    for row, months, per_month in zip(goal_rows, goal_months, goal_converted):
        breakdown.append(
            ConflictItem(
                type=GOAL,
                id=row.id,
                name=row.name,
                per_month=money_out(per_month),
                original_currency=row.currency,
                target_date=row.target_date,
                months_left=months,
            )
        )
    for row, months, per_month in zip(event_rows, event_months, event_converted):
        breakdown.append(
            ConflictItem(
                type=PLANNED_EVENT,
                id=row.id,
                name=row.name,
                per_month=money_out(per_month),
                original_currency=row.currency,
                target_date=row.target_date,
                months_left=months,
                recurrence=row.recurrence,
            )
        )

    # Compared at cent precision.
    total_required = round_money(sum(converted, ZERO))
    income = round_money(user.monthly_income or ZERO)
    difference = sub(total_required, income)
    direction = compare(total_required, income)
    return GoalConflictReport(
        conflict=direction > 0,
        total_required_per_month=money_out(total_required),
        available_monthly_income=money_out(income),
        over_budget_by=money_out(difference) if direction > 0 else None,
        below_budget_by=money_out(-difference) if direction < 0 else None,
        currency=base_currency,
        breakdown=breakdown,
    )


@_report("recurring_transactions")
def detect_recurring_transactions(engine: Engine, user_id: int) -> List[RecurringReportItem]:
    with engine.connect() as conn:
        _base_currency(conn, user_id)
        rows = conn.execute(
            select(
                transactions.c.id,
                transactions.c.amount,
                transactions.c.category,
                transactions.c.description,
                transactions.c.date,
                transactions.c.currency,
            )
            .where(transactions.c.user_id == user_id)
            .order_by(transactions.c.date, transactions.c.id)
        ).fetchall()

    found = detect_recurring(
        TransactionRecord(
            id=row.id,
            amount=row.amount,
            category=row.category,
            date=row.date,
            description=row.description,
            currency=row.currency,
        )
        for row in rows
    )
    return [
        RecurringReportItem(
            key=item.key,
            frequency=item.frequency,
            count=item.count,
            amount=money_out(item.amount),
            category=item.category,
            description=item.description,
            grouping=item.grouping,
            transaction_ids=list(item.transaction_ids),
        )
        for item in found
    ]


def _summarize(
    engine: Engine,
    user_id: int,
    txn_type: str,
    start: Optional[date],
    end: Optional[date],
) -> SummaryReport:
    start, end = _default_range(start, end)
    with engine.connect() as conn:
        base_currency = _base_currency(conn, user_id)
        rows = conn.execute(
            select(
                transactions.c.amount,
                transactions.c.currency,
                transactions.c.date,
                transactions.c.category,
            )
            .where(
                and_(
                    transactions.c.user_id == user_id,
                    transactions.c.type == txn_type,
                    transactions.c.date >= start,
                    transactions.c.date <= end,
                )
            )
            .order_by(transactions.c.date, transactions.c.id)
        ).fetchall()
        converted = batch_convert_historical(conn, [_entry(row) for row in rows], base_currency)

    by_category: dict[str, Decimal] = {}
    for row, amount in zip(rows, converted):
        by_category[row.category] = by_category.get(row.category, ZERO) + amount
    return SummaryReport(
        total=money_out(sum(converted, ZERO)),
        currency=base_currency,
        start=start,
        end=end,
        by_category=[
            CategoryTotal(category=category, total=money_out(amount))
            for category, amount in by_category.items()
        ],
    )


def _default_range(start: Optional[date], end: Optional[date]) -> tuple[date, date]:
    today = utc_today()
    if start is None:
        start = today.replace(day=1)
    if end is None:
        # Whole calendar month, not month-to-date.
        end = today.replace(day=calendar.monthrange(today.year, today.month)[1])
    if start > end:
        raise FinanceError.validation("Start date must be on or before end date.", field="start")
    return start, end


def _resolve_window(period: str, reference: Optional[date | datetime]) -> PeriodRange:
    try:
        return get_period_dates(period, reference)
    except ValueError as exc:
        raise FinanceError.validation(str(exc), field="period") from exc


def _load_user(conn: Connection, user_id: int):
    user = conn.execute(
        select(users.c.id, users.c.base_currency, users.c.monthly_income).where(
            users.c.id == user_id
        )
    ).fetchone()
    if user is None:
        raise FinanceError.not_found("User")
    return user


def _base_currency(conn: Connection, user_id: int) -> str:
    return _load_user(conn, user_id).base_currency


def _amount_left(target: Decimal, saved: Decimal) -> Decimal:
    remaining = sub(target, saved or ZERO)
    return remaining if remaining > ZERO else ZERO


def _entry(row) -> MoneyEntry:
    return MoneyEntry(amount=row.amount, currency=row.currency, date=row.date)


def _select_expenses(
    conn: Connection, user_id: int, window: PeriodRange, category: Optional[str]
):
    conditions = [
        transactions.c.user_id == user_id,
        transactions.c.type == TransactionType.EXPENSE,
        transactions.c.date >= window.start_date,
        transactions.c.date <= window.end_date,
    ]
    if category is not None:
        conditions.append(transactions.c.category == category)
    return conn.execute(
        select(
            transactions.c.amount,
            transactions.c.currency,
            transactions.c.date,
            transactions.c.category,
        ).where(and_(*conditions))
    ).fetchall()


def _select_open_events(
    conn: Connection, user_id: int, window: PeriodRange, category: Optional[str]
):
    conditions = [
        planned_events.c.user_id == user_id,
        planned_events.c.completed.is_(False),
        planned_events.c.target_date >= window.start_date,
        planned_events.c.target_date <= window.end_date,
    ]
    if category is not None:
        conditions.append(planned_events.c.category == category)
    return conn.execute(
        select(
            planned_events.c.estimated_cost,
            planned_events.c.currency,
            planned_events.c.target_date,
            planned_events.c.category,
        ).where(and_(*conditions))
    ).fetchall()


def _fetch_budgets(engine: Engine, user_id: int, period: str):
    with engine.connect() as conn:
        return conn.execute(
            select(budgets)
            .where(and_(budgets.c.user_id == user_id, budgets.c.period == period))
            .order_by(budgets.c.id)
        ).fetchall()


def _fetch_expenses(engine: Engine, user_id: int, window: PeriodRange, category: Optional[str]):
    with engine.connect() as conn:
        return _select_expenses(conn, user_id, window, category)


def _fetch_open_events(
    engine: Engine, user_id: int, window: PeriodRange, category: Optional[str]
):
    with engine.connect() as conn:
        return _select_open_events(conn, user_id, window, category)


def _convert_spending(
    conn: Connection, expense_rows, event_rows, base_currency: str
) -> List[Spending]:
    entries = [_entry(row) for row in expense_rows] + [
        MoneyEntry(amount=row.estimated_cost, currency=row.currency, date=row.target_date)
        for row in event_rows
    ]
    converted = batch_convert_historical(conn, entries, base_currency)
    categories = [row.category for row in expense_rows] + [row.category for row in event_rows]
    sources = [TRANSACTION] * len(expense_rows) + [PLANNED_EVENT] * len(event_rows)
    return [
        Spending(category=category, amount=amount, date=entry.date, source=source)
        for category, amount, entry, source in zip(categories, converted, entries, sources)
    ]
