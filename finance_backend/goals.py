from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.engine import Engine

from finance_backend.budget_engine import goal_progress
from finance_backend.conversion import convert_current_rate
from finance_backend.decimal_math import ZERO, money_out, to_decimal
from finance_backend.domain import normalize_currency
from finance_backend.errors import FinanceError
from finance_backend.periods import utc_today
from finance_backend.schema import goals, users

logger = logging.getLogger(__name__)

RESOURCE = "Goal"
UPDATABLE_FIELDS = {
    "name",
    "description",
    "target_amount",
    "saved_amount",
    "target_date",
    "completed",
}


def with_progress(row: Mapping[str, Any]) -> dict:
    goal = dict(row)
    goal["progress"] = money_out(goal_progress(goal["saved_amount"], goal["target_amount"]))
    return goal


def create_goal(
    engine: Engine,
    user_id: int,
    *,
    name: str,
    target_amount: Decimal,
    target_date: date,
    description: Optional[str] = None,
    saved_amount: Decimal = ZERO,
    currency: Optional[str] = None,
    today: Optional[date] = None,
) -> dict:
    values = _validated_values(
        {
            "name": name,
            "description": description,
            "target_amount": target_amount,
            "saved_amount": saved_amount,
            "target_date": target_date,
        },
        today,
        creating=True,
    )
    with engine.begin() as conn:
        base_currency = conn.execute(
            select(users.c.base_currency).where(users.c.id == user_id)
        ).scalar_one_or_none()
        if base_currency is None:
            raise FinanceError.not_found("User")
        if currency:
            try:
                values["currency"] = normalize_currency(currency)
            except ValueError as exc:
                raise FinanceError.validation(
                    str(exc), resource=RESOURCE, field="currency"
                ) from exc
        else:
            values["currency"] = base_currency
        row = conn.execute(
            insert(goals)
            .values(user_id=user_id, completed=False, **values)
            .returning(*goals.c)
        ).mappings().first()
    return with_progress(row)


def list_goals(engine: Engine, user_id: int) -> list[dict]:
    with engine.connect() as conn:
        rows = conn.execute(
            select(goals).where(goals.c.user_id == user_id).order_by(goals.c.target_date)
        ).mappings().all()
    return [with_progress(row) for row in rows]


def get_goal(engine: Engine, user_id: int, goal_id: int) -> dict:
    with engine.connect() as conn:
        row = conn.execute(
            select(goals).where(and_(goals.c.id == goal_id, goals.c.user_id == user_id))
        ).mappings().first()
    if row is None:
        raise FinanceError.not_found(RESOURCE)
    return with_progress(row)


def update_goal(
    engine: Engine,
    user_id: int,
    goal_id: int,
    changes: Mapping[str, Any],
    today: Optional[date] = None,
) -> dict:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise FinanceError.validation(
            f"Cannot update {', '.join(sorted(unknown))}.", resource=RESOURCE
        )
    values = _validated_values(
        {key: value for key, value in changes.items() if value is not None}, today
    )
    if not values:
        return get_goal(engine, user_id, goal_id)
    with engine.begin() as conn:
        row = conn.execute(
            update(goals)
            .where(and_(goals.c.id == goal_id, goals.c.user_id == user_id))
            .values(**values)
            .returning(*goals.c)
        ).mappings().first()
    if row is None:
        raise FinanceError.not_found(RESOURCE)
    return with_progress(row)


def delete_goal(engine: Engine, user_id: int, goal_id: int) -> None:
    with engine.begin() as conn:
        result = conn.execute(
            delete(goals).where(and_(goals.c.id == goal_id, goals.c.user_id == user_id))
        )
        if result.rowcount == 0:
            raise FinanceError.not_found(RESOURCE)


def contribute_to_goal(engine: Engine, user_id: int, goal_id: int, amount: Decimal) -> dict:
    """Add ``amount`` (in the user's base currency) to a goal's savings.

    The contribution is converted into the goal's currency at the current
    rate and added in SQL so concurrent contributions do not overwrite
    each other.
    """
    if amount is None or isinstance(amount, bool) or to_decimal(amount) <= ZERO:
        raise FinanceError.validation(
            "Valid contribution amount is required.", resource=RESOURCE, field="amount"
        )
    with engine.begin() as conn:
        target = conn.execute(
            select(goals.c.currency, users.c.base_currency)
            .select_from(goals.join(users, goals.c.user_id == users.c.id))
            .where(and_(goals.c.id == goal_id, goals.c.user_id == user_id))
        ).first()
        if target is None:
            raise FinanceError.not_found(RESOURCE)

        converted = convert_current_rate(conn, amount, target.base_currency, target.currency)
        row = conn.execute(
            update(goals)
            .where(and_(goals.c.id == goal_id, goals.c.user_id == user_id))
            .values(saved_amount=goals.c.saved_amount + converted)
            .returning(*goals.c)
        ).mappings().first()

    logger.info(
        "Goal %s received %s %s (%s %s)",
        goal_id,
        amount,
        target.base_currency,
        converted,
        target.currency,
    )
    return with_progress(row)


def _validated_values(
    values: Mapping[str, Any], today: Optional[date], creating: bool = False
) -> dict:
    today = today or utc_today()
    cleaned: dict[str, Any] = {}
    if "name" in values or creating:
        name = (values.get("name") or "").strip()
        if not name:
            raise FinanceError.validation("Goal name is required.", resource=RESOURCE, field="name")
        cleaned["name"] = name
    if "description" in values:
        description = (values["description"] or "").strip()
        cleaned["description"] = description or None
    if "target_amount" in values or creating:
        target_amount = values.get("target_amount")
        if target_amount is None or isinstance(target_amount, bool) or to_decimal(target_amount) <= ZERO:
            raise FinanceError.validation(
                "Target amount must be greater than 0.", resource=RESOURCE, field="target_amount"
            )
        cleaned["target_amount"] = to_decimal(target_amount)
    if "saved_amount" in values:
        saved = to_decimal(values["saved_amount"] if values["saved_amount"] is not None else ZERO)
        if saved < ZERO:
            raise FinanceError.validation(
                "Saved amount cannot be negative.", resource=RESOURCE, field="saved_amount"
            )
        cleaned["saved_amount"] = saved
    if "target_date" in values or creating:
        target_date = values.get("target_date")
        if target_date is None:
            raise FinanceError.validation(
                "Target date is required.", resource=RESOURCE, field="target_date"
            )
        if target_date <= today:
            raise FinanceError.validation(
                "Target date must be in the future.", resource=RESOURCE, field="target_date"
            )
        cleaned["target_date"] = target_date
    if "completed" in values:
        cleaned["completed"] = bool(values["completed"])
    return cleaned
