from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.engine import Connection, Engine

from finance_backend.decimal_math import ZERO, to_decimal
from finance_backend.domain import Category, Periodicity, TransactionType, normalize_currency
from finance_backend.errors import FinanceError
from finance_backend.periods import utc_today
from finance_backend.schema import planned_events, transactions, users

logger = logging.getLogger(__name__)

RESOURCE = "PlannedEvent"
UPDATABLE_FIELDS = {
    "name",
    "target_date",
    "estimated_cost",
    "saved_so_far",
    "currency",
    "category",
    "recurrence",
}


def create_planned_event(
    engine: Engine,
    user_id: int,
    *,
    name: str,
    target_date: date,
    estimated_cost: Decimal,
    saved_so_far: Decimal = ZERO,
    currency: Optional[str] = None,
    category: Optional[str] = None,
    recurrence: Optional[str] = None,
    today: Optional[date] = None,
) -> dict:
    values = _validated_values(
        {
            "name": name,
            "target_date": target_date,
            "estimated_cost": estimated_cost,
            "saved_so_far": saved_so_far,
            "currency": currency,
            "category": category or Category.OTHER,
            "recurrence": recurrence or Periodicity.ONE_TIME,
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
        if values.get("currency") is None:
            values["currency"] = base_currency
        row = conn.execute(
            insert(planned_events)
            .values(user_id=user_id, completed=False, **values)
            .returning(*planned_events.c)
        ).mappings().first()
    return dict(row)


def list_planned_events(engine: Engine, user_id: int) -> list[dict]:
    with engine.connect() as conn:
        rows = conn.execute(
            select(planned_events)
            .where(planned_events.c.user_id == user_id)
            .order_by(planned_events.c.target_date, planned_events.c.id)
        ).mappings().all()
    return [dict(row) for row in rows]


def get_planned_event(engine: Engine, user_id: int, event_id: int) -> dict:
    with engine.connect() as conn:
        row = conn.execute(
            select(planned_events).where(
                and_(planned_events.c.id == event_id, planned_events.c.user_id == user_id)
            )
        ).mappings().first()
    if row is None:
        raise FinanceError.not_found(RESOURCE)
    return dict(row)


def update_planned_event(
    engine: Engine,
    user_id: int,
    event_id: int,
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
        return get_planned_event(engine, user_id, event_id)
    with engine.begin() as conn:
        row = conn.execute(
            update(planned_events)
            .where(and_(planned_events.c.id == event_id, planned_events.c.user_id == user_id))
            .values(**values)
            .returning(*planned_events.c)
        ).mappings().first()
    if row is None:
        raise FinanceError.not_found(RESOURCE)
    return dict(row)


def delete_planned_event(engine: Engine, user_id: int, event_id: int) -> None:
    with engine.begin() as conn:
        result = conn.execute(
            delete(planned_events).where(
                and_(planned_events.c.id == event_id, planned_events.c.user_id == user_id)
            )
        )
        if result.rowcount == 0:
            raise FinanceError.not_found(RESOURCE)


def complete_planned_event(engine: Engine, user_id: int, event_id: int) -> dict:
    """Turn an open planned event into a real EXPENSE transaction.

    Runs as one database transaction. The final update only applies while
    the event is still open; if another writer completed it first, nothing
    is written and a conflict is raised.
    """
    with engine.begin() as conn:
        event = conn.execute(
            select(planned_events).where(
                and_(
                    planned_events.c.id == event_id,
                    planned_events.c.user_id == user_id,
                    planned_events.c.completed.is_(False),
                )
            )
        ).mappings().first()
        if event is None:
            raise FinanceError.not_found("Incomplete planned event")

        transaction_id = _insert_transaction(
            conn,
            {
                "user_id": user_id,
                "amount": event["estimated_cost"],
                "currency": event["currency"],
                "type": TransactionType.EXPENSE,
                "category": event["category"],
                "description": f"Planned Event: {event['name']}",
                "date": event["target_date"],
            },
        )

        result = conn.execute(
            update(planned_events)
            .where(
                and_(
                    planned_events.c.id == event_id,
                    planned_events.c.user_id == user_id,
                    planned_events.c.completed.is_(False),
                )
            )
            .values(completed=True, completed_tx_id=transaction_id)
        )
        if result.rowcount != 1:
            logger.warning(
                "Planned event %s was completed concurrently; rolling back", event_id
            )
            raise FinanceError.conflict(
                "Event concurrently updated; try again.",
                resource=RESOURCE,
                reason="concurrent_completion",
            )

    logger.info("Completed planned event %s as transaction %s", event_id, transaction_id)
    return {"event_id": event_id, "transaction_id": transaction_id}


def undo_complete_planned_event(engine: Engine, user_id: int, event_id: int) -> dict:
    """Reopen a completed event and delete the transaction it produced."""
    with engine.begin() as conn:
        event = conn.execute(
            select(planned_events.c.id, planned_events.c.completed_tx_id).where(
                and_(
                    planned_events.c.id == event_id,
                    planned_events.c.user_id == user_id,
                    planned_events.c.completed.is_(True),
                )
            )
        ).first()
        if event is None:
            raise FinanceError.not_found("Completed planned event")

        conn.execute(
            update(planned_events)
            .where(planned_events.c.id == event_id)
            .values(completed=False, completed_tx_id=None)
        )
        if event.completed_tx_id is not None:
            conn.execute(
                delete(transactions).where(
                    and_(
                        transactions.c.id == event.completed_tx_id,
                        transactions.c.user_id == user_id,
                    )
                )
            )

    logger.info("Reopened planned event %s", event_id)
    return {"event_id": event_id}


def _insert_transaction(conn: Connection, values: Mapping[str, Any]) -> int:
    return conn.execute(
        insert(transactions).values(**values).returning(transactions.c.id)
    ).scalar_one()


def _validated_values(
    values: Mapping[str, Any], today: Optional[date], creating: bool = False
) -> dict:
    today = today or utc_today()
    cleaned: dict[str, Any] = {}
    if "name" in values or creating:
        name = (values.get("name") or "").strip()
        if not name:
            raise FinanceError.validation(
                "Planned event name is required.", resource=RESOURCE, field="name"
            )
        cleaned["name"] = name
    if "estimated_cost" in values or creating:
        cost = _positive_amount(values.get("estimated_cost"), "estimated_cost")
        cleaned["estimated_cost"] = cost
    if "saved_so_far" in values:
        saved = to_decimal(values["saved_so_far"] if values["saved_so_far"] is not None else ZERO)
        if saved < ZERO:
            raise FinanceError.validation(
                "Saved amount cannot be negative.", resource=RESOURCE, field="saved_so_far"
            )
        cleaned["saved_so_far"] = saved
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
    if values.get("currency") is not None:
        cleaned["currency"] = _choice(normalize_currency, values["currency"], "currency")
    if "category" in values:
        cleaned["category"] = _choice(Category.validate, values["category"], "category")
    if "recurrence" in values:
        cleaned["recurrence"] = _choice(Periodicity.validate, values["recurrence"], "recurrence")
    return cleaned


def _positive_amount(value: Any, field: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise FinanceError.validation(
            "Estimated cost must be greater than 0.", resource=RESOURCE, field=field
        )
    amount = to_decimal(value)
    if amount <= ZERO:
        raise FinanceError.validation(
            "Estimated cost must be greater than 0.", resource=RESOURCE, field=field
        )
    return amount


def _choice(validator, value: str, field: str) -> str:
    try:
        return validator(value)
    except ValueError as exc:
        raise FinanceError.validation(str(exc), resource=RESOURCE, field=field) from exc
