import os
import tempfile
import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

from sqlalchemy import func, insert, select, update

from finance_backend import planned_events
from finance_backend.db import create_db_engine, init_db
from finance_backend.domain import Periodicity, TransactionType
from finance_backend.errors import ErrorKind, FinanceError
from finance_backend.schema import planned_events as planned_events_table
from finance_backend.schema import transactions, users

TODAY = date(2026, 1, 15)


class PlannedEventTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = create_db_engine(f"sqlite:///{os.path.join(self.tmpdir.name, 'events.db')}")
        init_db(self.engine)
        with self.engine.begin() as conn:
            self.user_id = conn.execute(
                insert(users)
                .values(email="events@example.com", hashed_password="x", base_currency="EUR")
                .returning(users.c.id)
            ).scalar_one()
            self.other_user_id = conn.execute(
                insert(users)
                .values(email="other@example.com", hashed_password="x")
                .returning(users.c.id)
            ).scalar_one()
        self.event = planned_events.create_planned_event(
            self.engine,
            self.user_id,
            name="  Wedding ",
            target_date=date(2026, 6, 20),
            estimated_cost=Decimal("5000"),
            category="entertainment",
            today=TODAY,
        )

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def transaction_count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(transactions)).scalar_one()

    def test_create_defaults(self) -> None:
        self.assertEqual(self.event["name"], "Wedding")
        self.assertEqual(self.event["currency"], "EUR")
        self.assertEqual(self.event["category"], "ENTERTAINMENT")
        self.assertEqual(self.event["recurrence"], Periodicity.ONE_TIME)
        self.assertFalse(self.event["completed"])

    def test_create_validation(self) -> None:
        cases = [
            {"estimated_cost": Decimal("0")},
            {"target_date": TODAY},
            {"name": "   "},
            {"recurrence": "SOMETIMES"},
            {"currency": "EURO"},
        ]
        for overrides in cases:
            values = {
                "name": "Trip",
                "target_date": date(2026, 3, 1),
                "estimated_cost": Decimal("100"),
                "today": TODAY,
            }
            values.update(overrides)
            with self.subTest(overrides=overrides):
                with self.assertRaises(FinanceError) as ctx:
                    planned_events.create_planned_event(self.engine, self.user_id, **values)
                self.assertEqual(ctx.exception.kind, ErrorKind.VALIDATION)

    def test_update_and_ownership(self) -> None:
        updated = planned_events.update_planned_event(
            self.engine,
            self.user_id,
            self.event["id"],
            {"estimated_cost": Decimal("5500"), "recurrence": "yearly"},
            today=TODAY,
        )

        self.assertEqual(updated["estimated_cost"], Decimal("5500"))
        self.assertEqual(updated["recurrence"], Periodicity.YEARLY)
        with self.assertRaises(FinanceError) as ctx:
            planned_events.get_planned_event(self.engine, self.other_user_id, self.event["id"])
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)
        with self.assertRaises(FinanceError):
            planned_events.update_planned_event(
                self.engine, self.user_id, self.event["id"], {"completed": True}
            )

    def test_complete_creates_expense_transaction(self) -> None:
        result = planned_events.complete_planned_event(self.engine, self.user_id, self.event["id"])

        with self.engine.connect() as conn:
            txn = conn.execute(
                select(transactions).where(transactions.c.id == result["transaction_id"])
            ).mappings().first()
        event = planned_events.get_planned_event(self.engine, self.user_id, self.event["id"])
        self.assertEqual(txn["type"], TransactionType.EXPENSE)
        self.assertEqual(txn["amount"], Decimal("5000"))
        self.assertEqual(txn["currency"], "EUR")
        self.assertEqual(txn["category"], "ENTERTAINMENT")
        self.assertEqual(txn["date"], date(2026, 6, 20))
        self.assertEqual(txn["description"], "Planned Event: Wedding")
        self.assertTrue(event["completed"])
        self.assertEqual(event["completed_tx_id"], result["transaction_id"])

    def test_second_completion_is_not_found(self) -> None:
        planned_events.complete_planned_event(self.engine, self.user_id, self.event["id"])

        with self.assertRaises(FinanceError) as ctx:
            planned_events.complete_planned_event(self.engine, self.user_id, self.event["id"])

        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.transaction_count(), 1)

    def test_other_user_cannot_complete(self) -> None:
        with self.assertRaises(FinanceError) as ctx:
            planned_events.complete_planned_event(self.engine, self.other_user_id, self.event["id"])

        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.transaction_count(), 0)

    def test_concurrent_completion_rolls_back(self) -> None:
        event_id = self.event["id"]

        def insert_then_lose_race(conn, values):
            transaction_id = conn.execute(
                insert(transactions).values(**values).returning(transactions.c.id)
            ).scalar_one()
            # Another writer finishes the event between our read and our update.
            conn.execute(
                update(planned_events_table)
                .where(planned_events_table.c.id == event_id)
                .values(completed=True)
            )
            return transaction_id

        with mock.patch(
            "finance_backend.planned_events._insert_transaction",
            side_effect=insert_then_lose_race,
        ):
            with self.assertRaises(FinanceError) as ctx:
                planned_events.complete_planned_event(self.engine, self.user_id, event_id)

        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)
        self.assertEqual(ctx.exception.reason, "concurrent_completion")
        self.assertEqual(self.transaction_count(), 0)
        event = planned_events.get_planned_event(self.engine, self.user_id, event_id)
        self.assertFalse(event["completed"])
        self.assertIsNone(event["completed_tx_id"])

    def test_undo_reopens_and_removes_transaction(self) -> None:
        planned_events.complete_planned_event(self.engine, self.user_id, self.event["id"])

        result = planned_events.undo_complete_planned_event(
            self.engine, self.user_id, self.event["id"]
        )

        event = planned_events.get_planned_event(self.engine, self.user_id, self.event["id"])
        self.assertEqual(result, {"event_id": self.event["id"]})
        self.assertFalse(event["completed"])
        self.assertIsNone(event["completed_tx_id"])
        self.assertEqual(self.transaction_count(), 0)

    def test_undo_requires_completed_event(self) -> None:
        with self.assertRaises(FinanceError) as ctx:
            planned_events.undo_complete_planned_event(self.engine, self.user_id, self.event["id"])

        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_complete_undo_complete(self) -> None:
        planned_events.complete_planned_event(self.engine, self.user_id, self.event["id"])
        planned_events.undo_complete_planned_event(self.engine, self.user_id, self.event["id"])

        second = planned_events.complete_planned_event(self.engine, self.user_id, self.event["id"])

        self.assertEqual(second["event_id"], self.event["id"])
        self.assertIsNotNone(second["transaction_id"])
        self.assertEqual(self.transaction_count(), 1)

    def test_delete(self) -> None:
        planned_events.delete_planned_event(self.engine, self.user_id, self.event["id"])

        self.assertEqual(planned_events.list_planned_events(self.engine, self.user_id), [])
        with self.assertRaises(FinanceError):
            planned_events.delete_planned_event(self.engine, self.user_id, self.event["id"])


if __name__ == "__main__":
    unittest.main()
