import os
import tempfile
import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import insert

from finance_backend import goals
from finance_backend.db import create_db_engine, init_db
from finance_backend.errors import ErrorKind, FinanceError
from finance_backend.rate_providers import StaticRateProvider
from finance_backend.rate_store import update_currency_rates
from finance_backend.schema import users

TODAY = date(2026, 1, 15)


class GoalTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = create_db_engine(f"sqlite:///{os.path.join(self.tmpdir.name, 'goals.db')}")
        init_db(self.engine)
        with self.engine.begin() as conn:
            self.user_id = conn.execute(
                insert(users)
                .values(email="goals@example.com", hashed_password="x", base_currency="USD")
                .returning(users.c.id)
            ).scalar_one()

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def make_goal(self, **overrides) -> dict:
        values = {
            "name": "Emergency fund",
            "target_amount": Decimal("1000"),
            "target_date": date(2026, 12, 31),
            "today": TODAY,
        }
        values.update(overrides)
        return goals.create_goal(self.engine, self.user_id, **values)

    def test_create_defaults_to_base_currency(self) -> None:
        goal = self.make_goal(saved_amount=Decimal("250"), description="  ")

        self.assertEqual(goal["currency"], "USD")
        self.assertIsNone(goal["description"])
        self.assertFalse(goal["completed"])
        self.assertEqual(goal["progress"], 25.0)

    def test_create_validation(self) -> None:
        for overrides in (
            {"target_amount": Decimal("0")},
            {"target_date": TODAY},
            {"name": ""},
            {"saved_amount": Decimal("-1")},
            {"currency": "US"},
        ):
            with self.subTest(overrides=overrides):
                with self.assertRaises(FinanceError) as ctx:
                    self.make_goal(**overrides)
                self.assertEqual(ctx.exception.kind, ErrorKind.VALIDATION)

    def test_update_and_list(self) -> None:
        goal = self.make_goal()

        updated = goals.update_goal(
            self.engine, self.user_id, goal["id"], {"saved_amount": Decimal("1200"), "completed": True}
        )

        self.assertTrue(updated["completed"])
        self.assertEqual(updated["progress"], 100.0)
        self.assertEqual([item["id"] for item in goals.list_goals(self.engine, self.user_id)], [goal["id"]])
        with self.assertRaises(FinanceError):
            goals.update_goal(self.engine, self.user_id, goal["id"], {"currency": "EUR"})

    def test_contribution_is_converted_into_goal_currency(self) -> None:
        update_currency_rates(
            self.engine, StaticRateProvider({"USD": {"EUR": Decimal("0.90")}}), "USD", TODAY
        )
        goal = self.make_goal(currency="EUR", saved_amount=Decimal("100"))

        updated = goals.contribute_to_goal(self.engine, self.user_id, goal["id"], Decimal("50"))

        self.assertEqual(updated["saved_amount"], Decimal("145"))

    def test_contribution_validation_and_ownership(self) -> None:
        goal = self.make_goal()

        with self.assertRaises(FinanceError) as ctx:
            goals.contribute_to_goal(self.engine, self.user_id, goal["id"], Decimal("-5"))
        self.assertEqual(ctx.exception.kind, ErrorKind.VALIDATION)
        with self.assertRaises(FinanceError) as ctx:
            goals.contribute_to_goal(self.engine, self.user_id + 1, goal["id"], Decimal("5"))
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_delete(self) -> None:
        goal = self.make_goal()

        goals.delete_goal(self.engine, self.user_id, goal["id"])

        with self.assertRaises(FinanceError) as ctx:
            goals.get_goal(self.engine, self.user_id, goal["id"])
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)


if __name__ == "__main__":
    unittest.main()
