import unittest
from datetime import date
from decimal import Decimal

from finance_backend.budget_engine import (
    PLANNED_EVENT,
    BudgetLine,
    Spending,
    evaluate_budget,
    evaluate_budgets,
    goal_progress,
    per_month_requirement,
    sum_by_category,
)


class BudgetEngineTests(unittest.TestCase):
    def test_category_totals_include_planned_events(self) -> None:
        spending = [
            Spending(category="GROCERY", amount=Decimal("50"), date=date(2026, 5, 1)),
            Spending(category="GROCERY", amount=Decimal("25.50"), date=date(2026, 5, 3)),
            Spending(
                category="GROCERY",
                amount=Decimal("30"),
                date=date(2026, 5, 20),
                source=PLANNED_EVENT,
            ),
            Spending(category="TRAVEL", amount=Decimal("10"), date=date(2026, 5, 2)),
        ]

        totals = sum_by_category(spending)

        self.assertEqual(totals, {"GROCERY": Decimal("105.50"), "TRAVEL": Decimal("10")})

    def test_budget_within_and_over(self) -> None:
        budget = BudgetLine(category="GROCERY", amount=Decimal("100"), period="MONTHLY")

        within = evaluate_budget(budget, Decimal("100"))
        over = evaluate_budget(budget, Decimal("100.01"))

        self.assertTrue(within.within_budget)
        self.assertEqual(within.status, "ok")
        self.assertEqual(within.remaining, Decimal("0"))
        self.assertFalse(over.within_budget)
        self.assertEqual(over.status, "over")
        self.assertEqual(over.remaining, Decimal("-0.01"))

    def test_budgets_without_spending_see_zero(self) -> None:
        budgets = [
            BudgetLine(category="RENT", amount=Decimal("1200"), period="MONTHLY", id=1),
            BudgetLine(category="TRAVEL", amount=Decimal("200"), period="MONTHLY", id=2),
        ]
        spending = [Spending(category="TRAVEL", amount=Decimal("80"), date=date(2026, 5, 2))]

        results = evaluate_budgets(budgets, spending)

        self.assertEqual([result.spent for result in results], [Decimal("0"), Decimal("80")])

    def test_non_positive_budget_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            evaluate_budget(
                BudgetLine(category="RENT", amount=Decimal("0"), period="MONTHLY"), Decimal("1")
            )


class GoalMathTests(unittest.TestCase):
    def test_progress_is_clamped(self) -> None:
        self.assertEqual(goal_progress(Decimal("250"), Decimal("1000")), Decimal("25"))
        self.assertEqual(goal_progress(Decimal("1500"), Decimal("1000")), Decimal("100"))
        self.assertEqual(goal_progress(Decimal("-10"), Decimal("1000")), Decimal("0"))
        self.assertEqual(goal_progress(Decimal("10"), Decimal("0")), Decimal("0"))

    def test_per_month_requirement(self) -> None:
        self.assertEqual(per_month_requirement(Decimal("8400"), 12), Decimal("700"))
        self.assertEqual(per_month_requirement(Decimal("500"), 0), Decimal("500"))
        self.assertEqual(per_month_requirement(Decimal("500"), -3), Decimal("500"))


if __name__ == "__main__":
    unittest.main()
