import unittest
from datetime import date
from decimal import Decimal

from finance_backend.domain import Periodicity
from finance_backend.recurring_detection import (
    FALLBACK,
    PRIMARY,
    TransactionRecord,
    detect_recurring,
)


def _txn(txn_id, amount, category, day, description=None):
    return TransactionRecord(
        id=txn_id,
        amount=Decimal(amount),
        category=category,
        date=day,
        description=description,
    )


class RecurringDetectionTests(unittest.TestCase):
    def test_two_occurrences_are_not_enough(self) -> None:
        transactions = [
            _txn(1, "15.99", "ENTERTAINMENT", date(2026, 1, 5), "Streaming"),
            _txn(2, "15.99", "ENTERTAINMENT", date(2026, 2, 5), "Streaming"),
        ]

        self.assertEqual(detect_recurring(transactions), [])

    def test_three_monthly_charges_are_detected(self) -> None:
        transactions = [
            _txn(3, "15.99", "ENTERTAINMENT", date(2026, 3, 5), "Streaming"),
            _txn(1, "15.99", "ENTERTAINMENT", date(2026, 1, 5), "Streaming"),
            _txn(2, "15.99", "ENTERTAINMENT", date(2026, 2, 5), "Streaming"),
            _txn(4, "42.00", "GROCERY", date(2026, 2, 9), "Market"),
        ]

        results = detect_recurring(transactions)

        self.assertEqual(len(results), 1)
        found = results[0]
        self.assertEqual(found.frequency, Periodicity.MONTHLY)
        self.assertEqual(found.grouping, PRIMARY)
        self.assertEqual(found.count, 3)
        self.assertEqual(found.transaction_ids, (1, 2, 3))
        self.assertEqual(found.key, "15.99-ENTERTAINMENT-Streaming")

    def test_fallback_groups_when_descriptions_differ(self) -> None:
        transactions = [
            _txn(1, "1200", "RENT", date(2026, 1, 1), "Rent January"),
            _txn(2, "1200", "RENT", date(2026, 2, 1), "Rent February"),
            _txn(3, "1200", "RENT", date(2026, 3, 1), "Rent March"),
        ]

        results = detect_recurring(transactions)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].grouping, FALLBACK)
        self.assertEqual(results[0].key, "1200-RENT")

    def test_fallback_skips_pairs_already_found(self) -> None:
        transactions = [
            _txn(1, "9.99", "ENTERTAINMENT", date(2026, 1, 10), "Music"),
            _txn(2, "9.99", "ENTERTAINMENT", date(2026, 2, 10), "Music"),
            _txn(3, "9.99", "ENTERTAINMENT", date(2026, 3, 10), "Music"),
            _txn(4, "9.99", "ENTERTAINMENT", date(2026, 3, 12), "Something else"),
        ]

        results = detect_recurring(transactions)

        self.assertEqual([item.grouping for item in results], [PRIMARY])

    def test_irregular_gaps_are_ignored(self) -> None:
        transactions = [
            _txn(1, "80", "TRAVEL", date(2022, 1, 1)),
            _txn(2, "80", "TRAVEL", date(2024, 1, 1)),
            _txn(3, "80", "TRAVEL", date(2026, 1, 1)),
        ]

        self.assertEqual(detect_recurring(transactions), [])


if __name__ == "__main__":
    unittest.main()
