import os
import tempfile
import unittest
from datetime import date
from decimal import Decimal

from finance_backend.conversion import (
    MoneyEntry,
    batch_convert,
    batch_convert_historical,
    convert_current_rate,
    convert_historical_rate,
    get_total_converted,
    get_total_converted_historical,
)
from finance_backend.db import create_db_engine, init_db
from finance_backend.errors import ErrorKind, FinanceError
from finance_backend.rate_providers import StaticRateProvider
from finance_backend.rate_store import update_currency_rates


class ConversionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = create_db_engine(f"sqlite:///{os.path.join(self.tmpdir.name, 'fx.db')}")
        init_db(self.engine)
        update_currency_rates(
            self.engine,
            StaticRateProvider({"EUR": {"USD": Decimal("1.10")}, "GBP": {"USD": Decimal("1.25")}}),
            "EUR",
            date(2026, 3, 1),
        )
        update_currency_rates(
            self.engine,
            StaticRateProvider({"GBP": {"USD": Decimal("1.25")}}),
            "GBP",
            date(2026, 3, 1),
        )
        update_currency_rates(
            self.engine,
            StaticRateProvider({"EUR": {"USD": Decimal("1.20")}}),
            "EUR",
            date(2026, 3, 10),
        )
        self.conn = self.engine.connect()

    def tearDown(self) -> None:
        self.conn.close()
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_same_currency_is_identity(self) -> None:
        amount = convert_current_rate(self.conn, Decimal("12.345"), "JPY", "JPY")

        self.assertEqual(amount, Decimal("12.345"))

    def test_current_rate_uses_latest_snapshot(self) -> None:
        amount = convert_current_rate(self.conn, Decimal("100"), "EUR", "USD")

        self.assertEqual(amount, Decimal("120"))

    def test_historical_rate_uses_the_entry_date(self) -> None:
        early = convert_historical_rate(self.conn, Decimal("100"), "EUR", "USD", date(2026, 3, 5))
        late = convert_historical_rate(self.conn, Decimal("100"), "EUR", "USD", date(2026, 3, 12))

        self.assertEqual(early, Decimal("110"))
        self.assertEqual(late, Decimal("120"))

    def test_conversion_keeps_full_precision(self) -> None:
        amount = convert_current_rate(self.conn, Decimal("0.333"), "GBP", "USD")

        self.assertEqual(amount, Decimal("0.41625"))

    def test_batch_matches_single_conversions(self) -> None:
        items = [
            MoneyEntry(amount=Decimal("10"), currency="EUR"),
            {"amount": Decimal("20"), "currency": "GBP"},
            MoneyEntry(amount=Decimal("5"), currency="USD"),
        ]

        batch = batch_convert(self.conn, items, "USD")

        self.assertEqual(
            batch,
            [
                convert_current_rate(self.conn, Decimal("10"), "EUR", "USD"),
                convert_current_rate(self.conn, Decimal("20"), "GBP", "USD"),
                Decimal("5"),
            ],
        )

    def test_batch_historical_matches_single_conversions(self) -> None:
        items = [
            MoneyEntry(amount=Decimal("10"), currency="EUR", date=date(2026, 3, 2)),
            MoneyEntry(amount=Decimal("10"), currency="EUR", date=date(2026, 3, 11)),
        ]

        batch = batch_convert_historical(self.conn, items, "USD")

        self.assertEqual(batch, [Decimal("11"), Decimal("12")])

    def test_missing_pair_fails_like_single_lookup(self) -> None:
        with self.assertRaises(FinanceError) as ctx:
            batch_convert(self.conn, [MoneyEntry(amount=Decimal("1"), currency="CHF")], "USD")

        self.assertEqual(ctx.exception.kind, ErrorKind.DATA_INTEGRITY)
        self.assertEqual(ctx.exception.reason, "current_rate_missing")

    def test_totals(self) -> None:
        entries = [
            MoneyEntry(amount=Decimal("100"), currency="EUR", date=date(2026, 3, 2)),
            MoneyEntry(amount=Decimal("40"), currency="GBP", date=date(2026, 3, 2)),
            MoneyEntry(amount=Decimal("0.01"), currency="USD", date=date(2026, 3, 2)),
        ]

        self.assertEqual(get_total_converted(self.conn, entries, "USD"), Decimal("170.01"))
        self.assertEqual(get_total_converted_historical(self.conn, entries, "USD"), Decimal("160.01"))
        self.assertEqual(get_total_converted(self.conn, [], "USD"), Decimal("0"))

    def test_invalid_entries_are_rejected_before_conversion(self) -> None:
        bad_inputs = [
            [MoneyEntry(amount="10", currency="USD")],
            [MoneyEntry(amount=True, currency="USD")],
            [MoneyEntry(amount=Decimal("NaN"), currency="USD")],
            [MoneyEntry(amount=Decimal("1"), currency="usd")],
            "not a list",
        ]
        for entries in bad_inputs:
            with self.subTest(entries=entries):
                with self.assertRaises(FinanceError) as ctx:
                    get_total_converted(self.conn, entries, "USD")
                self.assertEqual(ctx.exception.kind, ErrorKind.VALIDATION)

    def test_historical_total_requires_dates(self) -> None:
        with self.assertRaises(FinanceError) as ctx:
            get_total_converted_historical(
                self.conn, [MoneyEntry(amount=Decimal("1"), currency="EUR")], "USD"
            )

        self.assertEqual(ctx.exception.field, "date")


if __name__ == "__main__":
    unittest.main()
