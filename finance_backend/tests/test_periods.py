import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from finance_backend.domain import Periodicity
from finance_backend.periods import (
    AverageGapDetector,
    days_between,
    detect_frequency,
    get_period_dates,
    monthly_equivalent,
    months_between,
    period_label,
    recurrence_to_monthly_factor,
)


class PeriodDatesTests(unittest.TestCase):
    def test_monthly_runs_from_first_of_month_to_reference_day(self) -> None:
        window = get_period_dates(Periodicity.MONTHLY, date(2026, 3, 10))

        self.assertEqual(window.start, datetime(2026, 3, 1, tzinfo=timezone.utc))
        self.assertEqual(window.end_date, date(2026, 3, 10))
        self.assertTrue(window.contains(date(2026, 3, 10)))
        self.assertFalse(window.contains(date(2026, 3, 11)))

    def test_weekly_starts_on_monday(self) -> None:
        # 2026-03-12 is a Thursday.
        window = get_period_dates("weekly", date(2026, 3, 12))

        self.assertEqual(window.start_date, date(2026, 3, 9))
        self.assertEqual(window.period, Periodicity.WEEKLY)

    def test_quarter_and_half_year_boundaries(self) -> None:
        self.assertEqual(
            get_period_dates(Periodicity.QUARTERLY, date(2026, 8, 20)).start_date,
            date(2026, 7, 1),
        )
        self.assertEqual(
            get_period_dates(Periodicity.HALF_YEARLY, date(2026, 6, 30)).start_date,
            date(2026, 1, 1),
        )
        self.assertEqual(
            get_period_dates(Periodicity.YEARLY, date(2026, 12, 31)).start_date,
            date(2026, 1, 1),
        )

    def test_aware_datetime_is_read_in_utc(self) -> None:
        reference = datetime(2026, 4, 1, 1, 0, tzinfo=timezone(timedelta(hours=5)))

        window = get_period_dates(Periodicity.MONTHLY, reference)

        self.assertEqual(window.start_date, date(2026, 3, 1))

    def test_invalid_and_one_time_periods_raise(self) -> None:
        with self.assertRaises(ValueError):
            get_period_dates("FORTNIGHTLY", date(2026, 1, 1))
        with self.assertRaises(ValueError):
            get_period_dates(Periodicity.ONE_TIME, date(2026, 1, 1))

    def test_labels(self) -> None:
        self.assertEqual(period_label(Periodicity.MONTHLY, date(2026, 2, 14)), "February 2026")
        self.assertEqual(period_label(Periodicity.QUARTERLY, date(2026, 5, 1)), "Q2 2026")
        self.assertEqual(period_label(Periodicity.HALF_YEARLY, date(2026, 9, 1)), "H2 2026")
        self.assertEqual(period_label(Periodicity.WEEKLY, date(2026, 3, 12)), "Week of Mar 9, 2026")


class CalendarArithmeticTests(unittest.TestCase):
    def test_months_between_counts_whole_months(self) -> None:
        self.assertEqual(months_between(date(2026, 1, 15), date(2027, 1, 15)), 12)
        self.assertEqual(months_between(date(2026, 1, 31), date(2026, 2, 28)), 0)
        self.assertEqual(months_between(date(2026, 5, 1), date(2026, 3, 1)), -2)

    def test_days_between_rounds_up(self) -> None:
        start = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

        self.assertEqual(days_between(start, date(2026, 1, 3)), 2)
        self.assertEqual(days_between(date(2026, 1, 3), date(2026, 1, 1)), -2)

    def test_monthly_equivalent(self) -> None:
        self.assertEqual(monthly_equivalent(Decimal("2400"), Periodicity.YEARLY), Decimal("200"))
        self.assertEqual(monthly_equivalent(Decimal("100"), Periodicity.QUARTERLY), Decimal("100") / 3)
        self.assertEqual(recurrence_to_monthly_factor(Periodicity.WEEKLY), Decimal(52) / Decimal(12))
        with self.assertRaises(ValueError):
            monthly_equivalent(Decimal("10"), Periodicity.ONE_TIME)


class FrequencyDetectionTests(unittest.TestCase):
    def test_needs_three_occurrences(self) -> None:
        self.assertIsNone(detect_frequency([date(2026, 1, 1), date(2026, 2, 1)]))

    def test_classifies_by_average_gap(self) -> None:
        monthly = [date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1)]
        weekly = [date(2026, 1, 1), date(2026, 1, 8), date(2026, 1, 15)]
        yearly = [date(2024, 1, 1), date(2025, 1, 1), date(2026, 1, 1)]

        self.assertEqual(detect_frequency(monthly), Periodicity.MONTHLY)
        self.assertEqual(detect_frequency(weekly), Periodicity.WEEKLY)
        self.assertEqual(detect_frequency(yearly), Periodicity.YEARLY)

    def test_gaps_beyond_a_year_are_not_recurring(self) -> None:
        dates = [date(2020, 1, 1), date(2022, 1, 1), date(2024, 1, 1)]

        self.assertIsNone(detect_frequency(dates))

    def test_custom_detector_threshold(self) -> None:
        detector = AverageGapDetector(min_occurrences=2)

        self.assertEqual(
            detect_frequency([date(2026, 1, 1), date(2026, 1, 31)], detector),
            Periodicity.MONTHLY,
        )


if __name__ == "__main__":
    unittest.main()
