import unittest
from unittest import mock

from finance_backend import jobs
from finance_backend.errors import FinanceError
from finance_backend.holdings import PriceRefreshSummary
from finance_backend.rate_store import RateRefreshResult


class RefreshJobTests(unittest.TestCase):
    def test_one_failing_base_does_not_stop_the_others(self) -> None:
        ok = RateRefreshResult(
            base="EUR",
            rate_count=3,
            rate_date=mock.sentinel.today,
            used_fallback=False,
            source_date=mock.sentinel.today,
        )
        failure = FinanceError.data_integrity("stale", reason="rates_too_stale")

        with mock.patch.object(jobs, "update_currency_rates", side_effect=[failure, ok]) as update:
            with self.assertLogs("finance_backend.jobs", level="INFO") as logs:
                jobs.refresh_currency_rates_job(mock.sentinel.engine, mock.sentinel.provider, ["USD", "EUR"])

        self.assertEqual(update.call_count, 2)
        self.assertTrue(any("failed for USD" in line for line in logs.output))
        self.assertTrue(any("EUR refreshed" in line for line in logs.output))

    def test_holding_refresh_errors_are_logged(self) -> None:
        with mock.patch.object(jobs, "update_holding_prices", side_effect=RuntimeError("boom")):
            with self.assertLogs("finance_backend.jobs", level="ERROR"):
                jobs.refresh_holding_prices_job(mock.sentinel.engine, mock.sentinel.source)

    def test_holding_refresh_runs(self) -> None:
        with mock.patch.object(
            jobs, "update_holding_prices", return_value=PriceRefreshSummary(updated=1, skipped=0)
        ) as update:
            jobs.refresh_holding_prices_job(mock.sentinel.engine, mock.sentinel.source)

        update.assert_called_once_with(mock.sentinel.engine, mock.sentinel.source)


class SchedulerTests(unittest.TestCase):
    def test_scheduler_registers_both_jobs(self) -> None:
        scheduler = jobs.start_scheduler(
            mock.sentinel.engine, mock.sentinel.provider, mock.sentinel.source, ["USD"]
        )
        try:
            job_ids = {job.id for job in scheduler.get_jobs()}
            self.assertEqual(job_ids, {jobs.RATE_JOB_ID, jobs.HOLDING_JOB_ID})
            self.assertTrue(scheduler.running)
        finally:
            jobs.shutdown_scheduler(scheduler)

        self.assertFalse(scheduler.running)

    def test_shutdown_tolerates_missing_scheduler(self) -> None:
        jobs.shutdown_scheduler(None)


if __name__ == "__main__":
    unittest.main()
