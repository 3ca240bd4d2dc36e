"""
Tests for the housekeeping scheduler jobs
"""

from unittest.mock import Mock

from structlog.testing import capture_logs

from vehicle_completion.scheduler import (
    run_cache_purge,
    run_dedup_sweep,
    start_scheduler,
    stop_scheduler,
)


class TestJobs:

    def test_dedup_sweep_logs_evictions(self):
        orchestrator = Mock()
        orchestrator.sweep.return_value = 3

        with capture_logs() as logs:
            run_dedup_sweep(orchestrator)

        assert logs[-1]["event"] == "dedup_sweep_completed"
        assert logs[-1]["evicted"] == 3

    def test_cache_purge_crash_is_logged_not_raised(self):
        orchestrator = Mock()
        orchestrator.purge_cache.side_effect = RuntimeError("database unavailable")

        with capture_logs() as logs:
            run_cache_purge(orchestrator)

        assert logs[-1]["event"] == "cache_purge_crashed"
        assert logs[-1]["log_level"] == "error"


class TestLifecycle:

    def test_testing_environment_registers_nothing(self):
        scheduler = start_scheduler(Mock(), environment="testing")

        assert scheduler.running is False
        assert scheduler.get_jobs() == []

    def test_start_registers_both_jobs(self):
        scheduler = start_scheduler(Mock(), environment="development")
        try:
            assert scheduler.running is True
            assert {job.id for job in scheduler.get_jobs()} == {"dedup_sweep", "cache_purge"}
        finally:
            stop_scheduler(scheduler)

        assert scheduler.running is False
