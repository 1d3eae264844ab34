"""Unit tests for the interval scheduler wrapper."""

import pytest

from services import scheduler


@pytest.fixture
async def running_scheduler():
    scheduler.start_scheduler()
    yield scheduler.get_scheduler()
    scheduler.shutdown_scheduler()


async def noop():
    return None


class TestIntervalJobs:
    """Tests for register_interval_job and remove_job."""

    async def test_register_sets_no_overlap_options(self, running_scheduler):
        scheduler.register_interval_job("process-execution-queue", 5, noop)

        job = running_scheduler.get_job("process-execution-queue")
        assert job.max_instances == 1
        assert job.coalesce is True
        assert [j["id"] for j in scheduler.get_all_jobs()] == ["process-execution-queue"]

    async def test_register_replaces_existing(self, running_scheduler):
        scheduler.register_interval_job("sweep", 60, noop)
        scheduler.register_interval_job("sweep", 30, noop)
        assert len(running_scheduler.get_jobs()) == 1

    async def test_remove_job(self, running_scheduler):
        scheduler.register_interval_job("sweep", 60, noop)
        assert scheduler.remove_job("sweep") is True
        assert scheduler.remove_job("sweep") is False

    async def test_shutdown_resets_singleton(self):
        first = scheduler.get_scheduler()
        scheduler.shutdown_scheduler()
        assert scheduler.get_scheduler() is not first
        scheduler.shutdown_scheduler()
