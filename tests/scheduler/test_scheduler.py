"""
Tests for the snapshot scheduler cycle and its recurring timer.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from alumni.source import SourceRefresher, SourceUnavailableError
from scheduler.mailer import DeliveryError, ResendMailer
from scheduler.models import CycleState, CycleTrigger, NotificationReport, SchedulerConfig
from scheduler.notifier import Notifier
from scheduler.scheduler_service import SnapshotScheduler
from tests.conftest import make_alumnus


class TestSnapshotCycle:
    """Test cases for SnapshotScheduler.run_cycle."""

    @pytest.fixture
    def mock_mailer(self):
        mailer = AsyncMock(spec=ResendMailer)
        mailer.send.return_value = "msg_123"
        return mailer

    @pytest.fixture
    def mock_refresher(self):
        return AsyncMock(spec=SourceRefresher)

    @pytest.fixture
    def snapshot_scheduler(self, scheduler_config, mock_db_manager, mock_refresher, mock_mailer):
        notifier = Notifier(mock_mailer, scheduler_config)
        return SnapshotScheduler(scheduler_config, mock_db_manager, mock_refresher, notifier)

    @pytest.mark.asyncio
    async def test_stages_run_in_order(self, snapshot_scheduler, mock_db_manager,
                                       mock_refresher, mock_mailer, sample_subscribers):
        """Refresh, compare, notify and rotate run exactly once in order."""
        calls = []
        mock_refresher.refresh.side_effect = lambda: calls.append("refresh")
        mock_db_manager.get_current_alumni.side_effect = lambda: calls.append("current") or [
            make_alumnus(company="Apple")
        ]
        mock_db_manager.get_previous_alumni.side_effect = lambda: calls.append("previous") or [
            make_alumnus()
        ]
        mock_db_manager.get_subscribed.side_effect = lambda: calls.append("subscribers") or sample_subscribers
        mock_mailer.send.side_effect = lambda message: calls.append("send") or "msg"
        mock_db_manager.rotate_snapshot.side_effect = lambda: calls.append("rotate") or 1

        result = await snapshot_scheduler.run_cycle()

        assert result.success
        assert calls == ["refresh", "current", "previous", "subscribers", "send", "send", "rotate"]
        assert result.changes == [
            "John Doe moved companies from Google to Apple.",
            "John Doe has started a new job at Apple as a Software Engineer.",
        ]
        assert result.deliveries_attempted == 2
        assert result.deliveries_succeeded == 2
        assert result.rotated_records == 1
        assert result.trigger == CycleTrigger.MANUAL
        assert snapshot_scheduler.state == CycleState.IDLE
        assert snapshot_scheduler.last_result is result

    @pytest.mark.asyncio
    async def test_refresh_failure_aborts_without_rotation(self, snapshot_scheduler, mock_db_manager,
                                                           mock_refresher, mock_mailer):
        mock_refresher.refresh.side_effect = SourceUnavailableError("feed down")

        result = await snapshot_scheduler.run_cycle()

        assert not result.success
        assert result.failed_stage == CycleState.REFRESHING
        assert "feed down" in result.errors[0]
        mock_db_manager.get_current_alumni.assert_not_called()
        mock_mailer.send.assert_not_called()
        mock_db_manager.rotate_snapshot.assert_not_called()
        assert snapshot_scheduler.state == CycleState.IDLE

    @pytest.mark.asyncio
    async def test_compare_failure_aborts_without_rotation(self, snapshot_scheduler, mock_db_manager,
                                                           mock_mailer):
        mock_db_manager.get_previous_alumni.side_effect = Exception("connection reset")

        result = await snapshot_scheduler.run_cycle()

        assert not result.success
        assert result.failed_stage == CycleState.COMPARING
        mock_mailer.send.assert_not_called()
        mock_db_manager.rotate_snapshot.assert_not_called()

    @pytest.mark.asyncio
    async def test_subscriber_load_failure_aborts_without_rotation(self, snapshot_scheduler,
                                                                   mock_db_manager):
        mock_db_manager.get_subscribed.side_effect = Exception("query failed")

        result = await snapshot_scheduler.run_cycle()

        assert result.failed_stage == CycleState.NOTIFYING
        mock_db_manager.rotate_snapshot.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivery_failures_are_isolated(self, snapshot_scheduler, mock_db_manager,
                                                  mock_mailer, sample_subscribers):
        """One failed delivery neither blocks the others nor the rotation."""
        mock_db_manager.get_subscribed.return_value = sample_subscribers

        async def send(message):
            if message.to == "ada@ucdavis.edu":
                raise DeliveryError("rejected")
            return "msg"

        mock_mailer.send.side_effect = send

        result = await snapshot_scheduler.run_cycle()

        assert result.success
        assert result.deliveries_attempted == 2
        assert result.deliveries_succeeded == 1
        assert result.deliveries_failed == 1
        mock_db_manager.rotate_snapshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_change_list_still_emails_and_rotates(self, snapshot_scheduler, mock_db_manager,
                                                             mock_mailer, sample_subscribers):
        mock_db_manager.get_subscribed.return_value = sample_subscribers

        result = await snapshot_scheduler.run_cycle()

        assert result.success
        assert result.changes == []
        assert mock_mailer.send.await_count == 2
        mock_db_manager.rotate_snapshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rotation_failure_is_reported(self, snapshot_scheduler, mock_db_manager):
        mock_db_manager.rotate_snapshot.side_effect = Exception("rename failed")

        result = await snapshot_scheduler.run_cycle()

        assert not result.success
        assert result.failed_stage == CycleState.ROTATING

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_skipped(self, snapshot_scheduler, mock_refresher,
                                                  mock_db_manager):
        """A trigger arriving mid-cycle collapses instead of running twice."""
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_refresh():
            started.set()
            await release.wait()

        mock_refresher.refresh.side_effect = slow_refresh

        first = asyncio.create_task(snapshot_scheduler.run_cycle(CycleTrigger.SCHEDULED))
        await started.wait()

        assert snapshot_scheduler.cycle_running
        second = await snapshot_scheduler.trigger_now()

        release.set()
        first_result = await first

        assert second.skipped
        assert not second.success
        assert first_result.success
        assert mock_refresher.refresh.await_count == 1
        mock_db_manager.rotate_snapshot.assert_awaited_once()
        assert not snapshot_scheduler.cycle_running

    @pytest.mark.asyncio
    async def test_cycle_after_failure_runs_again(self, snapshot_scheduler, mock_refresher,
                                                  mock_db_manager):
        mock_refresher.refresh.side_effect = [Exception("boom"), None]

        failed = await snapshot_scheduler.run_cycle()
        succeeded = await snapshot_scheduler.run_cycle()

        assert not failed.success
        assert succeeded.success
        mock_db_manager.rotate_snapshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lease_held_by_another_process_skips(self, snapshot_scheduler, mock_db_manager,
                                                       mock_refresher):
        mock_db_manager.acquire_cycle_lease.return_value = False

        result = await snapshot_scheduler.run_cycle(CycleTrigger.SCHEDULED)

        assert result.skipped
        assert not result.success
        mock_refresher.refresh.assert_not_called()
        mock_db_manager.rotate_snapshot.assert_not_called()
        mock_db_manager.release_cycle_lease.assert_not_called()

    @pytest.mark.asyncio
    async def test_lease_released_after_success(self, snapshot_scheduler, mock_db_manager):
        result = await snapshot_scheduler.run_cycle()

        mock_db_manager.acquire_cycle_lease.assert_awaited_once_with(
            result.cycle_id, snapshot_scheduler.config.cycle_lease_seconds
        )
        mock_db_manager.release_cycle_lease.assert_awaited_once_with(result.cycle_id)

    @pytest.mark.asyncio
    async def test_lease_released_after_failure(self, snapshot_scheduler, mock_db_manager,
                                                mock_refresher):
        mock_refresher.refresh.side_effect = SourceUnavailableError("feed down")

        result = await snapshot_scheduler.run_cycle()

        assert not result.success
        mock_db_manager.release_cycle_lease.assert_awaited_once_with(result.cycle_id)

    @pytest.mark.asyncio
    async def test_lease_store_failure_aborts(self, snapshot_scheduler, mock_db_manager, mock_refresher):
        mock_db_manager.acquire_cycle_lease.side_effect = Exception("not primary")

        result = await snapshot_scheduler.run_cycle()

        assert not result.success
        assert not result.skipped
        assert "not primary" in result.errors[0]
        mock_refresher.refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_release_failure_keeps_cycle_result(self, snapshot_scheduler, mock_db_manager):
        mock_db_manager.release_cycle_lease.side_effect = Exception("connection reset")

        result = await snapshot_scheduler.run_cycle()

        assert result.success
        mock_db_manager.rotate_snapshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_schedulers_sharing_a_store_run_one_cycle(self, scheduler_config, mock_db_manager,
                                                            mock_mailer):
        """Two processes firing at the same moment produce a single cycle."""
        lease = {}

        async def acquire(owner, ttl_seconds):
            if lease.get("owner"):
                return False
            lease["owner"] = owner
            return True

        async def release(owner):
            if lease.get("owner") != owner:
                return False
            lease["owner"] = None
            return True

        mock_db_manager.acquire_cycle_lease.side_effect = acquire
        mock_db_manager.release_cycle_lease.side_effect = release

        release_refresh = asyncio.Event()
        started = asyncio.Event()

        async def slow_refresh():
            started.set()
            await release_refresh.wait()

        api_refresher = AsyncMock(spec=SourceRefresher)
        api_refresher.refresh.side_effect = slow_refresh
        daemon_refresher = AsyncMock(spec=SourceRefresher)

        api_side = SnapshotScheduler(scheduler_config, mock_db_manager, api_refresher,
                                     Notifier(mock_mailer, scheduler_config))
        daemon_side = SnapshotScheduler(scheduler_config, mock_db_manager, daemon_refresher,
                                        Notifier(mock_mailer, scheduler_config))

        first = asyncio.create_task(api_side.run_cycle(CycleTrigger.SCHEDULED))
        await started.wait()
        second = await daemon_side.run_cycle(CycleTrigger.SCHEDULED)
        release_refresh.set()
        first_result = await first

        assert first_result.success
        assert second.skipped
        daemon_refresher.refresh.assert_not_called()
        mock_db_manager.rotate_snapshot.assert_awaited_once()
        assert lease["owner"] is None

    @pytest.mark.asyncio
    async def test_scheduled_job_reports_summary(self, snapshot_scheduler, mock_db_manager):
        mock_db_manager.count_subscribed.return_value = 1

        summary = await snapshot_scheduler._scheduled_cycle_job()

        assert summary["success"] is True
        assert summary["skipped"] is False
        assert summary["changes"] == 0
        assert snapshot_scheduler.last_result.trigger == CycleTrigger.SCHEDULED


class TestRecurringTimer:
    """Test cases for starting and stopping the monthly job."""

    @pytest.fixture
    def make_scheduler(self, mock_db_manager):
        created = []

        def factory(config):
            scheduler = SnapshotScheduler(
                config,
                mock_db_manager,
                AsyncMock(spec=SourceRefresher),
                AsyncMock(spec=Notifier),
                scheduler=AsyncIOScheduler(timezone=config.timezone)
            )
            created.append(scheduler)
            return scheduler

        yield factory

        for scheduler in created:
            scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_start_registers_single_job(self, make_scheduler, scheduler_config):
        scheduler = make_scheduler(scheduler_config)

        scheduler.start()
        scheduler.start()

        assert scheduler.timer_active
        jobs = scheduler.scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].id == SnapshotScheduler.JOB_ID
        assert jobs[0].max_instances == 1
        assert jobs[0].coalesce is True

    @pytest.mark.asyncio
    async def test_job_fires_monthly_at_configured_time(self, make_scheduler):
        config = SchedulerConfig(schedule_day=15, schedule_hour=9, schedule_minute=30, timezone="UTC")
        scheduler = make_scheduler(config)

        scheduler.start()

        next_run = scheduler.scheduler.get_job(SnapshotScheduler.JOB_ID).next_run_time
        assert (next_run.day, next_run.hour, next_run.minute) == (15, 9, 30)
        assert scheduler.get_scheduler_status()["next_run_time"] == next_run.isoformat()

    @pytest.mark.asyncio
    async def test_stop_removes_job(self, make_scheduler, scheduler_config):
        scheduler = make_scheduler(scheduler_config)

        scheduler.start()
        scheduler.stop()
        scheduler.stop()

        assert not scheduler.timer_active
        assert scheduler.scheduler.get_jobs() == []

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, make_scheduler, scheduler_config):
        scheduler = make_scheduler(scheduler_config)

        scheduler.start()
        scheduler.stop()
        scheduler.start()

        assert scheduler.timer_active
        assert len(scheduler.scheduler.get_jobs()) == 1

    @pytest.mark.asyncio
    async def test_suppressed_schedule_never_registers(self, make_scheduler):
        config = SchedulerConfig(timezone="UTC", suppress_schedule=True)
        scheduler = make_scheduler(config)

        scheduler.start()

        assert not scheduler.timer_active
        assert scheduler.scheduler.get_jobs() == []

    @pytest.mark.asyncio
    async def test_fire_without_subscribers_stops_timer(self, make_scheduler, scheduler_config,
                                                        mock_db_manager):
        """Unsubscribes made through another process disarm this timer at fire time."""
        scheduler = make_scheduler(scheduler_config)
        scheduler.start()
        mock_db_manager.count_subscribed.return_value = 0

        summary = await scheduler._scheduled_cycle_job()

        assert summary["skipped"] is True
        assert not scheduler.timer_active
        assert scheduler.scheduler.get_jobs() == []
        scheduler.refresher.refresh.assert_not_called()
        mock_db_manager.acquire_cycle_lease.assert_not_called()

    @pytest.mark.asyncio
    async def test_fire_with_subscribers_runs_cycle(self, make_scheduler, scheduler_config,
                                                    mock_db_manager):
        scheduler = make_scheduler(scheduler_config)
        scheduler.start()
        mock_db_manager.count_subscribed.return_value = 2
        scheduler.notifier.notify_subscribers.return_value = NotificationReport()

        summary = await scheduler._scheduled_cycle_job()

        assert summary["success"] is True
        assert scheduler.timer_active
        scheduler.refresher.refresh.assert_awaited_once()

    def test_status_when_idle(self, make_scheduler, scheduler_config):
        scheduler = make_scheduler(scheduler_config)

        status = scheduler.get_scheduler_status()

        assert status["timer_active"] is False
        assert status["cycle_running"] is False
        assert status["state"] == "idle"
        assert status["next_run_time"] is None
        assert status["last_cycle_id"] is None
