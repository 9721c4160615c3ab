"""
Snapshot scheduler service.

This module provides:
- The monthly refresh -> compare -> notify -> rotate cycle
- Single-flight execution across scheduled and manual triggers and across processes
- Start/stop control of the recurring APScheduler job
"""

import asyncio
import uuid
from datetime import datetime
from typing import Dict, Optional

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from alumni.database import MongoDBManager
from alumni.source import SourceRefresher
from scheduler.differ import diff_snapshots
from scheduler.models import CycleResult, CycleState, CycleTrigger, SchedulerConfig
from scheduler.notifier import Notifier
from utilities.logger import CycleLogger

logger = structlog.get_logger(__name__)


class SnapshotScheduler:
    """Runs snapshot cycles and owns the recurring timer."""

    JOB_ID = "monthly_alumni_updates"

    def __init__(
        self,
        config: SchedulerConfig,
        db_manager: MongoDBManager,
        refresher: SourceRefresher,
        notifier: Notifier,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        """
        Initialize scheduler service.

        Args:
            config: Scheduler configuration
            db_manager: Database manager instance
            refresher: Source refresh collaborator
            notifier: Subscriber notification fan-out
            scheduler: APScheduler instance (created from config when omitted)
        """
        self.config = config
        self.db_manager = db_manager
        self.refresher = refresher
        self.notifier = notifier
        self.scheduler = scheduler or AsyncIOScheduler(timezone=config.timezone)
        self.state = CycleState.IDLE
        self.last_result: Optional[CycleResult] = None
        self.logger = logger.bind(component="snapshot_scheduler")

        self._cycle_lock = asyncio.Lock()
        self._job = None

        self._setup_scheduler_listeners()

    def _setup_scheduler_listeners(self) -> None:
        """Setup scheduler event listeners."""
        def job_executed_listener(event):
            self.logger.info(
                "Job executed",
                job_id=event.job_id,
                duration=event.retval.get('duration', 0) if event.retval else 0
            )

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    @property
    def timer_active(self) -> bool:
        """Whether the recurring job is registered."""
        return self._job is not None

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> None:
        """Register the monthly job. Calling it again is a no-op."""
        if self._job is not None:
            return

        if self.config.suppress_schedule:
            self.logger.info("Recurring schedule suppressed (test mode)")
            return

        if not self.scheduler.running:
            self.scheduler.start()

        self._job = self.scheduler.add_job(
            func=self._scheduled_cycle_job,
            trigger=CronTrigger(
                day=self.config.schedule_day,
                hour=self.config.schedule_hour,
                minute=self.config.schedule_minute,
                timezone=self.config.timezone
            ),
            id=self.JOB_ID,
            name='Monthly Alumni Updates',
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.config.misfire_grace_time_seconds,
            replace_existing=True
        )
        self.logger.info(
            "Recurring schedule started",
            day=self.config.schedule_day,
            hour=self.config.schedule_hour,
            minute=self.config.schedule_minute,
            timezone=self.config.timezone
        )

    def stop(self) -> None:
        """Remove the monthly job. Calling it again is a no-op."""
        if self._job is None:
            return

        try:
            self._job.remove()
        except JobLookupError:
            self.logger.warning("Recurring job already removed", job_id=self.JOB_ID)
        self._job = None
        self.logger.info("Recurring schedule stopped")

    def shutdown(self) -> None:
        """Stop the timer and the underlying APScheduler."""
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.logger.info("Snapshot scheduler shut down")

    async def trigger_now(self) -> CycleResult:
        """Run a cycle immediately (administrative trigger)."""
        return await self.run_cycle(CycleTrigger.MANUAL)

    async def run_cycle(self, trigger: CycleTrigger = CycleTrigger.MANUAL) -> CycleResult:
        """
        Run one refresh -> compare -> notify -> rotate cycle.

        A trigger arriving while another cycle runs, in this process or
        another one sharing the database, returns a skipped result.
        Failures never raise; they are reported in the returned CycleResult.
        """
        start_time = datetime.utcnow()
        cycle_id = f"cycle_{start_time.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        result = CycleResult(cycle_id=cycle_id, trigger=trigger, started_at=start_time)
        cycle_logger = CycleLogger("snapshot_cycle").bind_context(cycle_id=cycle_id)

        if self._cycle_lock.locked():
            cycle_logger.log_cycle_skipped(trigger.value)
            result.skipped = True
            result.state = self.state
            return result

        async with self._cycle_lock:
            # Another process (API or daemon) may be running a cycle
            try:
                leased = await self.db_manager.acquire_cycle_lease(
                    cycle_id, self.config.cycle_lease_seconds
                )
            except Exception as e:
                cycle_logger.log_stage_failed("lease", str(e))
                result.errors.append(str(e))
                self.last_result = result
                return result

            if not leased:
                cycle_logger.log_cycle_skipped(trigger.value)
                result.skipped = True
                return result

            cycle_logger.log_cycle_start(trigger.value)
            try:
                await self._run_stages(result, cycle_logger)
            finally:
                self.state = CycleState.IDLE
                result.duration_seconds = (datetime.utcnow() - start_time).total_seconds()
                await self._release_lease(cycle_id)

        if result.success:
            cycle_logger.log_cycle_complete(
                changes=len(result.changes),
                delivered=result.deliveries_succeeded,
                failed_deliveries=result.deliveries_failed,
                rotated=result.rotated_records,
                duration_seconds=result.duration_seconds
            )

        self.last_result = result
        return result

    async def _run_stages(self, result: CycleResult, cycle_logger: CycleLogger) -> None:
        try:
            self._enter(CycleState.REFRESHING, result, cycle_logger)
            await self.refresher.refresh()

            self._enter(CycleState.COMPARING, result, cycle_logger)
            current = await self.db_manager.get_current_alumni()
            previous = await self.db_manager.get_previous_alumni()
            result.changes = diff_snapshots(current, previous)

            # Notify against the baseline that is about to be replaced
            self._enter(CycleState.NOTIFYING, result, cycle_logger)
            subscribers = await self.db_manager.get_subscribed()
            report = await self.notifier.notify_subscribers(subscribers, result.changes, cycle_logger)
            result.deliveries_attempted = report.attempted
            result.deliveries_succeeded = report.delivered
            result.deliveries_failed = report.failed

            self._enter(CycleState.ROTATING, result, cycle_logger)
            result.rotated_records = await self.db_manager.rotate_snapshot()

        except Exception as e:
            result.failed_stage = self.state
            result.errors.append(str(e))
            cycle_logger.log_stage_failed(self.state.value, str(e))
            return

        result.success = True

    def _enter(self, state: CycleState, result: CycleResult, cycle_logger: CycleLogger) -> None:
        self.state = state
        result.state = state
        cycle_logger.log_stage(state.value)

    async def _release_lease(self, cycle_id: str) -> None:
        try:
            await self.db_manager.release_cycle_lease(cycle_id)
        except Exception as e:
            # The lease expires on its own
            self.logger.warning("Failed to release cycle lease", cycle_id=cycle_id, error=str(e))

    async def _scheduled_cycle_job(self) -> Dict:
        """
        Monthly job body.

        Subscriptions may have ended through another process since this
        timer was armed, so the stored count is checked before running.
        """
        if await self.db_manager.count_subscribed() == 0:
            self.logger.info("No active subscribers at fire time, stopping recurring schedule")
            self.stop()
            return {
                'cycle_id': None,
                'success': False,
                'skipped': True,
                'changes': 0,
                'duration': 0
            }

        result = await self.run_cycle(CycleTrigger.SCHEDULED)
        return {
            'cycle_id': result.cycle_id,
            'success': result.success,
            'skipped': result.skipped,
            'changes': len(result.changes),
            'duration': result.duration_seconds
        }

    def get_scheduler_status(self) -> Dict:
        """Get current scheduler status."""
        next_run = None
        if self._job is not None and getattr(self._job, 'next_run_time', None):
            next_run = self._job.next_run_time.isoformat()

        return {
            'timer_active': self.timer_active,
            'cycle_running': self.cycle_running,
            'state': self.state.value,
            'timezone': self.config.timezone,
            'next_run_time': next_run,
            'last_cycle_id': self.last_result.cycle_id if self.last_result else None,
            'last_cycle_success': self.last_result.success if self.last_result else None
        }
