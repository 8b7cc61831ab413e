"""Job Scheduler - periodic approval sweeps

Runs an explicit list of interval jobs on APScheduler's AsyncIOScheduler.
Handles:
- Auto escalation of stale approvals
- Approver reminders
- Overdue request marking
- System monitoring alerts
- Data cleanup

Nothing starts at import time; the host calls start() and stop(). Every
tenant sweep runs in a worker thread so the event loop stays free for
request handling.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel

from ..config.settings import Settings, settings as default_settings
from ..domain.errors import JobNotFoundError
from .sweeps import ApprovalSweeper
from ..utils.idgen import generate_correlation_id
from ..utils.logger import correlation_scope, get_logger
from ..utils.time import Clock, SystemClock

logger = get_logger(__name__)


class ScheduledJob:
    """
    One periodic job

    The task takes a tenant id; per_tenant=False jobs run once with None.
    """

    def __init__(
        self,
        job_id: str,
        name: str,
        interval: timedelta,
        task: Callable[[Optional[str]], bool],
        per_tenant: bool = True
    ):
        self.job_id = job_id
        self.name = name
        self.interval = interval
        self.task = task
        self.per_tenant = per_tenant
        self.last_started_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_result: Optional[bool] = None


class JobStatus(BaseModel):
    """Reported state of a scheduled job"""
    job_id: str
    name: str
    interval_minutes: float
    is_running: bool
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_result: Optional[bool] = None


class JobScheduler:
    """
    APScheduler wrapper for the approval sweeps

    A job never overlaps itself: APScheduler runs it with max_instances=1
    and coalesced misfires, and the in-process running set skips a manual
    trigger while a run is active.
    """

    def __init__(
        self,
        sweeper: Optional[ApprovalSweeper] = None,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None
    ):
        self.settings = config or default_settings
        self.clock = clock or SystemClock()
        self.sweeper = sweeper or ApprovalSweeper(clock=self.clock, config=self.settings)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.jobs: Dict[str, ScheduledJob] = {
            job.job_id: job for job in self._default_jobs()
        }
        self._running: Set[str] = set()
        self._is_running = False

    def _default_jobs(self) -> List[ScheduledJob]:
        s = self.settings
        return [
            ScheduledJob(
                "auto_escalation", "Escalate stale approvals",
                timedelta(minutes=s.escalation_interval_minutes), self.sweeper.run_auto_escalation
            ),
            ScheduledJob(
                "reminders", "Send approval reminders",
                timedelta(minutes=s.reminder_interval_minutes), self.sweeper.send_reminders
            ),
            ScheduledJob(
                "overdue_update", "Mark overdue requests",
                timedelta(minutes=s.overdue_interval_minutes), self.sweeper.update_overdue_requests_status,
                per_tenant=False
            ),
            ScheduledJob(
                "system_monitoring", "Monitor approval queues",
                timedelta(minutes=s.monitoring_interval_minutes), self.sweeper.run_system_monitoring
            ),
            ScheduledJob(
                "data_cleanup", "Clean up old records",
                timedelta(minutes=s.cleanup_interval_minutes), self.sweeper.run_data_cleanup
            ),
        ]

    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        self.scheduler = AsyncIOScheduler()
        for job in self.jobs.values():
            self.scheduler.add_job(
                self._run_job,
                trigger=IntervalTrigger(seconds=job.interval.total_seconds()),
                args=[job.job_id],
                id=job.job_id,
                name=job.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self.scheduler.start()
        self._is_running = True
        logger.info("Job scheduler started", extra={"count": len(self.jobs)})

    def stop(self) -> None:
        """Stop the scheduler"""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        self._is_running = False
        logger.info("Job scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def run_job_now(self, job_id: str) -> bool:
        """
        Run one job immediately

        Returns:
            False when the job is already running, otherwise True once the run ends

        Raises:
            JobNotFoundError: Unknown job id
        """
        if job_id not in self.jobs:
            raise JobNotFoundError(f"Job {job_id} not found", details={"job_id": job_id})
        return await self._run_job(job_id)

    def get_job_statuses(self) -> List[JobStatus]:
        return [
            JobStatus(
                job_id=job.job_id,
                name=job.name,
                interval_minutes=job.interval.total_seconds() / 60,
                is_running=job.job_id in self._running,
                last_started_at=job.last_started_at,
                last_finished_at=job.last_finished_at,
                last_error=job.last_error,
                last_result=job.last_result
            )
            for job in self.jobs.values()
        ]

    async def _run_job(self, job_id: str) -> bool:
        job = self.jobs[job_id]
        if job_id in self._running:
            logger.info(f"Job {job_id} still running, skipping", extra={"job_id": job_id})
            return False

        self._running.add(job_id)
        with correlation_scope(generate_correlation_id()):
            changed = await self._run_tenants(job)

        logger.debug(f"Job {job_id} finished", extra={"job_id": job_id, "status": "changed" if changed else "idle"})
        return True

    async def _run_tenants(self, job: ScheduledJob) -> bool:
        job_id = job.job_id
        job.last_started_at = self.clock.now()
        job.last_error = None
        changed = False

        try:
            if job.per_tenant:
                tenant_ids = await asyncio.to_thread(self.sweeper.list_tenant_ids)
            else:
                tenant_ids = [None]

            for tenant_id in tenant_ids:
                try:
                    if await asyncio.to_thread(job.task, tenant_id):
                        changed = True
                except Exception as e:
                    job.last_error = str(e)
                    logger.error(
                        f"Job {job_id} failed for tenant {tenant_id}: {e}",
                        extra={"job_id": job_id, "tenant_id": tenant_id, "error_type": type(e).__name__}
                    )

        except Exception as e:
            job.last_error = str(e)
            logger.error(
                f"Error in job {job_id}: {e}",
                extra={"job_id": job_id, "error_type": type(e).__name__}
            )

        finally:
            job.last_finished_at = self.clock.now()
            job.last_result = changed
            self._running.discard(job_id)

        return changed


# Global scheduler instance
_scheduler: Optional[JobScheduler] = None


def get_scheduler() -> JobScheduler:
    """Get or create scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = JobScheduler()
    return _scheduler


def start_scheduler() -> None:
    """Start the global scheduler"""
    get_scheduler().start()


def stop_scheduler() -> None:
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
