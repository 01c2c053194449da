"""
Scheduler Service

Runs the periodic signal scan:
- One interval job (``signal_scan``), hourly by default
- APScheduler keeps at most one instance of the job alive
- The ScanScheduler's own Idle/Scanning guard drops overlapping ticks
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from signal_monitor.db import AsyncSessionLocal
from signal_monitor.services.linkedin_scraper import LinkedInScraper
from signal_monitor.services.scan_scheduler import ScanScheduler
from signal_monitor.services.signal_store import SignalStore
from signal_monitor.settings import get_settings

logger = logging.getLogger("scheduler")

SIGNAL_SCAN_JOB = "signal_scan"


class SchedulerService:
    """Owns the AsyncIOScheduler and the single ScanScheduler it drives."""

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._scan_scheduler: ScanScheduler | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def set_scan_scheduler(self, scan_scheduler: ScanScheduler):
        self._scan_scheduler = scan_scheduler

    def _get_scan_scheduler(self) -> ScanScheduler:
        if self._scan_scheduler is None:
            self._scan_scheduler = ScanScheduler(SignalStore(AsyncSessionLocal), LinkedInScraper())
        return self._scan_scheduler

    @property
    def scan_state(self) -> str:
        if self._scan_scheduler is None:
            return "idle"
        return self._scan_scheduler.state.value

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return

        if self._running:
            return

        self.scheduler.add_job(
            self._run_signal_scan,
            IntervalTrigger(minutes=settings.scan_interval_minutes),
            id=SIGNAL_SCAN_JOB,
            name="Scan monitored profiles for signals",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started (signal scan every %d min)", settings.scan_interval_minutes)

    def stop(self):
        """Stop the scheduler and abort a scan cycle that is still waiting on Apify."""
        if self._scan_scheduler is not None:
            self._scan_scheduler.cancel()
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    async def _run_signal_scan(self) -> dict[str, Any] | None:
        """Run one signal scan cycle; failures are logged and retried on the next tick."""
        try:
            result = await self._get_scan_scheduler().tick()
        except Exception:
            logger.exception("[signal_scan] Scan cycle failed")
            raise
        if result is None:
            return {"skipped": True}
        return result

    def get_jobs(self) -> list[dict]:
        """Get list of all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs

    async def run_now(self, job_id: str) -> dict:
        """Run a job immediately."""
        job = self.scheduler.get_job(job_id)
        if not job:
            return {"error": f"Job {job_id} not found"}

        try:
            result = await job.func()
            return {"ok": True, "result": result}
        except Exception as e:
            logger.error("Failed to run job %s: %s", job_id, e)
            return {"error": str(e)}


# Global instance
scheduler_service = SchedulerService.get_instance()
