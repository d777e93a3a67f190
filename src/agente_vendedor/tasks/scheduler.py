
"""Agendador em background (APScheduler) para relances e limpeza."""
from __future__ import annotations
from apscheduler.schedulers.background import BackgroundScheduler
from kink import di
from ..core.settings import Settings
from ..core.logging import get_logger
from .relance_jobs import RelanceJobs

log = get_logger()

RELANCE_JOB_ID = "relance_batch"
CLEANUP_JOB_ID = "cleanup_stale"

class RelanceScheduler:
    def __init__(self, jobs: RelanceJobs | None = None, settings: Settings | None = None):
        self.jobs = jobs or di[RelanceJobs]
        self.settings = settings or di[Settings]
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            self.jobs.run_relance, "interval",
            seconds=self.settings.relance_interval_s,
            id=RELANCE_JOB_ID, max_instances=1, coalesce=True, replace_existing=True,
        )
        self.scheduler.add_job(
            self.jobs.run_cleanup, "interval",
            seconds=self.settings.cleanup_interval_s,
            id=CLEANUP_JOB_ID, max_instances=1, coalesce=True, replace_existing=True,
        )
        self.scheduler.start()
        log.info("scheduler_started", relance_interval_s=self.settings.relance_interval_s,
                 cleanup_interval_s=self.settings.cleanup_interval_s)

    def stop(self, wait: bool = False) -> None:
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=wait)
        log.info("scheduler_shutdown")

    def status(self) -> dict:
        jobs = []
        if self.scheduler.running:
            for job in self.scheduler.get_jobs():
                jobs.append({
                    "id": job.id,
                    "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                })
        return {
            "running": self.scheduler.running,
            "relance_running": self.jobs.relance_running,
            "cleanup_running": self.jobs.cleanup_running,
            "relance_interval_s": self.settings.relance_interval_s,
            "cleanup_interval_s": self.settings.cleanup_interval_s,
            "jobs": jobs,
        }
