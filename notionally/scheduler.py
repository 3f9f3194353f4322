"""Background refresh of the shared storage token."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_RUNNING
from apscheduler.triggers.interval import IntervalTrigger

from .db import ActivityStore
from .errors import StorageError
from .sinks.dropbox import DropboxAuth

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "dropbox-token-refresh"


@dataclass(frozen=True, slots=True)
class RefreshStatus:
    """Snapshot of job registrations and the last refresh outcome."""

    total_jobs: int
    running: bool
    next_runs: dict[str, str | None]
    last_refresh: str | None
    last_error: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "totalJobs": self.total_jobs,
            "running": self.running,
            "nextRuns": self.next_runs,
            "lastRefresh": self.last_refresh,
            "lastError": self.last_error,
        }


class TokenRefreshScheduler:
    """Refresh the Dropbox token on a fixed interval on the server's event loop.

    Owned by the composition root; ``start`` must be called with a running loop.
    """

    def __init__(self, auth: DropboxAuth, *, interval_hours: float, store: ActivityStore | None = None) -> None:
        self.auth = auth
        self.interval_hours = interval_hours
        self.store = store
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            }
        )
        self._last_refresh: datetime | None = None
        self._last_error: str | None = None

    def start(self) -> None:
        if not self.auth.can_refresh:
            logger.info("Dropbox refresh credentials missing; token refresh scheduler not started.")
            return
        self.scheduler.add_job(
            self.refresh_now,
            IntervalTrigger(hours=self.interval_hours),
            id=REFRESH_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Token refresh scheduled every %.1f hours", self.interval_hours)

    def shutdown(self) -> None:
        if self.scheduler.state == STATE_RUNNING:
            self.scheduler.shutdown(wait=False)
            logger.info("Token refresh scheduler shutdown complete.")

    async def refresh_now(self) -> bool:
        """Refresh once; failures are logged and recorded, never raised."""
        started = datetime.now(timezone.utc)
        try:
            await self.auth.refresh()
        except StorageError as exc:
            self._last_error = str(exc)
            logger.error("Scheduled Dropbox token refresh failed: %s", exc)
            await self._record("fail", str(exc))
            return False
        self._last_refresh = started
        self._last_error = None
        await self._record("pass", started.isoformat())
        return True

    async def _record(self, status: str, detail: str) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.record_health, component="dropbox-token", status=status, detail=detail)
        except Exception:
            logger.exception("Could not record token refresh health")

    def snapshot(self) -> RefreshStatus:
        jobs = self.scheduler.get_jobs()
        next_runs = {job.id: job.next_run_time.isoformat() if job.next_run_time else None for job in jobs}
        return RefreshStatus(
            total_jobs=len(jobs),
            running=self.scheduler.state == STATE_RUNNING,
            next_runs=next_runs,
            last_refresh=self._last_refresh.isoformat() if self._last_refresh else None,
            last_error=self._last_error,
        )
