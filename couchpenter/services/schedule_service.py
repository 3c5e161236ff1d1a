from __future__ import annotations

import logging
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from couchpenter.models.couchpenter import OperationResult
from couchpenter.services.couchpenter_service import CouchpenterService
from couchpenter.services.errors import ConfigError, CouchpenterError

logger = logging.getLogger(__name__)

JOB_ID = "couchpenter_warm_views"

ResultCallback = Callable[[list[OperationResult]], None]
ErrorCallback = Callable[[CouchpenterError], None]
StopCallback = Callable[[OperationResult], None]


class WarmViewsScheduler:
    """Runs the warmViews command on a cron schedule ("* * * * *" format).

    Firings never overlap: a firing that is due while the previous warm up is
    still running is skipped. A failed firing is reported and the schedule
    keeps running. Must be started from within a running event loop.
    """

    def __init__(
        self,
        *,
        couchpenter: CouchpenterService,
        schedule: str,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_stop: Optional[StopCallback] = None,
    ) -> None:
        try:
            self._trigger = CronTrigger.from_crontab(schedule)
        except ValueError as exc:
            raise ConfigError(f"Invalid cron schedule: {schedule!r}") from exc

        self._couchpenter = couchpenter
        self._schedule = schedule
        self._on_result = on_result
        self._on_error = on_error
        self._on_stop = on_stop
        self._scheduler = AsyncIOScheduler()
        self._runs = 0

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def runs(self) -> int:
        return self._runs

    def start(self) -> None:
        self._scheduler.add_job(
            self.fire,
            self._trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Scheduled views warm up (schedule=%r)", self._schedule)

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Stopped views warm up schedule")
            if self._on_stop is not None:
                self._on_stop(OperationResult(id="couchpenter", message="stopped views warm up schedule"))

    async def fire(self) -> None:
        """One scheduled warm up run."""

        self._runs += 1
        try:
            results = await self._couchpenter.warm_views()
        except CouchpenterError as exc:
            logger.error("Scheduled views warm up failed: %s", exc)
            if self._on_error is not None:
                self._on_error(exc)
            return

        logger.info("Scheduled views warm up complete: %d result(s)", len(results))
        if self._on_result is not None:
            self._on_result(results)
