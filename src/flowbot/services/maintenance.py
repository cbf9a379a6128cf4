"""APScheduler-based housekeeping: cache cleanup, tracking purge, history retention."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from flowbot.cache.response_cache import ResponseCache
from flowbot.config import MaintenanceConfig
from flowbot.log import get_logger
from flowbot.storage.history_repo import ChatHistoryRepository
from flowbot.storage.welcome_repo import WelcomeRepository

logger = get_logger(__name__)


class MaintenanceService:
    """Interval jobs. A failing job is logged and retried on its next tick."""

    def __init__(
        self,
        config: MaintenanceConfig,
        cache: ResponseCache,
        welcomes: WelcomeRepository,
        history: ChatHistoryRepository,
    ):
        self._config = config
        self._cache = cache
        self._welcomes = welcomes
        self._history = history
        self._scheduler = AsyncIOScheduler(timezone=config.timezone)

    async def start(self) -> None:
        self._add_job("cache_cleanup", self.cleanup_cache, minutes=self._config.cache_cleanup_minutes)
        self._add_job(
            "welcome_tracking_purge", self.purge_tracking, minutes=self._config.tracking_purge_minutes
        )
        self._add_job("history_retention", self.purge_history, hours=self._config.history_purge_hours)
        self._scheduler.start()
        logger.info("maintenance_started", jobs=len(self._scheduler.get_jobs()))

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("maintenance_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    def _add_job(self, job_id: str, func: Callable[[], Awaitable[Any]], **interval: int) -> None:
        self._scheduler.add_job(
            self._guarded,
            IntervalTrigger(**interval),
            id=job_id,
            kwargs={"job_id": job_id, "func": func},
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug("maintenance_job_added", job_id=job_id, **interval)

    async def _guarded(self, job_id: str, func: Callable[[], Awaitable[Any]]) -> None:
        try:
            result = await func()
            logger.debug("maintenance_job_done", job_id=job_id, result=result)
        except Exception as e:
            logger.error("maintenance_job_failed", job_id=job_id, error=str(e))

    async def cleanup_cache(self) -> int:
        return await self._cache.cleanup()

    async def purge_tracking(self) -> int:
        return await self._welcomes.purge_expired_tracking()

    async def purge_history(self) -> int:
        return await self._history.purge_older_than(self._config.history_retention_days)
