"""Programación del barrido con APScheduler."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from centinela.core.logging import get_logger

from .sweep import SweepCoordinator

logger = get_logger("centinela.sweep")

JOB_ID = "conversation_sweep"


class SweepScheduler:
    """Ciclo de vida del job de barrido a intervalo fijo."""

    def __init__(self, coordinator: SweepCoordinator, *, interval_seconds: int = 60) -> None:
        self._coordinator = coordinator
        self.interval_seconds = interval_seconds
        self._scheduler: AsyncIOScheduler | None = None

    async def _run(self) -> None:
        try:
            await self._coordinator.run_once()
        except Exception:
            logger.exception("sweep.cycle_failed")

    def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("sweep.scheduler_already_running")
            return
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self._run,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            name="Conversation sweep",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("sweep.scheduler_started", extra={"interval_seconds": self.interval_seconds})

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("sweep.scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None
