"""Background scheduler for periodic clinical metrics recomputation."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from rpm_metrics.config import Settings, settings as default_settings
from rpm_metrics.services.metrics.etl import ClinicalMetricsEtl, MetricsRunStats

logger = logging.getLogger("rpm_metrics.scheduler")


class MetricsScheduler:
    """Fixed-interval timer that runs the ETL behind a run-exclusion lock."""

    def __init__(self, etl: ClinicalMetricsEtl, config: Optional[Settings] = None) -> None:
        self.etl = etl
        self.config = config or default_settings
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    async def start(self) -> None:
        """Start background scheduler loop if enabled."""
        if not self.config.metrics_scheduler_enabled:
            logger.info("Metrics scheduler disabled by configuration")
            return
        if self._task and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run_loop(),
            name="clinical-metrics-scheduler",
        )
        logger.info(
            "Metrics scheduler started (interval=%ss run_on_startup=%s)",
            self.config.metrics_schedule_interval_seconds,
            self.config.metrics_run_on_startup,
        )

    async def stop(self) -> None:
        """Stop background scheduler loop; an in-flight run finishes first."""
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("Metrics scheduler stopped")

    async def run_once(self) -> MetricsRunStats | None:
        """Run the ETL unless a run is already in progress.

        Returns None when the trigger was skipped.
        """
        if self._run_lock.locked():
            logger.warning("Metrics run still in progress; skipping trigger")
            return None
        async with self._run_lock:
            return await self.etl.run()

    async def _run_loop(self) -> None:
        first_cycle = True
        while not self._stop_event.is_set():
            if first_cycle and not self.config.metrics_run_on_startup:
                first_cycle = False
                if await self._sleep(self.config.metrics_schedule_interval_seconds):
                    break
                continue
            first_cycle = False

            started_at = asyncio.get_running_loop().time()
            try:
                await self.run_once()
            except Exception:
                logger.exception("Metrics scheduler cycle failed")

            elapsed = asyncio.get_running_loop().time() - started_at
            sleep_seconds = max(
                1,
                self.config.metrics_schedule_interval_seconds - int(elapsed),
            )
            if await self._sleep(sleep_seconds):
                break

    async def _sleep(self, seconds: float) -> bool:
        """Wait for the interval; True when a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
