"""Clinical metrics ETL orchestrator."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

from rpm_metrics.config import Settings, settings as default_settings
from rpm_metrics.database import PracticeEngineRegistry
from rpm_metrics.logging import metrics_scope, run_id_var
from rpm_metrics.services.metrics.classifiers import (
    AlertClassifier,
    BloodPressureClassifier,
    ClassificationResult,
    GlucoseClassifier,
    OximeterClassifier,
    WeightClassifier,
)
from rpm_metrics.services.metrics.cohorts import CohortProvider, SQLCohortProvider
from rpm_metrics.services.metrics.exceptions import (
    CohortLookupError,
    SchemaInitializationError,
)
from rpm_metrics.services.metrics.repository import ClinicalMetricsRepository
from rpm_metrics.services.metrics.telemetry import TelemetryReader
from rpm_metrics.services.metrics.thresholds import (
    DeviceType,
    EnrollmentPeriod,
    date_window,
)

logger = logging.getLogger("rpm_metrics.etl")


@dataclass
class MetricsRunStats:
    """Outcome of one full ETL run."""

    run_id: str = ""
    practices: int = 0
    practices_failed: int = 0
    practices_locked: int = 0
    periods_processed: int = 0
    periods_skipped: int = 0
    periods_failed: int = 0
    evidence_rows: int = 0
    failed_devices: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


def evidence_rows(results: Sequence[ClassificationResult]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for result in results:
        for metric_name, items in result.evidence.items():
            for item in items:
                rows.append(
                    {
                        "patient_sub": item.patient_id,
                        "metric_name": metric_name,
                        "metric_value_detailed": item.value,
                        "reading_timestamp": item.timestamp,
                    }
                )
    return rows


class ClinicalMetricsEtl:
    """Recomputes summaries and evidence for every configured practice and period.

    Practices and periods are processed sequentially. A cohort failure skips the
    rest of that practice, a device failure leaves that device's stored metrics
    and evidence from the previous run untouched, and a persistence failure skips only the current period. Failing to create the
    output tables aborts the run.
    """

    def __init__(
        self,
        registry: PracticeEngineRegistry,
        cohort_provider: Optional[CohortProvider] = None,
        config: Optional[Settings] = None,
        periods: Sequence[EnrollmentPeriod] = tuple(EnrollmentPeriod),
    ) -> None:
        self.registry = registry
        self.config = config or default_settings
        self.cohort_provider = cohort_provider or SQLCohortProvider(registry.session)
        self.periods = tuple(periods)
        self.bp_classifier = BloodPressureClassifier()
        self.oximeter_classifier = OximeterClassifier()
        self.weight_classifier = WeightClassifier()
        self.glucose_classifier = GlucoseClassifier()
        self.alert_classifier = AlertClassifier(
            count_out_of_range_as_critical=self.config.metrics_count_out_of_range_as_critical,
        )

    def _practice_ids(self) -> list[str]:
        return [practice.practice_id for practice in self.config.practices]

    def _repository(self, practice_id: str) -> ClinicalMetricsRepository:
        return ClinicalMetricsRepository(
            engine=self.registry.engine(practice_id),
            session_factory=partial(self.registry.session, practice_id),
            batch_size=self.config.metrics_evidence_batch_size,
        )

    def _reader(self, practice_id: str) -> TelemetryReader:
        return TelemetryReader(
            session_factory=partial(self.registry.session, practice_id),
            chunk_size=self.config.metrics_chunk_size,
        )

    async def run(self, now: Optional[datetime] = None) -> MetricsRunStats:
        run_id = uuid.uuid4().hex[:12]
        token = run_id_var.set(run_id)
        try:
            return await self._run(run_id, now or datetime.now(timezone.utc))
        finally:
            run_id_var.reset(token)

    async def _run(self, run_id: str, now: datetime) -> MetricsRunStats:
        started = time.monotonic()
        stats = MetricsRunStats(run_id=run_id)
        practice_ids = self._practice_ids()
        logger.info("Clinical metrics run started practices=%d", len(practice_ids))

        await self.ensure_schema(practice_ids)
        for practice_id in practice_ids:
            stats.practices += 1
            try:
                with metrics_scope(practice_id=practice_id):
                    await self._run_locked(practice_id, now, stats)
            except CohortLookupError:
                stats.practices_failed += 1
                logger.exception("Skipping remaining periods for practice=%s", practice_id)

        stats.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            "Clinical metrics run finished processed=%d skipped=%d failed=%d "
            "evidence=%d failed_devices=%d duration=%.3fs",
            stats.periods_processed,
            stats.periods_skipped,
            stats.periods_failed,
            stats.evidence_rows,
            len(stats.failed_devices),
            stats.duration_seconds,
        )
        return stats

    async def _run_locked(self, practice_id: str, now: datetime, stats: MetricsRunStats) -> None:
        async with self._repository(practice_id).practice_lock(practice_id) as acquired:
            if not acquired:
                stats.practices_locked += 1
                logger.warning(
                    "Practice=%s is being recomputed by another process; skipping",
                    practice_id,
                )
                return
            await self.run_practice(practice_id, now, stats)

    async def ensure_schema(self, practice_ids: Sequence[str]) -> None:
        for practice_id in practice_ids:
            try:
                await self._repository(practice_id).ensure_schema()
            except Exception as exc:
                logger.exception("Schema initialization failed for practice=%s", practice_id)
                raise SchemaInitializationError(
                    f"Could not create clinical metrics tables for practice {practice_id}"
                ) from exc

    async def _fetch_cohort(self, practice_id: str, period: EnrollmentPeriod) -> list[str]:
        try:
            return await self.cohort_provider.get_cohort(practice_id, period.value)
        except Exception as exc:
            raise CohortLookupError(practice_id, period.value) from exc

    async def run_practice(
        self,
        practice_id: str,
        now: datetime,
        stats: MetricsRunStats,
    ) -> None:
        reader = self._reader(practice_id)
        repository = self._repository(practice_id)

        for period in self.periods:
            with metrics_scope(period=period.value):
                await self.run_period(reader, repository, practice_id, period, now, stats)

    async def run_period(
        self,
        reader: TelemetryReader,
        repository: ClinicalMetricsRepository,
        practice_id: str,
        period: EnrollmentPeriod,
        now: datetime,
        stats: MetricsRunStats,
    ) -> None:
        cohort = await self._fetch_cohort(practice_id, period)
        if not cohort:
            stats.periods_skipped += 1
            logger.info("Empty cohort practice=%s period=%s", practice_id, period.value)
            return

        start, end = date_window(period, now, self.config.metrics_overall_lookback_days)
        results, kept = await self.classify_period(
            reader, practice_id, period, cohort, start, end, stats
        )

        columns: dict[str, Any] = {"total_patients": len(cohort)}
        for result in results:
            columns.update(result.columns)
        rows = evidence_rows(results)

        try:
            summary_id = await repository.upsert_summary(
                practice_id, period.value, now.date(), columns, keep_prefixes=kept
            )
            inserted = await repository.replace_evidence(
                summary_id, rows, keep_prefixes=kept
            )
        except Exception:
            stats.periods_failed += 1
            logger.exception(
                "Persisting metrics failed practice=%s period=%s",
                practice_id,
                period.value,
            )
            return

        stats.periods_processed += 1
        stats.evidence_rows += inserted
        logger.info(
            "Stored metrics practice=%s period=%s patients=%d evidence=%d/%d",
            practice_id,
            period.value,
            len(cohort),
            inserted,
            len(rows),
        )

    async def classify_period(
        self,
        reader: TelemetryReader,
        practice_id: str,
        period: EnrollmentPeriod,
        cohort: list[str],
        start: datetime,
        end: datetime,
        stats: MetricsRunStats,
    ) -> tuple[list[ClassificationResult], list[str]]:
        """Classify every device for one period.

        Returns the successful results and the metric prefixes of devices that
        failed, whose previously stored values are kept.
        """
        async def blood_pressure() -> ClassificationResult:
            readings = await reader.fetch(cohort, DeviceType.BLOOD_PRESSURE, start, end)
            return self.bp_classifier.classify(readings, cohort)

        async def oximeter() -> ClassificationResult:
            readings = await reader.fetch(cohort, DeviceType.OXIMETER, start, end)
            return self.oximeter_classifier.classify(readings, cohort)

        async def weight() -> ClassificationResult:
            readings = await reader.fetch(cohort, DeviceType.WEIGHT, start, end)
            baselines = await reader.fetch_weight_baselines(cohort)
            return self.weight_classifier.classify(readings, cohort, baselines)

        async def glucose() -> ClassificationResult:
            readings = await reader.fetch(cohort, DeviceType.GLUCOSE, start, end)
            return self.glucose_classifier.classify(readings, cohort)

        async def alerts() -> ClassificationResult:
            counts = await reader.count_alerts(cohort, start, end)
            flagged = await reader.fetch_flagged_readings(cohort, start, end)
            return self.alert_classifier.classify(counts, flagged, cohort)

        steps: tuple[
            tuple[str, tuple[str, ...], Callable[[], Awaitable[ClassificationResult]]], ...
        ] = (
            ("blood_pressure", self.bp_classifier.metric_prefixes, blood_pressure),
            ("oximeter", self.oximeter_classifier.metric_prefixes, oximeter),
            ("weight", self.weight_classifier.metric_prefixes, weight),
            ("glucose", self.glucose_classifier.metric_prefixes, glucose),
            ("alerts", self.alert_classifier.metric_prefixes, alerts),
        )
        results: list[ClassificationResult] = []
        kept: list[str] = []
        for name, prefixes, step in steps:
            try:
                results.append(await step())
            except Exception:
                stats.failed_devices.append(f"{practice_id}:{period.value}:{name}")
                logger.exception(
                    "%s metrics failed practice=%s period=%s; keeping stored values",
                    name,
                    practice_id,
                    period.value,
                )
                kept.extend(prefixes)
        return results, kept
