"""Persistence for clinical metrics summaries and drill-down evidence."""

from __future__ import annotations

import logging
import zlib
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Optional

from sqlalchemy import delete, func, insert, not_, or_, select
from sqlalchemy.ext.asyncio import AsyncEngine

from rpm_metrics.models import (
    Base,
    ClinicalMetricsPatientDetail,
    ClinicalMetricsSummary,
    summary_metric_columns,
)
from rpm_metrics.services.metrics.telemetry import SessionFactory

logger = logging.getLogger("rpm_metrics.repository")

DEFAULT_EVIDENCE_BATCH_SIZE = 300

OWNED_TABLES = (
    ClinicalMetricsSummary.__table__,
    ClinicalMetricsPatientDetail.__table__,
)


class ClinicalMetricsRepository:
    """Summary upsert and evidence replacement for one practice database.

    Every call opens its own short-lived session; nothing spans a whole run.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: SessionFactory,
        batch_size: int = DEFAULT_EVIDENCE_BATCH_SIZE,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.engine = engine
        self._session_factory = session_factory
        self.batch_size = batch_size

    async def ensure_schema(self) -> None:
        """Create the summary and evidence tables when they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(
                Base.metadata.create_all,
                tables=list(OWNED_TABLES),
                checkfirst=True,
            )

    @asynccontextmanager
    async def practice_lock(self, practice_id: str) -> AsyncIterator[bool]:
        """Hold a Postgres advisory lock for one practice while recomputing it.

        Yields ``False`` when another process (a scheduler or a ``run-once``)
        already holds the lock. Other dialects have no cross-process lock and
        always yield ``True``.
        """
        if self.engine.dialect.name != "postgresql":
            yield True
            return

        key = zlib.crc32(f"clinical_metrics:{practice_id}".encode())
        async with self.engine.connect() as conn:
            acquired = bool(
                (await conn.execute(select(func.pg_try_advisory_lock(key)))).scalar()
            )
            try:
                yield acquired
            finally:
                if acquired:
                    await conn.execute(select(func.pg_advisory_unlock(key)))

    async def upsert_summary(
        self,
        practice_id: str,
        period: str,
        summary_date: date,
        columns: Mapping[str, Any],
        keep_prefixes: Sequence[str] = (),
    ) -> int:
        """Write one summary row per (practice, period) and return its id.

        The row is looked up by practice and period only; an existing row is
        updated in place, including its ``summary_date``. Metric columns named
        with one of ``keep_prefixes`` keep their stored values on an existing
        row.
        """
        metric_columns = summary_metric_columns()
        unknown = set(columns) - set(metric_columns)
        if unknown:
            raise ValueError(f"Unknown summary columns: {sorted(unknown)}")

        async with self._session_factory() as session:
            result = await session.execute(
                select(ClinicalMetricsSummary)
                .where(
                    ClinicalMetricsSummary.practice_id == practice_id,
                    ClinicalMetricsSummary.enrollment_period == period,
                )
                .order_by(ClinicalMetricsSummary.id)
                .limit(1)
            )
            summary = result.scalar_one_or_none()
            kept = tuple(keep_prefixes)
            if summary is None:
                kept = ()
                summary = ClinicalMetricsSummary(
                    practice_id=practice_id,
                    enrollment_period=period,
                    summary_date=summary_date,
                )
                session.add(summary)

            summary.summary_date = summary_date
            for key in metric_columns:
                if kept and key.startswith(kept):
                    continue
                setattr(summary, key, columns.get(key, 0))
            await session.flush()
            return summary.id

    async def replace_evidence(
        self,
        summary_id: int,
        rows: Sequence[Mapping[str, Any]],
        keep_prefixes: Sequence[str] = (),
    ) -> int:
        """Replace the evidence for a summary and return the number of rows written.

        Rows carry ``patient_sub``, ``metric_name``, ``metric_value_detailed``
        and ``reading_timestamp``. A batch that fails to insert is logged and
        skipped; later batches are still written. Existing rows whose metric name
        starts with one of ``keep_prefixes`` are left in place.
        """
        detail = ClinicalMetricsPatientDetail
        stale = delete(detail).where(detail.clinical_metrics_summary_id == summary_id)
        if keep_prefixes:
            stale = stale.where(
                not_(
                    or_(
                        *(
                            detail.metric_name.startswith(prefix, autoescape=True)
                            for prefix in keep_prefixes
                        )
                    )
                )
            )
        async with self._session_factory() as session:
            await session.execute(stale)

        inserted = 0
        for offset in range(0, len(rows), self.batch_size):
            batch = [
                {**row, "clinical_metrics_summary_id": summary_id}
                for row in rows[offset : offset + self.batch_size]
            ]
            try:
                async with self._session_factory() as session:
                    await session.execute(insert(ClinicalMetricsPatientDetail), batch)
            except Exception:
                logger.exception(
                    "Evidence batch failed summary_id=%s offset=%d size=%d",
                    summary_id,
                    offset,
                    len(batch),
                )
                continue
            inserted += len(batch)
        return inserted

    async def get_summary(
        self,
        practice_id: str,
        period: str,
    ) -> Optional[ClinicalMetricsSummary]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ClinicalMetricsSummary)
                .where(
                    ClinicalMetricsSummary.practice_id == practice_id,
                    ClinicalMetricsSummary.enrollment_period == period,
                )
                .order_by(ClinicalMetricsSummary.id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_evidence(
        self,
        summary_id: int,
        metric_name: Optional[str] = None,
    ) -> list[ClinicalMetricsPatientDetail]:
        query = select(ClinicalMetricsPatientDetail).where(
            ClinicalMetricsPatientDetail.clinical_metrics_summary_id == summary_id
        )
        if metric_name:
            query = query.where(ClinicalMetricsPatientDetail.metric_name == metric_name)
        query = query.order_by(ClinicalMetricsPatientDetail.id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
