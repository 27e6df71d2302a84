"""Chunked reads from the device telemetry store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rpm_metrics.models import DeviceDataTransmission
from rpm_metrics.services.metrics.parsers import parse_weight
from rpm_metrics.services.metrics.readings import AlertCounts, DeviceReading
from rpm_metrics.services.metrics.thresholds import DeviceType

logger = logging.getLogger("rpm_metrics.telemetry")

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
PracticeSessionFactory = Callable[[str], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_CHUNK_SIZE = 500


def chunked(items: Sequence[str], size: int) -> Iterator[list[str]]:
    for offset in range(0, len(items), size):
        yield list(items[offset : offset + size])


def _to_reading(row: DeviceDataTransmission) -> DeviceReading:
    return DeviceReading(
        id=row.id,
        patient_id=row.patient_sub.strip(),
        device_type=row.device_name,
        raw_value=row.detailed_value,
        timestamp=row.timestamp,
        manual_entry=bool(row.manual_entry),
        entry_type=row.entry_type,
        critical_alert=bool(row.critical_alert),
        out_of_range_alert=bool(row.out_of_range_alert),
        escalation=bool(row.ext_alert),
    )


class TelemetryReader:
    """Cohort- and date-bounded reads, one short-lived session per cohort chunk.

    Large cohorts are split into chunks so a single query never binds more
    than ``chunk_size`` patient ids. Results are concatenated in memory.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self._session_factory = session_factory
        self.chunk_size = chunk_size

    def _chunks(self, cohort: Sequence[str]) -> Iterator[list[str]]:
        patient_ids = [patient_id.strip() for patient_id in cohort if patient_id.strip()]
        return chunked(patient_ids, self.chunk_size)

    async def fetch(
        self,
        cohort: Sequence[str],
        device_type: DeviceType,
        start: datetime,
        end: datetime,
    ) -> list[DeviceReading]:
        """Readings of one device type in ``[start, end]``, newest first per chunk."""
        device_name = DeviceType(device_type).value
        readings: list[DeviceReading] = []
        for chunk in self._chunks(cohort):
            query = (
                select(DeviceDataTransmission)
                .where(
                    func.trim(DeviceDataTransmission.patient_sub).in_(chunk),
                    DeviceDataTransmission.device_name == device_name,
                    DeviceDataTransmission.timestamp >= start,
                    DeviceDataTransmission.timestamp <= end,
                )
                .order_by(DeviceDataTransmission.timestamp.desc())
            )
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = list(result.scalars().all())
            readings.extend(_to_reading(row) for row in rows)
            logger.debug(
                "Fetched %d %s readings for %d patients",
                len(rows),
                device_name.strip(),
                len(chunk),
            )
        return readings

    async def fetch_weight_baselines(self, cohort: Sequence[str]) -> dict[str, float]:
        """Earliest-ever weight per patient, regardless of enrollment period."""
        baselines: dict[str, float] = {}
        table = DeviceDataTransmission
        for chunk in self._chunks(cohort):
            # Ids are compared trimmed so padded variants share one earliest reading.
            trimmed_id = func.trim(table.patient_sub)
            first_reading = (
                select(
                    trimmed_id.label("patient_id"),
                    func.min(table.timestamp).label("first_timestamp"),
                )
                .where(
                    trimmed_id.in_(chunk),
                    table.device_name == DeviceType.WEIGHT.value,
                    table.detailed_value.is_not(None),
                )
                .group_by(trimmed_id)
                .subquery()
            )
            query = (
                select(table.patient_sub, table.detailed_value)
                .join(
                    first_reading,
                    and_(
                        trimmed_id == first_reading.c.patient_id,
                        table.timestamp == first_reading.c.first_timestamp,
                    ),
                )
                .where(
                    table.device_name == DeviceType.WEIGHT.value,
                    table.detailed_value.is_not(None),
                )
                .order_by(table.timestamp, table.id)
            )
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = result.all()

            for patient_sub, detailed_value in rows:
                patient_id = patient_sub.strip()
                if patient_id in baselines:
                    continue
                weight = parse_weight(detailed_value).weight
                if weight is not None and weight > 0:
                    baselines[patient_id] = weight
        return baselines

    def _alert_filters(self, chunk: list[str], start: datetime, end: datetime):
        return (
            func.trim(DeviceDataTransmission.patient_sub).in_(chunk),
            DeviceDataTransmission.timestamp >= start,
            DeviceDataTransmission.timestamp <= end,
        )

    async def count_alerts(
        self,
        cohort: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> AlertCounts:
        """Alert flag counts over every device type, summed across chunks."""
        table = DeviceDataTransmission
        counts = AlertCounts()
        for chunk in self._chunks(cohort):
            query = select(
                func.count(table.id),
                func.sum(case((table.critical_alert.is_(True), 1), else_=0)),
                func.sum(case((table.out_of_range_alert.is_(True), 1), else_=0)),
                func.sum(case((table.ext_alert.is_(True), 1), else_=0)),
            ).where(*self._alert_filters(chunk, start, end))
            async with self._session_factory() as session:
                result = await session.execute(query)
                total, critical, out_of_range, escalations = result.one()
            counts += AlertCounts(
                total_readings=int(total or 0),
                critical=int(critical or 0),
                out_of_range=int(out_of_range or 0),
                escalations=int(escalations or 0),
            )
        return counts

    async def fetch_flagged_readings(
        self,
        cohort: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> list[DeviceReading]:
        """Readings with any alert flag set, for drill-down evidence."""
        table = DeviceDataTransmission
        readings: list[DeviceReading] = []
        for chunk in self._chunks(cohort):
            query = (
                select(table)
                .where(
                    *self._alert_filters(chunk, start, end),
                    or_(
                        table.critical_alert.is_(True),
                        table.out_of_range_alert.is_(True),
                        table.ext_alert.is_(True),
                    ),
                )
                .order_by(table.timestamp.desc())
            )
            async with self._session_factory() as session:
                result = await session.execute(query)
                readings.extend(_to_reading(row) for row in result.scalars().all())
        return readings
