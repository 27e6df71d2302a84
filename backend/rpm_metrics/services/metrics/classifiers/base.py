"""Shared result types for the device classifiers."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from rpm_metrics.services.metrics.readings import DeviceReading
from rpm_metrics.services.metrics.thresholds import percentage

logger = logging.getLogger("rpm_metrics.classifiers")


@dataclass(frozen=True)
class EvidenceItem:
    """A reading that contributed to a bucket."""

    patient_id: str
    value: dict[str, Any]
    timestamp: Optional[datetime]


@dataclass(frozen=True)
class BucketStat:
    count: int = 0
    percent: float = 0.0
    patients: int = 0


@dataclass
class ClassificationResult:
    """Summary columns plus per-bucket drill-down evidence for one device."""

    columns: dict[str, Any] = field(default_factory=dict)
    evidence: dict[str, list[EvidenceItem]] = field(default_factory=dict)

    @property
    def evidence_rows(self) -> int:
        return sum(len(items) for items in self.evidence.values())


class BucketCollector:
    """Collects evidence per bucket name in a fixed bucket order."""

    def __init__(self, names: Iterable[str]) -> None:
        self.evidence: dict[str, list[EvidenceItem]] = {name: [] for name in names}

    def add(self, name: str, reading: DeviceReading, value: dict[str, Any]) -> None:
        self.evidence[name].append(
            EvidenceItem(
                patient_id=reading.patient_id,
                value=value,
                timestamp=reading.timestamp,
            )
        )

    def stat(self, name: str, total: int) -> BucketStat:
        items = self.evidence[name]
        return BucketStat(
            count=len(items),
            percent=percentage(len(items), total),
            patients=len({item.patient_id for item in items}),
        )

    def columns(self, totals: dict[str, int] | int) -> dict[str, Any]:
        """Flatten every bucket into ``_count``/``_percent``/``_patients`` columns."""
        columns: dict[str, Any] = {}
        for name in self.evidence:
            total = totals if isinstance(totals, int) else totals[name]
            columns.update(bucket_columns(name, self.stat(name, total)))
        return columns


def bucket_columns(name: str, stat: BucketStat) -> dict[str, Any]:
    return {
        f"{name}_count": stat.count,
        f"{name}_percent": stat.percent,
        f"{name}_patients": stat.patients,
    }


def average(values: list[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def cohort_readings(
    readings: Iterable[DeviceReading],
    cohort: Iterable[str],
) -> Iterator[DeviceReading]:
    """Yield only readings whose trimmed patient id belongs to the cohort."""
    members = {patient_id.strip() for patient_id in cohort}
    for reading in readings:
        if reading.patient_id.strip() in members:
            yield reading


def log_skipped(device: str, reading: DeviceReading) -> None:
    logger.warning(
        "Skipping unreadable %s reading id=%s patient=%s",
        device,
        reading.id,
        reading.patient_id,
        exc_info=True,
    )
