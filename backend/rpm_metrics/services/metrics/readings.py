"""Immutable records read from the telemetry store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class DeviceReading:
    """One row of ``device_data_transmission``."""

    id: int
    patient_id: str
    device_type: str
    raw_value: Optional[str]
    timestamp: Optional[datetime]
    manual_entry: bool = False
    entry_type: Optional[str] = None
    critical_alert: bool = False
    out_of_range_alert: bool = False
    escalation: bool = False

    @property
    def has_alert(self) -> bool:
        return self.critical_alert or self.out_of_range_alert or self.escalation


@dataclass
class AlertCounts:
    """Alert flag counts accumulated across cohort chunks.

    Python integers never overflow; narrowing to the 64-bit storage range happens
    when the counts are turned into summary columns.
    """

    total_readings: int = 0
    critical: int = 0
    out_of_range: int = 0
    escalations: int = 0

    def __add__(self, other: "AlertCounts") -> "AlertCounts":
        return AlertCounts(
            total_readings=self.total_readings + other.total_readings,
            critical=self.critical + other.critical,
            out_of_range=self.out_of_range + other.out_of_range,
            escalations=self.escalations + other.escalations,
        )
