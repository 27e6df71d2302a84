"""Device types, enrollment-period windows and clinical threshold constants."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum


class DeviceType(str, Enum):
    """Stored ``device_name`` values; the devices gateway keeps the leading space."""

    BLOOD_PRESSURE = " BPM"
    OXIMETER = " Oxymeter"
    WEIGHT = " Weight"
    GLUCOSE = " Blood Glucose"


class EnrollmentPeriod(str, Enum):
    FIRST_MONTH = "first_month"
    ONE_TO_THREE_MONTHS = "1_3_months"
    FOUR_TO_SIX_MONTHS = "4_6_months"
    SIX_TO_TWELVE_MONTHS = "6_12_months"
    OVERALL = "overall"


# (days back to window start, days back to window end)
PERIOD_LOOKBACK_DAYS: dict[EnrollmentPeriod, tuple[int, int]] = {
    EnrollmentPeriod.FIRST_MONTH: (30, 0),
    EnrollmentPeriod.ONE_TO_THREE_MONTHS: (90, 30),
    EnrollmentPeriod.FOUR_TO_SIX_MONTHS: (180, 90),
    EnrollmentPeriod.SIX_TO_TWELVE_MONTHS: (365, 180),
    EnrollmentPeriod.OVERALL: (3650, 0),
}


def date_window(
    period: EnrollmentPeriod | str,
    now: datetime,
    overall_lookback_days: int | None = None,
) -> tuple[datetime, datetime]:
    """Return the inclusive (start, end) reading window for a period."""
    period = EnrollmentPeriod(period)
    start_days, end_days = PERIOD_LOOKBACK_DAYS[period]
    if period is EnrollmentPeriod.OVERALL and overall_lookback_days is not None:
        start_days = overall_lookback_days
    return now - timedelta(days=start_days), now - timedelta(days=end_days)


# Blood pressure normal ranges (inclusive)
BP_SYS_NORMAL = (90.0, 130.0)
BP_DIA_NORMAL = (60.0, 80.0)
BP_HR_NORMAL = (60.0, 100.0)

BP_HIGH_SYS_CUTOFFS = (130.0, 140.0, 150.0, 160.0)
BP_HIGH_DIA = 80.0
BP_LOW_SYS = 90.0
BP_LOW_DIA = 60.0
BP_HR_LOW = 50.0
BP_HR_HIGH = 120.0

# SpO2 exclusive bands (inclusive bounds), evaluated in this order. Oximeters
# report whole percentages; a fractional value between bands (89.5, 92.5) falls
# into no band and is treated as healthy.
SPO2_BANDS: tuple[tuple[str, float, float], ...] = (
    ("spo2_90_92", 90.0, 92.0),
    ("spo2_88_89", 88.0, 89.0),
)
SPO2_SEVERE_BUCKET = "spo2_below_88"
SPO2_SEVERE_BELOW = 88.0

WEIGHT_GAIN_PERCENT = 4.0

GLUCOSE_FASTING_HIGH = (130.0, 160.0, 180.0)
GLUCOSE_FASTING_LOW = (70.0, 54.0)
GLUCOSE_POSTMEAL_HIGH = (180.0, 200.0)
GLUCOSE_RANDOM_HIGH = (200.0,)
GLUCOSE_RANDOM_LOW = (70.0,)

INT64_MAX = 2**63 - 1


def percentage(count: int, total: int) -> float:
    """Share of ``count`` in ``total`` as a percentage with two decimals."""
    if not total:
        return 0.0
    return round(count / total * 100, 2)
