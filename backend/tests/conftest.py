import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from rpm_metrics.config import PracticeConfig, Settings  # noqa: E402
from rpm_metrics.database import PracticeEngineRegistry, build_sessionmaker  # noqa: E402
from rpm_metrics.models import (  # noqa: E402
    Base,
    DeviceDataTransmission,
    PatientEnrollmentPeriod,
)
from rpm_metrics.services.metrics.readings import DeviceReading  # noqa: E402

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
PRACTICE_A = "practice-a"
PRACTICE_B = "practice-b"


def make_reading(
    patient_id: str,
    payload: dict | str | None,
    *,
    device_type: str = " BPM",
    reading_id: int = 1,
    timestamp: datetime | None = None,
    entry_type: str | None = None,
    **flags,
) -> DeviceReading:
    raw = json.dumps(payload) if isinstance(payload, dict) else payload
    return DeviceReading(
        id=reading_id,
        patient_id=patient_id,
        device_type=device_type,
        raw_value=raw,
        timestamp=timestamp or NOW - timedelta(days=1),
        entry_type=entry_type,
        **flags,
    )


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite://",
        "practices": [
            PracticeConfig(practice_id=PRACTICE_A, practice_name="Alpha"),
            PracticeConfig(practice_id=PRACTICE_B, practice_name="Beta"),
        ],
        "metrics_scheduler_enabled": True,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings_factory():
    return make_settings


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(
            Base.metadata.create_all,
            tables=[DeviceDataTransmission.__table__, PatientEnrollmentPeriod.__table__],
        )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def registry(engine):
    registry = PracticeEngineRegistry(make_settings())
    registry.register_engine(PRACTICE_A, engine)
    registry.register_engine(PRACTICE_B, engine)
    yield registry
    await registry.dispose_all()


class TelemetrySeeder:
    """Inserts telemetry and enrollment rows into the test database."""

    def __init__(self, engine):
        self._sessionmaker = build_sessionmaker(engine)

    async def readings(self, *rows: dict) -> None:
        async with self._sessionmaker() as session:
            for row in rows:
                payload = row.get("detailed_value")
                session.add(
                    DeviceDataTransmission(
                        patient_sub=row["patient_sub"],
                        device_name=row.get("device_name", " BPM"),
                        detailed_value=(
                            json.dumps(payload) if isinstance(payload, dict) else payload
                        ),
                        timestamp=row.get("timestamp", NOW - timedelta(days=1)),
                        manual_entry=row.get("manual_entry", False),
                        entry_type=row.get("entry_type"),
                        critical_alert=row.get("critical_alert", False),
                        out_of_range_alert=row.get("out_of_range_alert", False),
                        ext_alert=row.get("ext_alert", False),
                    )
                )
            await session.commit()

    async def enroll(self, practice_id: str, period: str, *patient_subs: str) -> None:
        async with self._sessionmaker() as session:
            for patient_sub in patient_subs:
                session.add(
                    PatientEnrollmentPeriod(
                        patient_sub=patient_sub,
                        practice_id=practice_id,
                        enrollment_period=period,
                    )
                )
            await session.commit()


@pytest.fixture()
def seed(engine):
    return TelemetrySeeder(engine)
