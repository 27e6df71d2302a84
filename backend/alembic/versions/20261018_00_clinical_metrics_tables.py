"""Create clinical metrics summary and patient detail tables.

Revision ID: 20261018_00
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "20261018_00"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_INTEGER_TOTALS = (
    "total_patients",
    "bp_total_readings",
    "bp_patients_count",
    "spo2_total_readings",
    "spo2_patients_count",
    "weight_total_readings",
    "weight_patients_count",
    "glucose_fasting_total",
    "glucose_fasting_patients_count",
    "glucose_postmeal_total",
    "glucose_postmeal_patients_count",
    "glucose_random_total",
    "glucose_random_patients_count",
)

_BP_AVERAGES = (
    "bp_avg_sys",
    "bp_avg_dia",
    "bp_avg_hr",
    "bp_normal_avg_sys",
    "bp_normal_avg_dia",
    "bp_normal_avg_hr",
)

_BUCKETS = (
    "bp_normal",
    "bp_abnormal",
    "bp_arrhythmia",
    "bp_sys_gt_130_dia_gt_80",
    "bp_sys_gt_140_dia_gt_80",
    "bp_sys_gt_150_dia_gt_80",
    "bp_sys_gt_160_dia_gt_80",
    "bp_sys_lt_90_dia_lt_60",
    "bp_hr_abnormal",
    "spo2_90_92",
    "spo2_88_89",
    "spo2_below_88",
    "weight_gain_4pct",
    "glucose_fasting_above_130",
    "glucose_fasting_above_160",
    "glucose_fasting_above_180",
    "glucose_fasting_below_70",
    "glucose_fasting_below_54",
    "glucose_postmeal_above_180",
    "glucose_postmeal_above_200",
    "glucose_random_above_200",
    "glucose_random_below_70",
)

_ALERT_BUCKETS = ("critical_alerts", "out_of_range_alerts", "escalations", "total_alerts")


def _count(name: str, type_=sa.Integer) -> sa.Column:
    return sa.Column(name, type_(), nullable=False, server_default="0")


def _decimal(name: str) -> sa.Column:
    return sa.Column(name, sa.Float(), nullable=False, server_default="0")


def _metric_columns() -> list[sa.Column]:
    columns = [_count(name) for name in _INTEGER_TOTALS]
    columns.extend(_decimal(name) for name in _BP_AVERAGES)
    for bucket in _BUCKETS:
        columns.extend(
            [
                _count(f"{bucket}_count"),
                _decimal(f"{bucket}_percent"),
                _count(f"{bucket}_patients"),
            ]
        )
    columns.append(_count("alert_total_readings", sa.BigInteger))
    for bucket in _ALERT_BUCKETS:
        columns.extend(
            [
                _count(f"{bucket}_count", sa.BigInteger),
                _decimal(f"{bucket}_percent"),
                _count(f"{bucket}_patients"),
            ]
        )
    return columns


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "clinical_metrics_summary",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("summary_date", sa.Date(), nullable=False),
        sa.Column("practice_id", sa.String(length=200), nullable=False),
        sa.Column("enrollment_period", sa.String(length=50), nullable=False),
        *_metric_columns(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "practice_id",
            "enrollment_period",
            "summary_date",
            name="uq_clinical_metrics_practice_period_date",
        ),
    )
    op.create_index(
        "ix_clinical_metrics_summary_summary_date",
        "clinical_metrics_summary",
        ["summary_date"],
        unique=False,
    )
    op.create_index(
        "ix_clinical_metrics_summary_practice_id",
        "clinical_metrics_summary",
        ["practice_id"],
        unique=False,
    )
    op.create_index(
        "ix_clinical_metrics_summary_enrollment_period",
        "clinical_metrics_summary",
        ["enrollment_period"],
        unique=False,
    )
    op.create_index(
        "ix_clinical_metrics_practice_period",
        "clinical_metrics_summary",
        ["practice_id", "enrollment_period"],
        unique=False,
    )

    op.create_table(
        "clinical_metrics_patient_details",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("clinical_metrics_summary_id", sa.Integer(), nullable=False),
        sa.Column("patient_sub", sa.String(length=200), nullable=False),
        sa.Column("metric_name", sa.String(length=100), nullable=False),
        sa.Column("metric_value_detailed", sa.JSON(), nullable=True),
        sa.Column("reading_timestamp", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["clinical_metrics_summary_id"],
            ["clinical_metrics_summary.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_clinical_metrics_patient_details_clinical_metrics_summary_id",
        "clinical_metrics_patient_details",
        ["clinical_metrics_summary_id"],
        unique=False,
    )
    op.create_index(
        "ix_clinical_metrics_patient_details_patient_sub",
        "clinical_metrics_patient_details",
        ["patient_sub"],
        unique=False,
    )
    op.create_index(
        "ix_clinical_metrics_details_summary_metric",
        "clinical_metrics_patient_details",
        ["clinical_metrics_summary_id", "metric_name"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(
        "ix_clinical_metrics_details_summary_metric",
        table_name="clinical_metrics_patient_details",
    )
    op.drop_index(
        "ix_clinical_metrics_patient_details_patient_sub",
        table_name="clinical_metrics_patient_details",
    )
    op.drop_index(
        "ix_clinical_metrics_patient_details_clinical_metrics_summary_id",
        table_name="clinical_metrics_patient_details",
    )
    op.drop_table("clinical_metrics_patient_details")
    op.drop_index("ix_clinical_metrics_practice_period", table_name="clinical_metrics_summary")
    op.drop_index(
        "ix_clinical_metrics_summary_enrollment_period",
        table_name="clinical_metrics_summary",
    )
    op.drop_index("ix_clinical_metrics_summary_practice_id", table_name="clinical_metrics_summary")
    op.drop_index("ix_clinical_metrics_summary_summary_date", table_name="clinical_metrics_summary")
    op.drop_table("clinical_metrics_summary")
