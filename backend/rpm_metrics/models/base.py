from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ETL tables."""


class TimestampMixin:
    """Adds created_at/updated_at bookkeeping columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def model_to_dict(instance: Base, exclude: set[str] | None = None) -> dict[str, Any]:
    """Return column values of a mapped instance keyed by column name."""
    exclude = exclude or set()
    return {
        column.key: getattr(instance, column.key)
        for column in instance.__table__.columns
        if column.key not in exclude
    }
