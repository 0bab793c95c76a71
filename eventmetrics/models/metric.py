from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from eventmetrics.models.base import Base, TimestampMixin, UUIDMixin


class MetricRecord(UUIDMixin, TimestampMixin, Base):
    """A persisted metric row, raw or aggregate.

    Aggregates carry ``aggregate_key`` (the fingerprint of name + dimensions).
    The unique constraint on that column is what makes concurrent aggregate
    upserts collide instead of duplicating; raw metrics leave it ``NULL``.
    """

    __tablename__ = "metrics"
    __table_args__ = (Index("ix_metrics_name_recorded_at", "name", "recorded_at"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    dimensions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    aggregate_key: Mapped[str | None] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<MetricRecord {self.name}={self.value} @ {self.recorded_at}>"
