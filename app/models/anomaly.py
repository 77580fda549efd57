"""Persisted anomaly findings."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

ANOMALY_SEVERITIES: tuple[str, ...] = ("low", "medium", "high")


class AnomalyLog(Base):
    """Finding raised by a detector.

    ``user_id`` is a plain column so findings outlive deleted users.
    ``resolved_at`` and ``resolved_by`` are set only when ``is_resolved`` is true.
    """

    __tablename__ = "anomaly_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "severity IN (" + ", ".join(f"'{value}'" for value in ANOMALY_SEVERITIES) + ")",
            name="ck_anomaly_logs_severity",
        ),
        Index("ix_anomaly_logs_type", "type"),
        Index("ix_anomaly_logs_severity", "severity"),
        Index("ix_anomaly_logs_user_id", "user_id"),
        Index("ix_anomaly_logs_detected_at", "detected_at"),
        Index("ix_anomaly_logs_is_resolved", "is_resolved"),
    )
