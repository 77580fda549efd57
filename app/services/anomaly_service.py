"""Anomaly log persistence and resolution helpers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AnomalyLog
from app.schemas.anomaly import Finding, FindingDetails, finding_details_adapter

logger = logging.getLogger(__name__)


class AnomalyNotFoundError(Exception):
    """Raised when an anomaly id does not exist."""


class AnomalyAlreadyResolvedError(Exception):
    """Raised when resolving a finding that is already resolved."""


def record_anomaly(db: Session, finding: Finding, *, detected_at: datetime | None = None) -> AnomalyLog:
    """Append a finding as a new unresolved row.

    There is no deduplication: a condition that persists across sweeps is
    recorded once per sweep.
    """
    row = AnomalyLog(
        type=finding.type,
        severity=finding.severity,
        user_id=finding.user_id,
        details=finding.stored_details(),
        detected_at=detected_at or datetime.now(timezone.utc),
        is_resolved=False,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("[ANOMALY] Recorded %s finding id=%s user_id=%s", row.type, row.id, row.user_id)
    return row


def list_anomalies(
    db: Session,
    *,
    resolved: bool | None = None,
    anomaly_type: str | None = None,
    limit: int = 100,
) -> list[AnomalyLog]:
    query = select(AnomalyLog)
    if resolved is not None:
        query = query.where(AnomalyLog.is_resolved.is_(resolved))
    if anomaly_type:
        query = query.where(AnomalyLog.type == anomaly_type)
    return list(db.scalars(query.order_by(AnomalyLog.detected_at.desc(), AnomalyLog.id.desc()).limit(limit)).all())


def resolve_anomaly(
    db: Session,
    anomaly_id: int,
    *,
    resolved_by: int,
    notes: str | None = None,
    now: datetime | None = None,
) -> AnomalyLog:
    """Mark a finding resolved, setting ``resolved_at``/``resolved_by`` together."""
    row = db.get(AnomalyLog, anomaly_id)
    if row is None:
        raise AnomalyNotFoundError(anomaly_id)
    if row.is_resolved:
        raise AnomalyAlreadyResolvedError(anomaly_id)

    row.is_resolved = True
    row.resolved_at = now or datetime.now(timezone.utc)
    row.resolved_by = resolved_by
    if notes is not None:
        row.notes = notes
    db.commit()
    db.refresh(row)
    logger.info("[ANOMALY] Finding id=%s resolved by user_id=%s", row.id, resolved_by)
    return row


def finding_details(row: AnomalyLog) -> FindingDetails:
    """Parse the stored details document back into its typed model."""
    return finding_details_adapter.validate_python({**row.details, "kind": row.type})
