"""Anomaly findings endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models import AnomalyLog
from app.schemas.anomaly import AnomalyRead, AnomalyResolve, SweepReportRead
from app.services.anomaly_service import (
    AnomalyAlreadyResolvedError,
    AnomalyNotFoundError,
    list_anomalies,
    resolve_anomaly,
)
from app.services.sweep_service import AnomalySweep

router: APIRouter = APIRouter()


def get_sweep(request: Request) -> AnomalySweep:
    sweep: AnomalySweep | None = getattr(request.app.state, "sweep", None)
    if sweep is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Anomaly engine not started")
    return sweep


@router.get("", response_model=list[AnomalyRead])
def read_anomalies(
    resolved: bool | None = None,
    anomaly_type: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AnomalyLog]:
    return list_anomalies(db, resolved=resolved, anomaly_type=anomaly_type, limit=limit)


@router.post("/{anomaly_id}/resolve", response_model=AnomalyRead)
def resolve(anomaly_id: int, payload: AnomalyResolve, db: Session = Depends(get_db)) -> AnomalyLog:
    try:
        return resolve_anomaly(db, anomaly_id, resolved_by=payload.resolved_by, notes=payload.notes)
    except AnomalyNotFoundError:
        raise HTTPException(status_code=404, detail="Anomaly not found")
    except AnomalyAlreadyResolvedError:
        raise HTTPException(status_code=409, detail="Anomaly already resolved")


@router.post("/sweep", response_model=SweepReportRead)
def run_sweep_now(sweep: AnomalySweep = Depends(get_sweep)) -> SweepReportRead:
    """Run one sweep synchronously and return its report."""
    report = sweep.run_sweep()
    return SweepReportRead.model_validate(asdict(report))
