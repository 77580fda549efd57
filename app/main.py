"""FastAPI entrypoint hosting the anomaly detection engine."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from sqlalchemy.orm import Session

from app.api.v1.api import api_router
from app.core.config import settings
from app.db import session as db_session
from app.db.base import Base
from app.services.notification_service import build_dispatcher
from app.services.scheduler import IntervalTrigger
from app.services.sweep_service import AnomalySweep

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Anomaly Sentinel")
app.include_router(api_router, prefix="/api/v1")


def _session_factory() -> Session:
    return db_session.SessionLocal()


@app.on_event("startup")
def startup() -> None:
    Base.metadata.create_all(bind=db_session.engine)
    dispatcher = build_dispatcher(_session_factory)
    app.state.sweep = AnomalySweep(
        _session_factory,
        dispatcher,
        detector_timeout=settings.anomaly_detector_timeout_seconds,
        skip_if_running=settings.anomaly_skip_overlapping_sweeps,
    )
    app.state.trigger = None
    if settings.anomaly_sweep_enabled:
        trigger = IntervalTrigger(settings.anomaly_sweep_interval_seconds, app.state.sweep.run_sweep, name="anomaly-sweep")
        trigger.start()
        app.state.trigger = trigger
    else:
        logger.info("[BOOTSTRAP] Scheduled anomaly sweeps disabled (ANOMALY_SWEEP_ENABLED=0).")
    logger.info("[BOOTSTRAP] Notification channels: %s", ", ".join(dispatcher.channel_names))


@app.on_event("shutdown")
def shutdown() -> None:
    trigger = getattr(app.state, "trigger", None)
    if trigger is not None:
        trigger.stop()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
