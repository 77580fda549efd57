"""Sweep orchestration: run every detector concurrently, contain failures."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime

from app.services.detectors import Detector, default_detectors
from app.services.notification_service import NotificationDispatcher, SessionFactory
from app.utils.time import utc_now

logger = logging.getLogger(__name__)

DETECTOR_OK = "ok"
DETECTOR_FAILED = "failed"
DETECTOR_TIMEOUT = "timeout"


@dataclass
class DetectorOutcome:
    status: str
    findings: int = 0
    error: str | None = None


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    outcomes: dict[str, DetectorOutcome] = field(default_factory=dict)


class AnomalySweep:
    """One full pass of all detectors.

    No lock is held across sweeps unless ``skip_if_running`` is set, so an
    overrunning sweep can overlap the next one and both may flag the same
    condition.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        dispatcher: NotificationDispatcher | None = None,
        *,
        detectors: Sequence[Detector] | None = None,
        detector_timeout: float | None = None,
        skip_if_running: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if detectors is None:
            if dispatcher is None:
                raise ValueError("dispatcher is required when detectors are not given")
            detectors = default_detectors(dispatcher)
        self.session_factory = session_factory
        self.detectors = list(detectors)
        self.detector_timeout = detector_timeout
        self.skip_if_running = skip_if_running
        self.clock = clock
        self._running = threading.Lock()

    def run_sweep(self) -> SweepReport:
        if not self.skip_if_running:
            return self._sweep()

        if not self._running.acquire(blocking=False):
            now = self.clock()
            logger.warning("[SWEEP] Previous sweep still running; skipping this one.")
            return SweepReport(started_at=now, finished_at=now, skipped=True)
        try:
            return self._sweep()
        finally:
            self._running.release()

    def _run_detector(self, detector: Detector, now: datetime) -> int:
        with self.session_factory() as db:
            return detector.run(db, now)

    def _sweep(self) -> SweepReport:
        now = self.clock()
        report = SweepReport(started_at=now)
        logger.info("[SWEEP] Anomaly sweep started (%d detectors)", len(self.detectors))

        executor = ThreadPoolExecutor(max_workers=max(len(self.detectors), 1), thread_name_prefix="anomaly-detector")
        try:
            futures: dict[str, Future[int]] = {
                detector.name: executor.submit(self._run_detector, detector, now) for detector in self.detectors
            }
            deadline = time.monotonic() + self.detector_timeout if self.detector_timeout is not None else None
            for name, future in futures.items():
                remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
                report.outcomes[name] = self._collect(name, future, remaining)
        finally:
            # Timed-out detectors are left to finish on their own thread.
            executor.shutdown(wait=False)

        report.finished_at = self.clock()
        logger.info(
            "[SWEEP] Anomaly sweep finished: %s",
            ", ".join(f"{name}={outcome.status}/{outcome.findings}" for name, outcome in report.outcomes.items()),
        )
        return report

    @staticmethod
    def _collect(name: str, future: Future[int], timeout: float | None) -> DetectorOutcome:
        try:
            findings = future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.error("[SWEEP] Detector %s timed out after %.1fs", name, timeout or 0.0)
            return DetectorOutcome(status=DETECTOR_TIMEOUT, error="timed out")
        except Exception as exc:
            logger.exception("[SWEEP] Detector %s failed", name)
            return DetectorOutcome(status=DETECTOR_FAILED, error=str(exc) or exc.__class__.__name__)
        return DetectorOutcome(status=DETECTOR_OK, findings=findings)
