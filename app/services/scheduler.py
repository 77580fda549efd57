"""Fixed-interval trigger for background sweeps."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class IntervalTrigger:
    """Fire ``callback`` every ``interval_seconds`` on a fresh worker thread.

    Ticks are not corrected for drift and do not wait for the previous
    callback, so a callback that overruns the interval overlaps the next one.
    """

    def __init__(self, interval_seconds: float, callback: Callable[[], object], *, name: str = "interval-trigger") -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_tick: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("[SCHEDULER] %s started (every %.0fs)", self.name, self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop ticking, then wait up to ``timeout`` for the latest callback."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        last_tick, self._last_tick = self._last_tick, None
        if last_tick is not None:
            last_tick.join(timeout)
            if last_tick.is_alive():
                logger.warning("[SCHEDULER] %s callback still running after stop", self.name)
        logger.info("[SCHEDULER] %s stopped", self.name)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            tick = threading.Thread(target=self._fire, name=f"{self.name}-tick", daemon=True)
            self._last_tick = tick
            tick.start()

    def _fire(self) -> None:
        try:
            self.callback()
        except Exception:
            logger.exception("[SCHEDULER] %s callback failed", self.name)
