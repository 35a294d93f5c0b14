from __future__ import annotations

"""Display hysteresis for the noisy per-frame detection signal."""

from dataclasses import dataclass
from typing import Callable, Optional
import logging
import threading
import time

from faunacam.services.detectors.base import Detection, format_percent

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StabilizedResult:
    label: str
    confidence: float
    display_until: float
    class_index: int | None = None

    @property
    def percent(self) -> str:
        return format_percent(self.confidence)


class ResultStabilizer:
    """Hold the last confident detection on screen for a dwell time.

    States are Empty and Showing. A detection whose confidence is strictly
    above ``display_threshold`` replaces the shown result and restarts the
    dwell timer. Null or weaker detections leave an unexpired result
    untouched; the result only reverts to Empty once ``now > display_until``.
    Expiry is evaluated on read, so it happens whether or not new detections
    keep arriving.
    """

    def __init__(
        self,
        display_threshold: float = 0.70,
        dwell_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if dwell_seconds < 0:
            raise ValueError("dwell_seconds must not be negative")
        self.display_threshold = float(display_threshold)
        self.dwell_seconds = float(dwell_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._current: StabilizedResult | None = None
        self._version = 0

    def accept(self, detection: Optional[Detection], now: float | None = None) -> bool:
        """Offer a detection. Returns True when it replaced the shown result."""
        if detection is None or not detection.confidence > self.display_threshold:
            return False
        now = self._clock() if now is None else now
        result = StabilizedResult(
            label=detection.label,
            confidence=float(detection.confidence),
            display_until=now + self.dwell_seconds,
            class_index=detection.class_index,
        )
        with self._lock:
            self._current = result
            self._version += 1
        log.debug("stabilizer: showing %s %s until %.2f", result.label, result.percent, result.display_until)
        return True

    def current(self, now: float | None = None) -> StabilizedResult | None:
        return self.snapshot(now)[1]

    def snapshot(self, now: float | None = None) -> tuple[int, StabilizedResult | None]:
        """Return ``(version, result)``; the version changes on every state transition."""
        now = self._clock() if now is None else now
        with self._lock:
            if self._current is not None and now > self._current.display_until:
                self._current = None
                self._version += 1
            return self._version, self._current

    def clear(self) -> None:
        with self._lock:
            if self._current is not None:
                self._current = None
                self._version += 1


__all__ = ["ResultStabilizer", "StabilizedResult"]
