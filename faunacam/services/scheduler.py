from __future__ import annotations

"""Throttled, single-flight gate in front of the inference pipeline.

Frames arrive far faster than the model can run. Every frame tick calls
``maybe_run``; the pipeline only runs when the target interval has elapsed
and no other run is in progress. Everything else is dropped, never queued,
so the displayed result is always based on a recent frame.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
import logging
import threading
import time

from faunacam.services.detectors.base import DecodeError, Detection, ExecutorError, PreprocessError

log = logging.getLogger(__name__)


@dataclass
class SchedulerStats:
    ticks: int = 0
    runs: int = 0
    dropped_busy: int = 0
    dropped_interval: int = 0
    detections: int = 0
    failures: Counter = field(default_factory=Counter)
    consecutive_decode_errors: int = 0
    persistent_decode_error: bool = False
    last_run_ms: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "ticks": self.ticks,
            "runs": self.runs,
            "dropped_busy": self.dropped_busy,
            "dropped_interval": self.dropped_interval,
            "detections": self.detections,
            "failures": dict(self.failures),
            "consecutive_decode_errors": self.consecutive_decode_errors,
            "persistent_decode_error": self.persistent_decode_error,
            "last_run_ms": self.last_run_ms,
        }


class InferenceScheduler:
    """Run ``pipeline(frame)`` at most ``target_fps`` times per second, one at a time.

    ``maybe_run`` accepts either a frame or a zero-argument capture callable.
    A callable is only invoked once the gate has been passed, so frames that
    would be dropped are never read from the source.

    The busy flag and the last start time are only touched under ``_lock``,
    and the check and the set happen in one critical section. Any exception
    raised by the pipeline is logged and counted; it never reaches the
    frame-delivery loop.
    """

    def __init__(
        self,
        pipeline: Callable[[Any], Optional[Detection]],
        *,
        target_fps: float = 1.0,
        decode_error_limit: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if target_fps <= 0:
            raise ValueError("target_fps must be positive")
        self._pipeline = pipeline
        self.interval = 1.0 / float(target_fps)
        self._decode_error_limit = max(1, int(decode_error_limit))
        self._clock = clock
        self._lock = threading.Lock()
        self._busy = False
        self._last_started: float | None = None
        self._stats = SchedulerStats()
        self.last_detection: Detection | None = None

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return self._stats.as_dict()

    def maybe_run(self, frame: Any) -> bool:
        """Run the pipeline for this tick if the gate allows it.

        Returns True when the pipeline was invoked (whatever its outcome),
        False when the tick was dropped.
        """
        now = self._clock()
        with self._lock:
            self._stats.ticks += 1
            if self._busy:
                self._stats.dropped_busy += 1
                return False
            if self._last_started is not None and now - self._last_started < self.interval:
                self._stats.dropped_interval += 1
                return False
            self._busy = True
            self._last_started = now

        started = time.perf_counter()
        try:
            self._run_once(frame)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            with self._lock:
                self._busy = False
                self._stats.runs += 1
                self._stats.last_run_ms = elapsed_ms
        return True

    def _run_once(self, frame: Any) -> None:
        try:
            if callable(frame):
                frame = frame()
                if frame is None:
                    raise PreprocessError("frame source returned no frame")
            detection = self._pipeline(frame)
        except PreprocessError as exc:
            log.debug("scheduler: skipping frame: %s", exc)
            self._record_failure("preprocess")
        except DecodeError as exc:
            self._record_decode_error(exc)
        except ExecutorError as exc:
            log.warning("scheduler: model execution failed: %s", exc)
            self._record_failure("executor")
        except Exception:
            log.exception("scheduler: unexpected pipeline error")
            self._record_failure("unexpected")
        else:
            with self._lock:
                self._stats.consecutive_decode_errors = 0
                self._stats.persistent_decode_error = False
                if detection is not None:
                    self._stats.detections += 1
                self.last_detection = detection

    def _record_failure(self, kind: str) -> None:
        with self._lock:
            self._stats.failures[kind] += 1

    def _record_decode_error(self, exc: DecodeError) -> None:
        with self._lock:
            self._stats.failures["decode"] += 1
            self._stats.consecutive_decode_errors += 1
            count = self._stats.consecutive_decode_errors
            escalate = count == self._decode_error_limit
            if count >= self._decode_error_limit:
                self._stats.persistent_decode_error = True
        if escalate:
            log.error(
                "scheduler: %d consecutive decode errors; model and label table likely mismatch: %s",
                count,
                exc,
            )
        else:
            log.warning("scheduler: decode failed: %s", exc)


__all__ = ["InferenceScheduler", "SchedulerStats"]
