from __future__ import annotations

"""Request-id sequencing so late responses never overwrite newer ones."""

from dataclasses import dataclass
from typing import Any, Callable, TypeVar
import itertools
import logging
import threading
import time

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class InferenceRequest:
    request_id: int
    frame: Any
    issued_at: float


class RequestSequencer:
    """Stamp requests with increasing ids and admit only the freshest responses.

    A response is applied only when its id is greater than the last applied
    id. The comparison, the apply callback and the update of
    ``last_accepted_id`` run under one lock, so two responses completing at
    the same time cannot interleave and leave an older result displayed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._issued = 0
        self._last_accepted_id = 0
        self._applied = 0
        self._stale = 0

    @property
    def last_accepted_id(self) -> int:
        with self._lock:
            return self._last_accepted_id

    def issue(self, frame: Any = None) -> InferenceRequest:
        with self._lock:
            request_id = next(self._ids)
            self._issued += 1
        return InferenceRequest(request_id=request_id, frame=frame, issued_at=self._clock())

    def apply_if_fresh(self, request_id: int, apply: Callable[[], T] | None = None) -> bool:
        """Run ``apply`` and record ``request_id`` if it is the newest response so far.

        Returns False, without calling ``apply``, for a stale response.
        """
        with self._lock:
            if request_id <= self._last_accepted_id:
                self._stale += 1
                last = self._last_accepted_id
                fresh = False
            else:
                if apply is not None:
                    apply()
                self._last_accepted_id = request_id
                self._applied += 1
                fresh = True
        if not fresh:
            log.info("ordering: discarded stale response #%d (last applied #%d)", request_id, last)
        return fresh

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "issued": self._issued,
                "applied": self._applied,
                "stale_discarded": self._stale,
                "last_accepted_id": self._last_accepted_id,
            }


__all__ = ["InferenceRequest", "RequestSequencer"]
