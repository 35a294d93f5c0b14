from __future__ import annotations

"""Remote analysis: upload a frame, ask the analysis endpoint what it shows.

Each capture is stamped with a request id before any network call. Responses
may come back in any order; only a response newer than the last applied one
reaches the stabilizer.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable
import logging
import re

import requests

from faunacam.services.camera import Frame, frame_to_jpeg
from faunacam.services.detectors.base import BoundingBox, Detection
from faunacam.services.ordering import InferenceRequest, RequestSequencer
from faunacam.services.stabilizer import ResultStabilizer

log = logging.getLogger(__name__)

_PERCENT_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*%\s*$")
_FRACTION_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*$")


class RemoteAnalysisError(Exception):
    """Upload or analysis call failed, timed out or returned an unusable payload."""


class RemoteOutcome(str, Enum):
    APPLIED = "applied"
    STALE = "stale"
    FAILED = "failed"


@dataclass(frozen=True)
class RemoteResult:
    request_id: int
    outcome: RemoteOutcome
    detection: Detection | None = None
    image_url: str | None = None


def parse_percent(score: Any) -> float:
    """Parse the endpoint's ``"NN%"`` score into a confidence in [0, 1].

    A bare number without ``%`` is taken as a fraction when it is at most 1.
    """
    if isinstance(score, (int, float)) and not isinstance(score, bool):
        value = float(score)
        value = value / 100.0 if value > 1.0 else value
    else:
        text = str(score)
        match = _PERCENT_RE.match(text)
        if match:
            value = float(match.group(1)) / 100.0
        else:
            match = _FRACTION_RE.match(text)
            if not match or float(match.group(1)) > 1.0:
                raise ValueError(f"unrecognised score {score!r}")
            value = float(match.group(1))
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"score out of range: {score!r}")
    return value


class RemoteAnalyzer:
    """Upload-then-analyze client feeding the result stabilizer.

    ``analyze`` runs one request synchronously and is what the frame loop
    calls through the scheduler. ``submit`` runs a request on a small worker
    pool; those can overlap with the loop, which is why responses go through
    the sequencer.
    """

    def __init__(
        self,
        upload_url: str,
        analyze_url: str,
        *,
        stabilizer: ResultStabilizer,
        sequencer: RequestSequencer | None = None,
        conf_threshold: float = 0.55,
        timeout: float = 5.0,
        upload_field: str = "file",
        jpeg_quality: int = 85,
        max_workers: int = 2,
        unknown_label: str = "unknown",
        session: requests.Session | None = None,
    ) -> None:
        if not upload_url or not analyze_url:
            raise ValueError("remote analysis needs both an upload URL and an analyze URL")
        self.upload_url = upload_url
        self.analyze_url = analyze_url
        self.stabilizer = stabilizer
        self.sequencer = sequencer or RequestSequencer()
        self.conf_threshold = float(conf_threshold)
        self.timeout = float(timeout)
        self.upload_field = upload_field
        self.jpeg_quality = int(jpeg_quality)
        self.unknown_label = unknown_label
        self._session = session or requests.Session()
        self._pool = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="remote-analyze")

    def upload(self, jpeg: bytes) -> str:
        files = {self.upload_field: ("frame.jpg", jpeg, "image/jpeg")}
        try:
            resp = self._session.post(self.upload_url, files=files, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteAnalysisError(f"upload failed: {exc}") from exc
        return _extract_url(resp)

    def request_analysis(self, image_url: str) -> tuple[str, float]:
        try:
            resp = self._session.post(self.analyze_url, json={"image_url": image_url}, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as exc:
            raise RemoteAnalysisError(f"analysis failed: {exc}") from exc
        except ValueError as exc:
            raise RemoteAnalysisError(f"analysis returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict) or "score" not in payload:
            raise RemoteAnalysisError(f"analysis payload missing score: {payload!r}")
        label = str(payload.get("label") or "").strip() or self.unknown_label
        try:
            confidence = parse_percent(payload["score"])
        except ValueError as exc:
            raise RemoteAnalysisError(str(exc)) from exc
        return label, confidence

    def analyze(self, frame: Frame) -> RemoteResult:
        """Issue, upload, analyze and apply one request. Never raises for per-request failures."""
        return self._run(self.sequencer.issue(frame))

    def _run(self, request: InferenceRequest) -> RemoteResult:
        frame = request.frame
        image_url = None
        try:
            jpeg = frame_to_jpeg(frame, quality=self.jpeg_quality)
            image_url = self.upload(jpeg)
            label, confidence = self.request_analysis(image_url)
        except (RemoteAnalysisError, RuntimeError) as exc:
            log.warning("remote: request #%d dropped: %s", request.request_id, exc)
            return RemoteResult(request.request_id, RemoteOutcome.FAILED, image_url=image_url)

        detection = None
        if confidence > self.conf_threshold:
            detection = Detection(
                class_index=-1,
                label=label,
                confidence=confidence,
                box=BoundingBox(0.0, 0.0, float(frame.width), float(frame.height)),
                anchor_index=-1,
            )
        return self.apply_response(request.request_id, detection, image_url=image_url)

    def apply_response(self, request_id: int, detection: Detection | None, image_url: str | None = None) -> RemoteResult:
        applied = self.sequencer.apply_if_fresh(request_id, lambda: self.stabilizer.accept(detection))
        outcome = RemoteOutcome.APPLIED if applied else RemoteOutcome.STALE
        return RemoteResult(request_id, outcome, detection=detection, image_url=image_url)

    def submit(
        self, frame: Frame, callback: Callable[[RemoteResult], None] | None = None
    ) -> tuple[int, "Future[RemoteResult]"]:
        """Issue a request now and run it on the worker pool. Returns ``(request_id, future)``."""
        request = self.sequencer.issue(frame)
        future = self._pool.submit(self._run, request)
        if callback is not None:
            future.add_done_callback(lambda f: callback(f.result()))
        return request.request_id, future

    def close(self) -> None:
        self._pool.shutdown(wait=False)
        self._session.close()


def _extract_url(resp: requests.Response) -> str:
    url = None
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        url = payload.get("secure_url") or payload.get("url") or payload.get("image_url")
    elif isinstance(payload, str):
        url = payload
    if url is None:
        text = resp.text.strip()
        if text.startswith(("http://", "https://")):
            url = text
    if not url:
        raise RemoteAnalysisError("upload response did not contain an image URL")
    return str(url)


__all__ = ["RemoteAnalysisError", "RemoteAnalyzer", "RemoteOutcome", "RemoteResult", "parse_percent"]
