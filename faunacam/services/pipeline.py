from __future__ import annotations

"""Wiring of frame source, preprocessing, model, decoder and stabilizer."""

from dataclasses import dataclass
from typing import Any, Callable, Optional
import logging
import threading
import time

from faunacam.services.camera import Camera, Frame, frame_to_jpeg
from faunacam.services.detectors import (
    Detection,
    DetectionDecoder,
    ModelExecutor,
    TensorPreprocessor,
    create_decoder,
    create_executor,
    load_image,
    load_labels,
)
from faunacam.services.ordering import RequestSequencer
from faunacam.services.remote import RemoteAnalyzer, RemoteResult
from faunacam.services.scheduler import InferenceScheduler
from faunacam.services.stabilizer import ResultStabilizer, StabilizedResult

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureResult:
    jpeg: bytes
    captured_at: float
    result: StabilizedResult | None
    request_id: int | None = None


class DetectionPipeline:
    """Frame -> tensor -> model -> decode -> stabilizer, behind the scheduler.

    With a ``remote`` analyzer the model and decoder are replaced by the
    upload/analyze round trip; the scheduler and stabilizer are shared.
    """

    def __init__(
        self,
        *,
        stabilizer: ResultStabilizer,
        preprocessor: TensorPreprocessor | None = None,
        executor: ModelExecutor | None = None,
        decoder: DetectionDecoder | None = None,
        remote: RemoteAnalyzer | None = None,
        target_fps: float = 1.0,
        decode_error_limit: int = 5,
        jpeg_quality: int = 85,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if remote is None and (preprocessor is None or executor is None or decoder is None):
            raise ValueError("on-device pipeline needs a preprocessor, an executor and a decoder")
        self.stabilizer = stabilizer
        self.preprocessor = preprocessor
        self.executor = executor
        self.decoder = decoder
        self.remote = remote
        self.jpeg_quality = jpeg_quality
        self.scheduler = InferenceScheduler(
            self.process,
            target_fps=target_fps,
            decode_error_limit=decode_error_limit,
            clock=clock,
        )
        self._still_lock = threading.Lock()
        self._still_preprocessor: TensorPreprocessor | None = None

    @property
    def mode(self) -> str:
        return "remote" if self.remote is not None else "on_device"

    def tick(self, frame: Frame | Callable[[], Optional[Frame]]) -> bool:
        return self.scheduler.maybe_run(frame)

    def process(self, frame: Frame) -> Detection | None:
        if self.remote is not None:
            return self.remote.analyze(frame).detection
        detection = self._infer(self.preprocessor, frame.image, frame.channel_order)
        self.stabilizer.accept(detection)
        return detection

    def _infer(self, preprocessor: TensorPreprocessor, image: Any, channel_order: str) -> Detection | None:
        tensor = preprocessor(image, channel_order)
        output = self.executor.run(tensor)
        return self.decoder.decode(output)

    def detect_image(self, data: bytes) -> Detection | None:
        """Run the on-device model on a still image; the displayed result is not touched."""
        if self.executor is None or self.decoder is None:
            raise RuntimeError("still-image detection needs the on-device model")
        image = load_image(data)
        with self._still_lock:
            if self._still_preprocessor is None:
                self._still_preprocessor = TensorPreprocessor(self.decoder.input_size)
            return self._infer(self._still_preprocessor, image, "rgb")

    def capture(self, frame: Frame) -> CaptureResult:
        """Snapshot a frame together with the result displayed at that moment."""
        result = self.stabilizer.current()
        jpeg = frame_to_jpeg(frame, quality=self.jpeg_quality)
        request_id = None
        if self.remote is not None:
            request_id, _ = self.remote.submit(frame, callback=_log_remote_result)
        return CaptureResult(jpeg=jpeg, captured_at=time.time(), result=result, request_id=request_id)

    def status(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mode": self.mode,
            "busy": self.scheduler.busy,
            "interval_s": self.scheduler.interval,
            "scheduler": self.scheduler.stats(),
        }
        if self.remote is not None:
            data["ordering"] = self.remote.sequencer.stats()
        return data

    def close(self) -> None:
        if self.executor is not None:
            self.executor.close()
        if self.remote is not None:
            self.remote.close()


def _log_remote_result(result: RemoteResult) -> None:
    log.info("remote: capture request #%d %s", result.request_id, result.outcome.value)


class DetectionLoop(threading.Thread):
    """Tick the pipeline at the camera cadence until stopped."""

    def __init__(self, pipeline: DetectionPipeline, capture: Callable[[], Optional[Frame]], fps: int = 30) -> None:
        super().__init__(name="detection-loop", daemon=True)
        self._pipeline = pipeline
        self._capture = capture
        self._period = 1.0 / max(1, fps)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        log.info("Detection loop started (%s, %.2f s between inferences)", self._pipeline.mode, self._pipeline.scheduler.interval)
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self._pipeline.tick(self._capture)
            except Exception:
                log.exception("Unexpected error in detection loop tick")
            wait = self._period - (time.monotonic() - started)
            if wait <= 0.0:
                wait = self._period
            self._stop_event.wait(wait)
        log.info("Detection loop stopped")


def build_pipeline(settings) -> DetectionPipeline | None:
    """Create the configured pipeline, or None when detection cannot run."""
    stabilizer = ResultStabilizer(
        display_threshold=settings.display_threshold,
        dwell_seconds=settings.display_dwell_seconds,
    )
    common = dict(
        stabilizer=stabilizer,
        target_fps=settings.detect_target_fps,
        decode_error_limit=settings.detect_decode_error_limit,
        jpeg_quality=settings.camera_jpeg_quality,
    )
    backend = str(settings.detect_backend).strip().lower()
    if backend == "remote":
        if not settings.remote_upload_url or not settings.remote_analyze_url:
            log.warning("detector: detect_backend=remote but REMOTE_UPLOAD_URL/REMOTE_ANALYZE_URL missing")
            return None
        remote = RemoteAnalyzer(
            settings.remote_upload_url,
            settings.remote_analyze_url,
            stabilizer=stabilizer,
            sequencer=RequestSequencer(),
            conf_threshold=settings.detect_conf_threshold,
            timeout=settings.remote_timeout,
            upload_field=settings.remote_upload_field,
            jpeg_quality=settings.camera_jpeg_quality,
            max_workers=settings.remote_max_workers,
            unknown_label=settings.detect_unknown_label,
        )
        return DetectionPipeline(remote=remote, **common)

    executor = create_executor(settings)
    if executor is None:
        return None
    return DetectionPipeline(
        preprocessor=TensorPreprocessor(settings.detect_input_size),
        executor=executor,
        decoder=create_decoder(settings, load_labels(settings.detect_labels)),
        **common,
    )


def build_camera(settings) -> Camera | None:
    try:
        return Camera(
            source=settings.camera_source,
            width=settings.camera_width,
            height=settings.camera_height,
            fps=settings.camera_fps,
            quality=settings.camera_jpeg_quality,
        )
    except RuntimeError as exc:
        log.warning("camera: unavailable: %s", exc)
        return None


__all__ = ["CaptureResult", "DetectionLoop", "DetectionPipeline", "build_camera", "build_pipeline"]
