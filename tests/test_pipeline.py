"""Tests for the frame -> model -> decode -> display pipeline wiring."""

from __future__ import annotations

import io
import threading
from types import SimpleNamespace
from unittest.mock import Mock

import numpy as np
import pytest
from PIL import Image

from faunacam.services.camera import Frame
from faunacam.services.detectors import (
    CallableExecutor,
    DetectionDecoder,
    TensorPreprocessor,
)
from faunacam.services.pipeline import DetectionLoop, DetectionPipeline, build_pipeline
from faunacam.services.stabilizer import ResultStabilizer

LABELS = ["Bear", "Fox", "Lion"]


def _model_output(score: float, class_index: int = 1, anchor: int = 2) -> np.ndarray:
    grid = np.zeros((4 + 3, 4), dtype=np.float32)
    grid[0:4, anchor] = [8.0, 8.0, 4.0, 4.0]
    grid[4 + class_index, anchor] = score
    return grid.reshape(-1)


def _pipeline(fn, **kwargs) -> DetectionPipeline:
    return DetectionPipeline(
        stabilizer=kwargs.pop("stabilizer", None) or ResultStabilizer(display_threshold=0.70),
        preprocessor=TensorPreprocessor(16),
        executor=CallableExecutor(fn, name="fake"),
        decoder=DetectionDecoder(LABELS, num_classes=3, num_anchors=4, conf_threshold=0.55, input_size=16),
        **kwargs,
    )


def _frame() -> Frame:
    return Frame.from_array(np.zeros((24, 32, 3), dtype=np.uint8), timestamp=0.0)


def test_tick_runs_model_and_updates_display() -> None:
    seen_shapes = []

    def fake_model(tensor):
        seen_shapes.append(tensor.shape)
        return _model_output(0.82)

    pipeline = _pipeline(fake_model)

    assert pipeline.tick(_frame()) is True

    assert seen_shapes == [(3, 16, 16)]
    assert pipeline.scheduler.last_detection.label == "Fox"
    shown = pipeline.stabilizer.current()
    assert shown is not None
    assert shown.label == "Fox"
    assert shown.percent == "82%"


def test_detection_between_thresholds_is_not_displayed() -> None:
    pipeline = _pipeline(lambda tensor: _model_output(0.60))

    pipeline.tick(_frame())

    assert pipeline.scheduler.last_detection is not None
    assert pipeline.stabilizer.current() is None


def test_model_failure_is_absorbed_by_scheduler() -> None:
    def broken(tensor):
        raise RuntimeError("runtime gone")

    pipeline = _pipeline(broken)

    assert pipeline.tick(_frame()) is True
    assert pipeline.status()["scheduler"]["failures"] == {"executor": 1}
    assert pipeline.scheduler.busy is False


def test_wrong_output_length_counts_as_decode_error() -> None:
    pipeline = _pipeline(lambda tensor: np.zeros(10, dtype=np.float32))

    pipeline.tick(_frame())

    assert pipeline.status()["scheduler"]["consecutive_decode_errors"] == 1


def test_detect_image_leaves_display_untouched() -> None:
    pipeline = _pipeline(lambda tensor: _model_output(0.95, class_index=2))
    buf = io.BytesIO()
    Image.new("RGB", (20, 10), (0, 128, 0)).save(buf, format="JPEG")

    det = pipeline.detect_image(buf.getvalue())

    assert det is not None
    assert det.label == "Lion"
    assert pipeline.stabilizer.current() is None


def test_capture_reports_result_shown_at_capture_time() -> None:
    pipeline = _pipeline(lambda tensor: _model_output(0.90))
    pipeline.tick(_frame())

    shot = pipeline.capture(_frame())

    assert shot.jpeg[:2] == b"\xff\xd8"
    assert shot.result is not None and shot.result.label == "Fox"
    assert shot.request_id is None


def test_status_reports_on_device_mode() -> None:
    pipeline = _pipeline(lambda tensor: _model_output(0.1), target_fps=2.0)

    status = pipeline.status()

    assert status["mode"] == "on_device"
    assert status["interval_s"] == pytest.approx(0.5)
    assert "ordering" not in status


def test_on_device_pipeline_requires_model_parts() -> None:
    with pytest.raises(ValueError):
        DetectionPipeline(stabilizer=ResultStabilizer())


def test_remote_pipeline_delegates_to_analyzer() -> None:
    stabilizer = ResultStabilizer()
    remote = Mock()
    remote.analyze.return_value = SimpleNamespace(detection=None)
    remote.sequencer.stats.return_value = {"issued": 1, "applied": 0, "stale_discarded": 0, "last_accepted_id": 0}
    pipeline = DetectionPipeline(stabilizer=stabilizer, remote=remote)

    pipeline.tick(_frame())

    remote.analyze.assert_called_once()
    assert pipeline.mode == "remote"
    assert pipeline.status()["ordering"]["issued"] == 1
    with pytest.raises(RuntimeError):
        pipeline.detect_image(b"jpeg")


def test_detection_loop_ticks_until_stopped() -> None:
    ticked = threading.Event()
    pipeline = _pipeline(lambda tensor: _model_output(0.9), target_fps=100.0)
    capture = Mock(side_effect=lambda: (ticked.set(), _frame())[1])

    loop = DetectionLoop(pipeline, capture, fps=50)
    loop.start()
    assert ticked.wait(5.0)
    loop.stop()
    loop.join(5.0)

    assert not loop.is_alive()
    assert pipeline.status()["scheduler"]["runs"] >= 1


def test_build_pipeline_returns_none_without_remote_urls() -> None:
    settings = SimpleNamespace(
        display_threshold=0.7,
        display_dwell_seconds=3.0,
        detect_target_fps=1.0,
        detect_decode_error_limit=5,
        camera_jpeg_quality=85,
        detect_backend="remote",
        remote_upload_url=None,
        remote_analyze_url=None,
    )

    assert build_pipeline(settings) is None


def test_build_pipeline_with_custom_executor(monkeypatch) -> None:
    settings = SimpleNamespace(
        display_threshold=0.7,
        display_dwell_seconds=3.0,
        detect_target_fps=1.0,
        detect_decode_error_limit=5,
        camera_jpeg_quality=85,
        detect_backend="fake_models:fixed",
        detect_labels="wildlife",
        detect_input_size=16,
        detect_num_classes=3,
        detect_num_anchors=4,
        detect_conf_threshold=0.55,
        detect_coord_mode="auto",
        detect_coord_cutoff=2.0,
        detect_unknown_label="unknown",
    )

    monkeypatch.setattr("faunacam.services.detectors._resolve_executor", lambda spec: _fixed_model)

    pipeline = build_pipeline(settings)

    assert pipeline is not None
    assert pipeline.mode == "on_device"
    pipeline.tick(_frame())
    assert pipeline.scheduler.last_detection.label == "Cheetah"


def _fixed_model(tensor):
    return _model_output(0.9)
