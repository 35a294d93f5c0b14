from __future__ import annotations

"""CPU model executors: ONNX via OpenCV DNN, or any plain callable."""

from pathlib import Path
from typing import Callable
import logging
import threading

import numpy as np  # type: ignore

from .base import ExecutorError, ModelExecutor

log = logging.getLogger(__name__)

try:
    import cv2  # type: ignore
    _CV_AVAILABLE = True
except Exception as exc:  # pragma: no cover - dev machines without OpenCV
    cv2 = None  # type: ignore
    _CV_AVAILABLE = False
    log.debug("OpenCV import failed for CPU executor: %s", exc)


class OnnxExecutor(ModelExecutor):
    """Run an exported ONNX detection model with OpenCV DNN on the CPU."""

    def __init__(self, onnx_path: str) -> None:
        if not _CV_AVAILABLE:
            raise RuntimeError("OpenCV (cv2) is not available for OnnxExecutor")
        model_path = Path(onnx_path).expanduser()
        if not model_path.is_file():
            raise FileNotFoundError(f"ONNX model not found: {model_path}")
        self._net = cv2.dnn.readNetFromONNX(str(model_path))  # type: ignore[attr-defined]
        try:
            self._net.setPreferableBackend(getattr(cv2.dnn, "DNN_BACKEND_OPENCV", 3))
            self._net.setPreferableTarget(getattr(cv2.dnn, "DNN_TARGET_CPU", 0))
        except cv2.error as exc:
            log.debug("OnnxExecutor: keeping default DNN backend: %s", exc)
        # cv2.dnn.Net is not safe for concurrent forward passes
        self._lock = threading.Lock()
        self.model_path = model_path

    def run(self, tensor: np.ndarray) -> np.ndarray:
        blob = np.asarray(tensor, dtype=np.float32)
        if blob.ndim == 3:
            blob = blob[np.newaxis, ...]
        with self._lock:
            try:
                self._net.setInput(blob)
                out = self._net.forward()
            except cv2.error as exc:
                raise ExecutorError(f"ONNX forward pass failed: {exc}") from exc
        if out is None:
            raise ExecutorError("ONNX forward pass returned no output")
        return np.asarray(out).reshape(-1)


class CallableExecutor(ModelExecutor):
    """Adapt a ``fn(tensor) -> buffer`` callable to the executor contract."""

    def __init__(self, fn: Callable[[np.ndarray], object], name: str | None = None) -> None:
        if not callable(fn):
            raise TypeError("CallableExecutor needs a callable")
        self._fn = fn
        self.name = name or getattr(fn, "__name__", repr(fn))

    def run(self, tensor: np.ndarray) -> np.ndarray:
        try:
            out = self._fn(tensor)
        except ExecutorError:
            raise
        except Exception as exc:
            raise ExecutorError(f"executor {self.name} failed: {exc}") from exc
        if out is None:
            raise ExecutorError(f"executor {self.name} returned no output")
        return np.asarray(out).reshape(-1)


__all__ = ["CallableExecutor", "OnnxExecutor"]
