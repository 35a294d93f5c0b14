from __future__ import annotations

"""Label tables and model executor factory."""

from importlib import import_module
from typing import Callable
import logging

from .base import (
    BoundingBox,
    DecodeError,
    Detection,
    DetectionError,
    ExecutorError,
    ModelExecutor,
    PreprocessError,
    format_percent,
)
from .cpu import CallableExecutor, OnnxExecutor
from .postprocess import DetectionDecoder
from .preprocess import TensorPreprocessor, load_image

log = logging.getLogger(__name__)

# Class order of the bundled 15-species model
WILDLIFE_LABELS = [
    "Bear", "Cheetah", "Crocodile", "Elephant", "Fox",
    "Giraffe", "Hedgehog", "Human", "Leopard", "Lion",
    "Lynx", "Ostrich", "Rhinoceros", "Tiger", "Zebra",
]


def load_labels(label_source: str | None) -> list[str]:
    if not label_source:
        return []
    if label_source.lower() == "wildlife":
        return list(WILDLIFE_LABELS)
    try:
        with open(label_source, "r", encoding="utf-8") as fh:
            return [ln.strip() for ln in fh if ln.strip()]
    except OSError as exc:
        log.warning("detector: failed to read labels from %s: %s", label_source, exc)
        return []


def _resolve_executor(spec: str) -> Callable[[object], object]:
    """Load a custom forward-pass function from "module:function"."""
    mod_name, _, func_name = spec.partition(":")
    if not mod_name or not func_name:
        raise ValueError("detect_backend must be 'onnx', 'remote' or 'module:function'")
    module = import_module(mod_name)
    fn = getattr(module, func_name, None)
    if fn is None or not callable(fn):
        raise AttributeError(f"Function {func_name!r} not found in module {mod_name!r}")
    return fn


def create_executor(settings) -> ModelExecutor | None:
    """Create the configured on-device executor from settings.

    Returns None for the remote backend or when the executor cannot be built;
    the failure is logged and detection stays disabled.
    """
    backend = str(getattr(settings, "detect_backend", "onnx")).strip()
    if backend.lower() == "remote":
        return None
    try:
        if backend.lower() == "onnx":
            onnx_path = getattr(settings, "detect_model_path", None)
            if not onnx_path:
                log.warning("detector: detect_backend=onnx but no DETECT_MODEL_PATH provided")
                return None
            return OnnxExecutor(onnx_path)
        return CallableExecutor(_resolve_executor(backend), name=backend)
    except Exception as exc:
        log.warning("detector: failed to create %s executor: %s", backend, exc)
        return None


def create_decoder(settings, labels: list[str] | None = None) -> DetectionDecoder:
    if labels is None:
        labels = load_labels(getattr(settings, "detect_labels", None))
    return DetectionDecoder(
        labels,
        num_classes=int(settings.detect_num_classes),
        num_anchors=int(settings.detect_num_anchors),
        conf_threshold=float(settings.detect_conf_threshold),
        input_size=int(settings.detect_input_size),
        coord_mode=str(settings.detect_coord_mode),
        coord_cutoff=float(settings.detect_coord_cutoff),
        unknown_label=str(settings.detect_unknown_label),
    )


__all__ = [
    "BoundingBox",
    "CallableExecutor",
    "DecodeError",
    "Detection",
    "DetectionDecoder",
    "DetectionError",
    "ExecutorError",
    "ModelExecutor",
    "OnnxExecutor",
    "PreprocessError",
    "TensorPreprocessor",
    "WILDLIFE_LABELS",
    "create_decoder",
    "create_executor",
    "format_percent",
    "load_image",
    "load_labels",
]
