from __future__ import annotations

"""Detection types, the model executor contract and the pipeline error taxonomy."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np  # type: ignore


class DetectionError(Exception):
    """Base class for failures inside one inference cycle."""


class PreprocessError(DetectionError):
    """Frame could not be decoded or resized into a model input tensor."""


class DecodeError(DetectionError):
    """Model output does not have the expected (4 + classes) x anchors layout."""


class ExecutorError(DetectionError):
    """The model forward pass failed."""


@dataclass(frozen=True)
class BoundingBox:
    """Box in model-input pixel space; ``x``/``y`` is the top-left corner."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_center(cls, cx: float, cy: float, w: float, h: float) -> "BoundingBox":
        return cls(x=cx - w / 2.0, y=cy - h / 2.0, width=w, height=h)

    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def bottom_right(self) -> tuple[float, float]:
        return (self.x + self.width, self.y + self.height)


@dataclass(frozen=True)
class Detection:
    """Best-scoring detection of one frame."""

    class_index: int
    label: str
    confidence: float
    box: BoundingBox
    anchor_index: int

    @property
    def percent(self) -> str:
        return format_percent(self.confidence)


def format_percent(confidence: float) -> str:
    """Render a confidence in [0, 1] as the UI score string, e.g. ``"82%"``."""
    return f"{int(round(float(confidence) * 100))}%"


class ModelExecutor(ABC):
    """Opaque forward pass: flat float32 input tensor in, flat output tensor out."""

    @abstractmethod
    def run(self, tensor: np.ndarray) -> np.ndarray:
        """Run one forward pass. Raises ExecutorError on failure."""

    def close(self) -> None:
        """Release runtime resources. Default is a no-op."""


__all__ = [
    "BoundingBox",
    "DecodeError",
    "Detection",
    "DetectionError",
    "ExecutorError",
    "ModelExecutor",
    "PreprocessError",
    "format_percent",
]
