from __future__ import annotations

"""Decoding of single-tensor YOLOv8-style detection output."""

from typing import Sequence
import logging

import numpy as np  # type: ignore

from .base import BoundingBox, DecodeError, Detection

log = logging.getLogger(__name__)

COORD_MODES = ("auto", "normalized", "pixels")


class DetectionDecoder:
    """Turn a flat ``(4 + classes) x anchors`` output buffer into the best Detection.

    Layout is row-major by feature row, then anchor: rows 0-3 hold
    ``cx, cy, w, h`` for every anchor, rows ``4 + c`` hold the score of class
    ``c``. Only the single best (class, anchor) cell is reported; there is no
    top-K or NMS because the camera shows one species at a time.

    Exporters disagree on box units. Some emit coordinates normalized to
    [0, 1], others emit input pixels. ``coord_mode`` selects the units
    explicitly; ``"auto"`` treats a box as normalized when all four values are
    within ``coord_cutoff`` in magnitude and scales it by ``input_size``. A
    real pixel box that small (under ~2 px on a 640 px input) is not a usable
    detection anyway, which is what makes the cutoff safe.
    """

    def __init__(
        self,
        labels: Sequence[str] | None,
        *,
        num_classes: int,
        num_anchors: int,
        conf_threshold: float = 0.55,
        input_size: int = 640,
        coord_mode: str = "auto",
        coord_cutoff: float = 2.0,
        unknown_label: str = "unknown",
    ) -> None:
        if num_classes <= 0 or num_anchors <= 0:
            raise ValueError("num_classes and num_anchors must be positive")
        mode = coord_mode.strip().lower()
        if mode not in COORD_MODES:
            raise ValueError(f"coord_mode must be one of {COORD_MODES}, got {coord_mode!r}")
        self._labels = list(labels or [])
        if self._labels and len(self._labels) != num_classes:
            log.warning(
                "decoder: %d labels for %d classes; missing indexes map to %r",
                len(self._labels),
                num_classes,
                unknown_label,
            )
        self.num_classes = int(num_classes)
        self.num_anchors = int(num_anchors)
        # Compared in float32 so a score equal to the threshold stays rejected
        self.conf_threshold = np.float32(conf_threshold)
        self.input_size = int(input_size)
        self.coord_mode = mode
        self.coord_cutoff = float(coord_cutoff)
        self.unknown_label = unknown_label

    @property
    def expected_length(self) -> int:
        return (4 + self.num_classes) * self.num_anchors

    def label_for(self, class_index: int) -> str:
        if 0 <= class_index < len(self._labels):
            return self._labels[class_index]
        return self.unknown_label

    def decode(self, output: object) -> Detection | None:
        """Return the best detection above the threshold, or None.

        Raises DecodeError when the buffer length does not match the model
        geometry; the buffer is never truncated or padded.
        """
        try:
            flat = np.asarray(output, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"output is not a numeric buffer: {exc}") from exc
        if flat.size != self.expected_length:
            raise DecodeError(
                f"output has {flat.size} values, expected {self.expected_length} "
                f"((4 + {self.num_classes}) x {self.num_anchors})"
            )
        grid = flat.reshape(4 + self.num_classes, self.num_anchors)
        scores = grid[4:]
        if np.isnan(scores).any():
            scores = np.where(np.isnan(scores), -np.inf, scores)

        # argmax over the row-major (class, anchor) grid returns the first
        # maximum, i.e. the lowest class index, then the lowest anchor index.
        flat_index = int(np.argmax(scores))
        class_index, anchor_index = divmod(flat_index, self.num_anchors)
        best = scores[class_index, anchor_index]
        if not best > self.conf_threshold:
            return None

        cx, cy, w, h = (float(v) for v in grid[:4, anchor_index])
        if self._is_normalized(cx, cy, w, h):
            scale = float(self.input_size)
            cx, cy, w, h = cx * scale, cy * scale, w * scale, h * scale
        return Detection(
            class_index=class_index,
            label=self.label_for(class_index),
            confidence=float(best),
            box=BoundingBox.from_center(cx, cy, w, h),
            anchor_index=anchor_index,
        )

    def _is_normalized(self, cx: float, cy: float, w: float, h: float) -> bool:
        if self.coord_mode == "normalized":
            return True
        if self.coord_mode == "pixels":
            return False
        return max(abs(cx), abs(cy), abs(w), abs(h)) <= self.coord_cutoff


__all__ = ["COORD_MODES", "DetectionDecoder"]
