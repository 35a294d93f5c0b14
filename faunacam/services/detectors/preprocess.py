from __future__ import annotations

"""Frame -> model input tensor conversion."""

import io
import logging

import numpy as np  # type: ignore
from PIL import Image, UnidentifiedImageError  # type: ignore

from .base import PreprocessError

log = logging.getLogger(__name__)

try:
    import cv2  # type: ignore
    _CV_AVAILABLE = True
except Exception as exc:  # pragma: no cover - dev machines without OpenCV
    cv2 = None  # type: ignore
    _CV_AVAILABLE = False
    log.debug("OpenCV import failed for preprocessing: %s", exc)

# Source channel index feeding each RGB output plane
_CHANNEL_SOURCES = {
    "rgb": (0, 1, 2),
    "bgr": (2, 1, 0),
}


class TensorPreprocessor:
    """Resize a frame to ``size`` x ``size`` and emit a 3 x S x S float32 RGB tensor in [0, 1].

    The resize target and the output tensor are allocated once and reused on
    every call, so the returned array is only valid until the next call. The
    single-flight scheduler guarantees the tensor is consumed before that.
    """

    def __init__(self, size: int = 640) -> None:
        if not _CV_AVAILABLE:
            raise RuntimeError("OpenCV (cv2) is not available for TensorPreprocessor")
        self.size = int(size)
        if self.size <= 0:
            raise ValueError("preprocess size must be positive")
        self._resized = np.empty((self.size, self.size, 3), dtype=np.uint8)
        self._tensor = np.empty((3, self.size, self.size), dtype=np.float32)

    def __call__(self, image: "np.ndarray", channel_order: str = "bgr") -> np.ndarray:
        sources = _CHANNEL_SOURCES.get(channel_order.lower())
        if sources is None:
            raise PreprocessError(f"unsupported channel order {channel_order!r}")
        img = _as_three_channel(image)
        try:
            resized = cv2.resize(
                img,
                (self.size, self.size),
                dst=self._resized,
                interpolation=cv2.INTER_LINEAR,
            )
        except cv2.error as exc:  # type: ignore[union-attr]
            raise PreprocessError(f"failed to resize frame: {exc}") from exc
        for plane, src in enumerate(sources):
            np.divide(resized[:, :, src], 255.0, out=self._tensor[plane], casting="unsafe")
        return self._tensor


def _as_three_channel(image: "np.ndarray") -> np.ndarray:
    if image is None:
        raise PreprocessError("no frame")
    arr = np.asarray(image)
    if arr.size == 0:
        raise PreprocessError("empty frame")
    if arr.dtype != np.uint8:
        raise PreprocessError(f"expected 8-bit samples, got {arr.dtype}")
    if arr.ndim == 2:
        return np.repeat(arr[:, :, np.newaxis], 3, axis=2)
    if arr.ndim != 3:
        raise PreprocessError(f"unexpected frame shape {arr.shape}")
    channels = arr.shape[2]
    if channels == 3:
        return arr
    if channels == 4:
        # Drop alpha; channel order of the colour planes is unchanged
        return np.ascontiguousarray(arr[:, :, :3])
    if channels == 1:
        return np.repeat(arr, 3, axis=2)
    raise PreprocessError(f"unexpected channel count {channels}")


def load_image(data: bytes) -> np.ndarray:
    """Decode a still image (JPEG/PNG/...) into an RGB uint8 array."""
    if not data:
        raise PreprocessError("empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as img:
            return np.asarray(img.convert("RGB"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise PreprocessError(f"failed to decode image: {exc}") from exc


__all__ = ["TensorPreprocessor", "load_image"]
