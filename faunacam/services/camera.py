from __future__ import annotations
import io
import time
import threading
from dataclasses import dataclass
from typing import Optional
import logging

from PIL import Image  # type: ignore
import numpy as np  # type: ignore
try:
    import cv2  # type: ignore
    _CV_AVAILABLE = True
except Exception:
    cv2 = None  # type: ignore
    _CV_AVAILABLE = False

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """One camera image. ``timestamp`` is monotonic seconds at capture."""

    image: np.ndarray
    timestamp: float
    width: int
    height: int
    channel_order: str = "bgr"

    @classmethod
    def from_array(cls, image: np.ndarray, channel_order: str = "bgr", timestamp: float | None = None) -> "Frame":
        arr = np.asarray(image)
        height, width = arr.shape[:2]
        return cls(
            image=arr,
            timestamp=time.monotonic() if timestamp is None else timestamp,
            width=int(width),
            height=int(height),
            channel_order=channel_order,
        )


def frame_to_jpeg(frame: Frame, quality: int = 85) -> bytes:
    arr = np.asarray(frame.image)
    try:
        if arr.ndim == 3 and arr.shape[2] >= 3:
            rgb = arr[:, :, :3]
            if frame.channel_order == "bgr":
                rgb = rgb[:, :, ::-1]
            img = Image.fromarray(np.ascontiguousarray(rgb))
        else:
            img = Image.fromarray(arr)
        buf = io.BytesIO()
        img.convert("RGB").save(buf, format="JPEG", quality=quality)
        return buf.getvalue()
    except Exception as e:
        raise RuntimeError("Failed to encode JPEG from camera frame") from e


def _parse_source(source: str | int) -> str | int:
    if isinstance(source, int):
        return source
    text = str(source).strip()
    return int(text) if text.isdigit() else text


class Camera:
    """Frame source backed by OpenCV VideoCapture.

    - A reader thread keeps only the latest frame; nothing is buffered
    - ``latest_frame`` is the capture callable handed to the scheduler
    """

    def __init__(self, source: str | int = 0, width: int = 1280, height: int = 720,
                 fps: int = 30, quality: int = 85) -> None:
        self.source = _parse_source(source)
        self.width = width
        self.height = height
        self.fps = fps
        self.quality = quality
        self._cap = None
        self._lock = threading.Lock()
        self._open_lock = threading.Lock()
        self._last_frame: Optional[Frame] = None
        self._reader: Optional[threading.Thread] = None
        self._running = False
        if not _CV_AVAILABLE:
            raise RuntimeError("OpenCV not available; install opencv-python-headless.")

    def _ensure_open(self) -> None:
        if self._cap is not None:
            return
        with self._open_lock:
            if self._cap is not None:
                return
            cap = cv2.VideoCapture(self.source)
            if not cap.isOpened():
                cap.release()
                raise RuntimeError(f"Failed to open camera source {self.source!r}")
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
            # Keep the driver queue short so reads return fresh frames
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
            self._cap = cap
            self._running = True
            th = threading.Thread(target=self._read_loop, name="camera-reader", daemon=True)
            th.start()
            self._reader = th
            log.info("Opened camera %r (%dx%d @ %d fps)", self.source, self.width, self.height, self.fps)

    def _read_loop(self) -> None:
        failures = 0
        while self._running:
            cap = self._cap
            if cap is None:
                break
            ok, arr = cap.read()
            if not ok or arr is None:
                failures += 1
                if failures == 1 or failures % 100 == 0:
                    log.warning("camera: read failed (%d in a row)", failures)
                time.sleep(min(1.0, 0.01 * failures))
                continue
            failures = 0
            frame = Frame.from_array(arr, channel_order="bgr")
            with self._lock:
                self._last_frame = frame

    def latest_frame(self) -> Optional[Frame]:
        """Return the most recent frame, opening the camera on first use."""
        self._ensure_open()
        with self._lock:
            return self._last_frame

    def capture_jpeg(self) -> bytes:
        frame = self.latest_frame()
        if frame is None:
            raise RuntimeError("No frame available from camera")
        return frame_to_jpeg(frame, quality=self.quality)

    def close(self) -> None:
        self._running = False
        th = self._reader
        if th is not None and th.is_alive() and th is not threading.current_thread():
            th.join(timeout=1.0)
        self._reader = None
        with self._open_lock:
            if self._cap is not None:
                try:
                    self._cap.release()
                except Exception as exc:
                    log.debug("camera: release failed: %s", exc)
                self._cap = None
        with self._lock:
            self._last_frame = None
