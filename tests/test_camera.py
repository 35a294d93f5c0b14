"""Tests for frame helpers that do not need a camera device."""

from __future__ import annotations

import io

import numpy as np
from PIL import Image

from faunacam.services.camera import Frame, _parse_source, frame_to_jpeg


def test_frame_from_array_records_dimensions() -> None:
    frame = Frame.from_array(np.zeros((480, 640, 3), dtype=np.uint8), timestamp=1.5)

    assert (frame.width, frame.height) == (640, 480)
    assert frame.timestamp == 1.5
    assert frame.channel_order == "bgr"


def test_jpeg_encoding_converts_bgr_to_rgb() -> None:
    image = np.zeros((16, 16, 3), dtype=np.uint8)
    image[:, :, 2] = 255  # red in BGR

    data = frame_to_jpeg(Frame.from_array(image), quality=95)

    decoded = np.asarray(Image.open(io.BytesIO(data)).convert("RGB"))
    r, g, b = (int(v) for v in decoded[8, 8])
    assert r > 200 and g < 50 and b < 50


def test_jpeg_encoding_of_grayscale_frame() -> None:
    frame = Frame.from_array(np.full((8, 8), 128, dtype=np.uint8), channel_order="rgb")

    assert frame_to_jpeg(frame)[:2] == b"\xff\xd8"


def test_source_parsing() -> None:
    assert _parse_source("0") == 0
    assert _parse_source(" 2 ") == 2
    assert _parse_source("rtsp://cam.local/stream") == "rtsp://cam.local/stream"
    assert _parse_source(1) == 1
