from __future__ import annotations
from pydantic import BaseModel
from pathlib import Path
import os
try:
    from dotenv import load_dotenv  # type: ignore
    load_dotenv()
except Exception:
    # dotenv is optional; ignore if not installed
    pass

def _getenv_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}

def _getenv_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default or [])
    # Split on commas and whitespace, keep non-empty
    parts = [p.strip() for p in raw.replace("\n", ",").split(",")]
    return [p for p in parts if p]

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseModel):
    api_prefix: str = "/api"
    detections_ws_path: str = "/ws/detections"
    verbose: bool = _getenv_bool("VERBOSE", False)
    # Comma-separated list of allowed CORS origins, e.g. "http://localhost:8081,http://192.168.0.5:8081"
    cors_origins: list[str] = _getenv_list(
        "CORS_ORIGINS",
        [
            "http://127.0.0.1:8081",
            "http://localhost:8081",
        ],
    )
    # Optional regex for allowed CORS origins; if set, it is used instead of the list
    cors_allow_origin_regex: str | None = os.getenv(
        "CORS_ALLOW_ORIGIN_REGEX",
        # Default: allow common private/LAN dev hosts (phones on the same Wi-Fi)
        r"^https?://(localhost|127\.0\.0\.1|10\.\d+\.\d+\.\d+|192\.168\.\d+\.\d+|172\.(1[6-9]|2[0-9]|3[0-1])\.\d+\.\d+)(:\d+)?$",
    )

    # Species detection
    detect_enabled: bool = _getenv_bool("DETECT_ENABLED", True)
    # 'onnx' (OpenCV DNN), 'remote' (upload + analysis endpoint) or 'module:function' for a custom executor
    detect_backend: str = os.getenv("DETECT_BACKEND", "onnx")
    detect_model_path: str | None = os.getenv(
        "DETECT_MODEL_PATH",
        str(PROJECT_ROOT / "models" / "wildlife15.onnx"),
    )
    # Class labels: 'wildlife' for the built-in 15 species, or path to a labels.txt (one label per line)
    detect_labels: str = os.getenv("DETECT_LABELS", "wildlife")
    detect_unknown_label: str = os.getenv("DETECT_UNKNOWN_LABEL", "unknown")
    # Model geometry: input is 3 x S x S, output is (4 + classes) x anchors
    detect_input_size: int = int(os.getenv("DETECT_INPUT_SIZE", "640"))
    detect_num_classes: int = int(os.getenv("DETECT_NUM_CLASSES", "15"))
    detect_num_anchors: int = int(os.getenv("DETECT_NUM_ANCHORS", "8400"))
    # A best score must be strictly greater than this to count as a detection
    detect_conf_threshold: float = float(os.getenv("DETECT_CONF_THRESHOLD", "0.55"))
    # Box coordinate units: 'auto' (magnitude heuristic), 'normalized' or 'pixels'
    detect_coord_mode: str = os.getenv("DETECT_COORD_MODE", "auto")
    # In 'auto' mode, boxes whose coordinates all fall within this magnitude are treated as normalized
    detect_coord_cutoff: float = float(os.getenv("DETECT_COORD_CUTOFF", "2.0"))
    # Inference attempts per second; frames arriving faster are dropped
    detect_target_fps: float = float(os.getenv("DETECT_TARGET_FPS", "1.0"))
    # Consecutive decode failures before the error is reported as persistent
    detect_decode_error_limit: int = max(1, int(os.getenv("DETECT_DECODE_ERROR_LIMIT", "5")))

    # Result display (hysteresis)
    display_threshold: float = float(os.getenv("DISPLAY_THRESHOLD", "0.70"))
    display_dwell_seconds: float = float(os.getenv("DISPLAY_DWELL_SECONDS", "3.0"))

    # Camera (OpenCV VideoCapture). Device index ("0") or stream URL.
    camera_source: str = os.getenv("CAMERA_SOURCE", "0")
    camera_width: int = int(os.getenv("CAMERA_WIDTH", "1280"))
    camera_height: int = int(os.getenv("CAMERA_HEIGHT", "720"))
    camera_fps: int = max(1, int(os.getenv("CAMERA_FPS", "30")))
    camera_jpeg_quality: int = max(1, min(95, int(os.getenv("CAMERA_JPEG_QUALITY", "85"))))

    # Remote analysis
    remote_upload_url: str | None = os.getenv("REMOTE_UPLOAD_URL")
    remote_upload_field: str = os.getenv("REMOTE_UPLOAD_FIELD", "file")
    remote_analyze_url: str | None = os.getenv("REMOTE_ANALYZE_URL")
    remote_timeout: float = float(os.getenv("REMOTE_TIMEOUT", "5"))
    remote_max_workers: int = max(1, int(os.getenv("REMOTE_MAX_WORKERS", "2")))

# Simple settings instance
settings = Settings()
