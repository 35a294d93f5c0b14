from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Dict, Optional

from faunacam.services.detectors.base import Detection
from faunacam.services.stabilizer import StabilizedResult

# ---- Detection ---------------------------------------------------------------

class BoxData(BaseModel):
    x: float
    y: float
    width: float
    height: float


class DetectionData(BaseModel):
    classIndex: int
    label: str
    confidence: float = Field(ge=0, le=1)
    score: str = Field(description="Confidence rendered for display, e.g. '82%'")
    anchorIndex: int
    box: BoxData

    @classmethod
    def from_detection(cls, det: Detection) -> "DetectionData":
        return cls(
            classIndex=det.class_index,
            label=det.label,
            confidence=det.confidence,
            score=det.percent,
            anchorIndex=det.anchor_index,
            box=BoxData(x=det.box.x, y=det.box.y, width=det.box.width, height=det.box.height),
        )


class DisplayedResult(BaseModel):
    """What the camera overlay shows right now. ``label`` is None while searching."""
    type: str = "detection"
    ts: int
    label: Optional[str] = None
    confidence: Optional[float] = None
    score: Optional[str] = None
    expiresInMs: Optional[int] = None

    @classmethod
    def from_result(cls, result: StabilizedResult | None, ts: int, now: float) -> "DisplayedResult":
        if result is None:
            return cls(ts=ts)
        return cls(
            ts=ts,
            label=result.label,
            confidence=result.confidence,
            score=result.percent,
            expiresInMs=max(0, int((result.display_until - now) * 1000)),
        )


class AnalyzeResponse(BaseModel):
    detected: bool
    detection: Optional[DetectionData] = None


class CaptureResponse(BaseModel):
    capturedAt: float
    label: Optional[str] = None
    score: Optional[str] = None
    requestId: Optional[int] = Field(default=None, description="Remote analysis request id (remote mode only)")


class SchedulerStatus(BaseModel):
    ticks: int
    runs: int
    dropped_busy: int
    dropped_interval: int
    detections: int
    failures: Dict[str, int] = Field(default_factory=dict)
    consecutive_decode_errors: int
    persistent_decode_error: bool
    last_run_ms: Optional[float] = None


class OrderingStatus(BaseModel):
    issued: int
    applied: int
    stale_discarded: int
    last_accepted_id: int


class PipelineStatus(BaseModel):
    mode: str
    busy: bool
    interval_s: float
    scheduler: SchedulerStatus
    ordering: Optional[OrderingStatus] = None
