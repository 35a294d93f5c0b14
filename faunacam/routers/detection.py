from __future__ import annotations
import logging
import time

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from faunacam.schemas import (
    AnalyzeResponse,
    CaptureResponse,
    DetectionData,
    DisplayedResult,
    PipelineStatus,
)
from faunacam.services.detectors.base import DetectionError, PreprocessError
from faunacam.services.pipeline import DetectionPipeline

router = APIRouter()

log = logging.getLogger(__name__)


def get_pipeline(request: Request) -> DetectionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Detection pipeline not available")
    return pipeline


@router.get("/detection/current", response_model=DisplayedResult, tags=["detection"])
def current_detection(request: Request) -> DisplayedResult:
    pipeline = get_pipeline(request)
    now = time.monotonic()
    result = pipeline.stabilizer.current(now)
    return DisplayedResult.from_result(result, ts=int(time.time() * 1000), now=now)


@router.get("/detection/status", response_model=PipelineStatus, tags=["detection"])
def detection_status(request: Request) -> PipelineStatus:
    return PipelineStatus(**get_pipeline(request).status())


@router.post("/detection/analyze", response_model=AnalyzeResponse, tags=["detection"])
async def analyze_image(request: Request) -> AnalyzeResponse:
    """Detect the species in an uploaded still image (raw JPEG/PNG request body)."""
    pipeline = get_pipeline(request)
    if pipeline.executor is None:
        raise HTTPException(status_code=409, detail="Still-image analysis needs the on-device model")
    data = await request.body()
    try:
        detection = await run_in_threadpool(pipeline.detect_image, data)
    except PreprocessError as exc:
        raise HTTPException(status_code=400, detail=f"Unreadable image: {exc}") from exc
    except DetectionError as exc:
        log.warning("analyze: inference failed: %s", exc)
        raise HTTPException(status_code=500, detail="Inference failed") from exc
    if detection is None:
        return AnalyzeResponse(detected=False)
    return AnalyzeResponse(detected=True, detection=DetectionData.from_detection(detection))


@router.post("/detection/capture", response_model=CaptureResponse, tags=["detection"])
def capture(request: Request) -> CaptureResponse:
    """Take a photo and return the result shown at the moment of capture."""
    pipeline = get_pipeline(request)
    camera = getattr(request.app.state, "camera", None)
    if camera is None:
        raise HTTPException(status_code=503, detail="Camera not available")
    try:
        frame = camera.latest_frame()
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if frame is None:
        raise HTTPException(status_code=503, detail="No frame available from camera")
    try:
        shot = pipeline.capture(frame)
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    request.app.state.last_capture = shot
    result = shot.result
    return CaptureResponse(
        capturedAt=shot.captured_at,
        label=result.label if result is not None else None,
        score=result.percent if result is not None else None,
        requestId=shot.request_id,
    )
