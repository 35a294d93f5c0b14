from __future__ import annotations
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from faunacam.core.config import settings

router = APIRouter()


@router.get("/video/snapshot.jpg", tags=["video"])
def snapshot_jpg(request: Request) -> Response:
    camera = getattr(request.app.state, "camera", None)
    if camera is None:
        raise HTTPException(status_code=503, detail="Camera not available")
    try:
        data = camera.capture_jpeg()
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return Response(content=data, media_type="image/jpeg")


@router.get("/video/capture.jpg", tags=["video"])
def last_capture_jpg(request: Request) -> Response:
    """Return the photo taken by the last POST /detection/capture."""
    shot = getattr(request.app.state, "last_capture", None)
    if shot is None:
        raise HTTPException(status_code=404, detail="No photo captured yet")
    return Response(content=shot.jpeg, media_type="image/jpeg")


@router.get("/video/status", tags=["video"])
def video_status(request: Request) -> dict[str, object | None]:
    """Return camera availability and detection backend details."""
    pipeline = getattr(request.app.state, "pipeline", None)
    loop = getattr(request.app.state, "loop", None)
    return {
        "camera_available": getattr(request.app.state, "camera", None) is not None,
        "detect_enabled": bool(getattr(settings, "detect_enabled", False)),
        "backend": str(getattr(settings, "detect_backend", "onnx")).lower(),
        "mode": pipeline.mode if pipeline is not None else None,
        "loop_running": loop is not None and loop.is_alive(),
    }
