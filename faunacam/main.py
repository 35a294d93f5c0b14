from __future__ import annotations
import logging
import logging.config

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from faunacam.core.config import settings
from faunacam.routers import detection as detection_router
from faunacam.routers import diagnostics as diagnostics_router
from faunacam.routers import ping as ping_router
from faunacam.routers import video as video_router
from faunacam.services.camera import Camera
from faunacam.services.pipeline import DetectionLoop, DetectionPipeline, build_camera, build_pipeline
from faunacam.sockets import detections as detections_socket

log = logging.getLogger(__name__)

def _setup_logging() -> None:
    # Format: time level [faunacam] [logger] message
    fmt = "%(asctime)s %(levelname)s [faunacam] [%(name)s] %(message)s"
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": fmt},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG" if settings.verbose else "INFO",
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            # Uvicorn server and access logs
            "uvicorn": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["console"], "level": "INFO", "propagate": False},
        },
        "root": {"handlers": ["console"], "level": "DEBUG" if settings.verbose else "INFO"},
    }
    try:
        logging.config.dictConfig(config)
    except (ValueError, TypeError, AttributeError, ImportError):  # pragma: no cover
        # Last resort fallback
        logging.basicConfig(level=logging.DEBUG if settings.verbose else logging.INFO, format=fmt)


def create_app(
    pipeline: DetectionPipeline | None = None,
    camera: Camera | None = None,
) -> FastAPI:
    """Build the API app. Services passed in are used as-is; missing ones are built at startup."""
    app = FastAPI(title="FaunaCam Backend", version="0.1.0")
    app.state.pipeline = pipeline  # type: ignore[attr-defined]
    app.state.camera = camera  # type: ignore[attr-defined]
    app.state.loop = None  # type: ignore[attr-defined]
    app.state.last_capture = None  # type: ignore[attr-defined]
    app.state.owns_services = pipeline is None  # type: ignore[attr-defined]

    # CORS setup. Prefer regex if provided; otherwise use explicit list.
    cors_kwargs = dict(
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if settings.cors_allow_origin_regex:
        cors_kwargs["allow_origin_regex"] = settings.cors_allow_origin_regex
    else:
        cors_kwargs["allow_origins"] = settings.cors_origins
    app.add_middleware(CORSMiddleware, **cors_kwargs)

    # REST routes under /api
    app.include_router(ping_router.router, prefix=settings.api_prefix)
    app.include_router(detection_router.router, prefix=settings.api_prefix)
    app.include_router(video_router.router, prefix=settings.api_prefix)
    app.include_router(diagnostics_router.router, prefix=settings.api_prefix)

    # WebSocket (root app, not under /api)
    app.include_router(detections_socket.router)

    @app.on_event("startup")
    async def _start_detection() -> None:
        if not app.state.owns_services:  # type: ignore[attr-defined]
            return
        if not settings.detect_enabled:
            log.info("Detection disabled (DETECT_ENABLED=0)")
            return
        app.state.camera = build_camera(settings)  # type: ignore[attr-defined]
        app.state.pipeline = build_pipeline(settings)  # type: ignore[attr-defined]
        if app.state.camera is None or app.state.pipeline is None:  # type: ignore[attr-defined]
            log.warning("Detection loop not started (camera or pipeline unavailable)")
            return
        loop = DetectionLoop(app.state.pipeline, app.state.camera.latest_frame, fps=settings.camera_fps)  # type: ignore[attr-defined]
        loop.start()
        app.state.loop = loop  # type: ignore[attr-defined]

    @app.on_event("shutdown")
    async def _stop_detection() -> None:
        loop = app.state.loop  # type: ignore[attr-defined]
        if loop is not None:
            loop.stop()
            loop.join(timeout=2.0)
            app.state.loop = None  # type: ignore[attr-defined]
        if not app.state.owns_services:  # type: ignore[attr-defined]
            return
        if app.state.pipeline is not None:  # type: ignore[attr-defined]
            app.state.pipeline.close()  # type: ignore[attr-defined]
            app.state.pipeline = None  # type: ignore[attr-defined]
        if app.state.camera is not None:  # type: ignore[attr-defined]
            app.state.camera.close()  # type: ignore[attr-defined]
            app.state.camera = None  # type: ignore[attr-defined]

    return app


_setup_logging()

app = create_app()
