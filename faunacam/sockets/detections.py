from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from faunacam.core.config import settings
from faunacam.schemas import DisplayedResult

router = APIRouter()

log = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.1


async def _send_results(ws: WebSocket, stop_event: asyncio.Event) -> None:
    last_version: int | None = None
    unavailable_sent = False
    while not stop_event.is_set():
        pipeline = getattr(ws.app.state, "pipeline", None)
        if pipeline is None:
            if not unavailable_sent:
                unavailable_sent = True
                with contextlib.suppress(Exception):
                    await ws.send_json({"type": "error", "message": "Detection pipeline not available"})
            await asyncio.sleep(1.0)
            continue

        unavailable_sent = False
        now = time.monotonic()
        version, result = pipeline.stabilizer.snapshot(now)
        if version != last_version:
            frame = DisplayedResult.from_result(result, ts=int(time.time() * 1000), now=now)
            try:
                await ws.send_json(frame.model_dump(mode="json"))
            except WebSocketDisconnect:
                stop_event.set()
                return
            except Exception as exc:
                log.debug("Failed to send detection frame: %s", exc)
                await asyncio.sleep(0.2)
                continue
            last_version = version
        await asyncio.sleep(POLL_INTERVAL_S)


async def _receive_commands(ws: WebSocket, stop_event: asyncio.Event) -> None:
    while not stop_event.is_set():
        try:
            message = await ws.receive_json()
        except WebSocketDisconnect:
            stop_event.set()
            break
        except Exception as exc:
            log.debug("Detections WS receive error: %s", exc)
            continue

        if not isinstance(message, dict):
            continue

        action = str(message.get("action", "")).strip().lower()
        if action == "ping":
            with contextlib.suppress(Exception):
                await ws.send_json({"type": "pong", "ts": message.get("ts")})
            continue

        log.debug("Detections WS received unknown action: %s", action)


@router.websocket(settings.detections_ws_path)
async def ws_detections(ws: WebSocket) -> None:
    await ws.accept()
    log.info("WS connected to %s", settings.detections_ws_path)

    stop_event = asyncio.Event()
    sender = asyncio.create_task(_send_results(ws, stop_event))
    receiver = asyncio.create_task(_receive_commands(ws, stop_event))

    done, pending = await asyncio.wait(
        {sender, receiver},
        return_when=asyncio.FIRST_COMPLETED,
    )

    stop_event.set()
    for task in pending:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    for task in done:
        with contextlib.suppress(asyncio.CancelledError):
            await task

    log.info("WS disconnected from %s", settings.detections_ws_path)
