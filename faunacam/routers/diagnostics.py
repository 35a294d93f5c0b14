from __future__ import annotations
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from typing import Any, Dict
from faunacam.services.diagnostics import get_system_diagnostics

router = APIRouter()

@router.get("/diag/system", tags=["system"])
async def system_diagnostics(request: Request) -> Dict[str, Any]:
    pipeline = getattr(request.app.state, "pipeline", None)
    # cpu_percent samples for a short interval; keep it off the event loop
    return await run_in_threadpool(get_system_diagnostics, pipeline)
