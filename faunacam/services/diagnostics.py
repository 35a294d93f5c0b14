from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional

import psutil

# Sensor names reported by Raspberry Pi, Intel and AMD kernels
_TEMP_SENSORS = ("cpu_thermal", "coretemp", "soc_thermal", "k10temp")


def get_cpu_temperature() -> Optional[float]:
    reader = getattr(psutil, "sensors_temperatures", None)
    if reader is None:
        return None
    try:
        sensors = reader() or {}
    except (AttributeError, OSError):
        return None
    for name in _TEMP_SENSORS:
        readings = sensors.get(name)
        if readings:
            return float(readings[0].current)
    for readings in sensors.values():
        if readings:
            return float(readings[0].current)
    return None


def _load_average() -> Optional[Dict[str, float]]:
    getter = getattr(psutil, "getloadavg", None) or getattr(os, "getloadavg", None)
    if getter is None:
        return None
    try:
        one, five, fifteen = getter()
    except OSError:
        return None
    return {"1m": one, "5m": five, "15m": fifteen}


def _memory() -> Optional[Dict[str, Any]]:
    try:
        vm = psutil.virtual_memory()
        rss = psutil.Process().memory_info().rss
    except (OSError, psutil.Error):
        return None
    return {
        "total": vm.total,
        "available": vm.available,
        "percent": vm.percent,
        "process_rss": rss,
    }


def _inference_budget(pipeline: Any) -> Optional[Dict[str, Any]]:
    """How much of the inference interval the last run consumed."""
    if pipeline is None:
        return None
    stats = pipeline.scheduler.stats()
    interval_ms = pipeline.scheduler.interval * 1000.0
    last_ms = stats.get("last_run_ms")
    return {
        "mode": pipeline.mode,
        "interval_ms": interval_ms,
        "last_run_ms": last_ms,
        "utilization": (last_ms / interval_ms) if last_ms is not None and interval_ms > 0 else None,
        "dropped_busy": stats.get("dropped_busy", 0),
    }


def get_system_diagnostics(pipeline: Any = None) -> Dict[str, Any]:
    """
    Return device health relevant to sustaining on-device inference.

    - cpu_util_percent: utilization sampled over 100 ms
    - load_average: 1/5/15 minute load
    - cpu_temperature: SoC/CPU temperature in °C, None when no sensor is exposed
    - memory: system memory plus resident size of this process (model + frame buffers)
    - uptime_seconds: seconds since boot
    - inference: last run time against the scheduler interval, when a pipeline is given

    A utilization near 1.0 or a climbing ``dropped_busy`` means the device cannot
    keep up with DETECT_TARGET_FPS.
    """
    try:
        uptime: Optional[int] = max(0, int(time.time() - psutil.boot_time()))
    except (OSError, RuntimeError):
        uptime = None
    return {
        "cpu_util_percent": psutil.cpu_percent(interval=0.1),
        "load_average": _load_average(),
        "cpu_temperature": get_cpu_temperature(),
        "memory": _memory(),
        "uptime_seconds": uptime,
        "inference": _inference_budget(pipeline),
    }
