from __future__ import annotations

import time
from typing import Dict

import psutil
from fastapi import APIRouter, Request

from battery_agent.http_utils import broadcaster, registry

router = APIRouter()


@router.get("/healthz")
async def healthz():
    return {"status": "ok"}


@router.get("/v1/status")
async def status_endpoint(request: Request) -> Dict[str, object]:
    settings = request.app.state.settings
    uptime = int(time.monotonic() - getattr(request.app.state, "started_at", time.monotonic()))
    process = psutil.Process()
    return {
        "service": settings.service_name,
        "service_version": settings.service_version,
        "uptime_seconds": uptime,
        "memory_rss_bytes": process.memory_info().rss,
        "reconnect_strategy": settings.monitor.reconnect_strategy,
        "monitors": registry(request.app).device_ids(),
        "event_subscribers": broadcaster(request.app).subscriber_count,
    }
