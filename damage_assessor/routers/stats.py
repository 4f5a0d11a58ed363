"""Operational counters: cache effectiveness, latencies and effective config."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from .dependencies import api_rate_limit

router = APIRouter(prefix="/api", tags=["stats"])


@router.get("/stats", dependencies=[Depends(api_rate_limit)])
async def stats(request: Request) -> Dict[str, Any]:
    state = request.app.state
    cache_stats: Dict[str, Any] = dict(state.cache.stats())
    cache_stats["size"] = await state.cache.size()
    cache_stats["enabled"] = state.cache.enabled
    cache_stats["in_flight"] = state.batcher.in_flight()
    cache_stats["collapsed"] = state.batcher.collapsed
    return {
        "success": True,
        "cache": cache_stats,
        "performance": state.monitor.all(),
        "config": state.settings.public_view(),
    }


__all__ = ["router"]
