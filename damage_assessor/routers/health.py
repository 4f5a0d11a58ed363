"""Provider and cache probes aggregated under /health."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _app_version(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    return (
        os.getenv("APP_VERSION")
        or os.getenv("GIT_SHA")
        or (settings.version if settings is not None else None)
        or "dev"
    )


async def _provider_ok(request: Request) -> bool:
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        return False
    health_method = getattr(provider, "health", None)
    if not callable(health_method):
        return True
    try:
        return bool(await health_method())
    except Exception as exc:
        logger.warning("health.provider.failed error=%s", exc)
        return False


async def _cache_ok(request: Request) -> bool:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        return False
    try:
        await cache.size()
    except Exception as exc:
        logger.warning("health.cache.failed error=%s", exc)
        return False
    return True


@router.get("/health", name="health_root")
async def health_root(request: Request) -> Dict[str, Any]:
    statuses = {
        "provider": await _provider_ok(request),
        "cache": await _cache_ok(request),
    }
    return {
        "ok": all(statuses.values()),
        "services": list(statuses.keys()),
        "version": _app_version(request),
        "details": statuses,
    }


@router.get("/health/provider", name="health_provider")
async def health_provider(request: Request) -> Dict[str, bool]:
    return {"ok": await _provider_ok(request)}


__all__ = ["router"]
