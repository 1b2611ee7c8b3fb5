"""Health check endpoint — public, no auth required."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports how many providers are registered and enabled.
    """
    settings = get_settings()
    runtime = getattr(request.app.state, "health_data", None)
    registered = len(runtime.registry) if runtime else 0
    enabled = len(runtime.provider_state.enabled_ids()) if runtime else 0

    return {
        "status": "healthy" if runtime else "starting",
        "version": settings.app_version,
        "environment": settings.environment,
        "providers": {"registered": registered, "enabled": enabled},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
