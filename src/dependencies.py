"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings
from src.health_data.config_loader import (
    HealthDataConfig,
    get_health_data_config,
    load_health_data_config,
)
from src.health_data.consolidation import ConsolidationEngine
from src.health_data.registry import ProviderRegistry
from src.health_data.state import HealthStateStore, ProviderStateStore


@dataclass
class HealthDataRuntime:
    """Engine objects shared by every request for the life of the app."""

    config: HealthDataConfig
    provider_state: ProviderStateStore
    registry: ProviderRegistry
    engine: ConsolidationEngine
    health_state: HealthStateStore


def build_runtime(settings: Settings) -> HealthDataRuntime:
    """Wire the state stores, registry and engine together."""
    if settings.health_data_config_path:
        config = load_health_data_config(Path(settings.health_data_config_path))
    else:
        config = get_health_data_config()

    lookback = config.sync.default_lookback_days
    provider_state = ProviderStateStore(lookback_days=lookback)
    registry = ProviderRegistry(enabled_ids=provider_state.enabled_ids, config=config)
    provider_state.attach(registry)
    engine = ConsolidationEngine(registry)
    health_state = HealthStateStore(engine, lookback_days=lookback)
    return HealthDataRuntime(
        config=config,
        provider_state=provider_state,
        registry=registry,
        engine=engine,
        health_state=health_state,
    )


async def get_runtime(request: Request) -> HealthDataRuntime:
    """Return the runtime the lifespan stored on ``app.state``."""
    runtime: HealthDataRuntime | None = getattr(request.app.state, "health_data", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Health data engine not started")
    return runtime


# Annotated shortcut for route signatures
Runtime = Annotated[HealthDataRuntime, Depends(get_runtime)]
