"""Endpoints for provider lifecycle, syncing and the consolidated timeline."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Runtime
from src.health_data.base import HealthDataProvider, Metric
from src.health_data.errors import ErrorKind, HealthDataError
from src.models.health_data import (
    EnableRequest,
    HealthDataStateRead,
    ProviderRead,
    ProviderStateRead,
    SampleRead,
    SyncRequest,
)

router = APIRouter(prefix="/health-data", tags=["health-data"])
logger = logging.getLogger("healthsync.routers.health_data")


def _http_error(err: HealthDataError) -> HTTPException:
    if err.kind is ErrorKind.PROVIDER_NOT_FOUND:
        status = 404
    elif err.kind is ErrorKind.PRIORITY_ERROR:
        status = 500
    else:
        status = 502  # the provider, not the caller, failed
    return HTTPException(status_code=status, detail=err.to_dict())


def _provider_read(runtime: Runtime, provider: HealthDataProvider) -> ProviderRead:
    return ProviderRead.model_validate(
        {**provider.describe(), "enabled": runtime.registry.is_enabled(provider.id)}
    )


# ---------- Providers ----------

@router.get("/providers", response_model=list[ProviderRead])
async def list_providers(runtime: Runtime) -> Any:
    return [_provider_read(runtime, p) for p in runtime.provider_state.available_providers()]


@router.post("/providers/{provider_id}/enable", response_model=ProviderStateRead)
async def enable_provider(
    provider_id: str, runtime: Runtime, body: EnableRequest | None = None
) -> Any:
    store = runtime.provider_state
    start_date = body.start_date if body else None
    if not await store.toggle_provider(provider_id, True, start_date):
        raise _http_error(store.last_error)
    return store.state


@router.post("/providers/{provider_id}/disable", response_model=ProviderStateRead)
async def disable_provider(provider_id: str, runtime: Runtime) -> Any:
    store = runtime.provider_state
    if provider_id not in runtime.registry:
        raise _http_error(
            HealthDataError(
                ErrorKind.PROVIDER_NOT_FOUND, f"Provider {provider_id} not found"
            )
        )
    if not await store.toggle_provider(provider_id, False):
        raise _http_error(store.last_error)
    return store.state


# ---------- Sync / timeline ----------

@router.post("/sync", response_model=HealthDataStateRead)
async def sync(runtime: Runtime, body: SyncRequest | None = None) -> Any:
    body = body or SyncRequest()
    try:
        return await runtime.health_state.refresh_data(body.metrics, body.last_sync)
    except HealthDataError as err:
        logger.error("Sync failed: %s", err.message)
        raise _http_error(err) from err


@router.get("/timeline", response_model=HealthDataStateRead)
async def get_timeline(runtime: Runtime) -> Any:
    return runtime.health_state.state


@router.get("/timeline/{metric}", response_model=SampleRead)
async def get_metric_timeline(metric: Metric, runtime: Runtime) -> Any:
    sample = runtime.health_state.get(metric)
    if sample is None:
        raise HTTPException(status_code=404, detail=f"No {metric.value} data")
    return sample
