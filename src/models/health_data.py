"""Pydantic models for providers, consolidated samples and sync state."""

from __future__ import annotations

from datetime import datetime

from pydantic import AwareDatetime, Field

from src.health_data.base import IllnessType, Metric, SampleKind, SleepStageType
from src.models.base import HealthSyncBase


# ---------- Providers ----------

class PollingRead(HealthSyncBase):
    supported: bool
    min_interval_ms: int = Field(ge=0)


class RealtimeRead(HealthSyncBase):
    supported: bool


class ProviderRead(HealthSyncBase):
    id: str
    name: str
    priority: int
    supported_metrics: list[Metric]
    polling: PollingRead
    realtime: RealtimeRead
    enabled: bool = False


class EnableRequest(HealthSyncBase):
    start_date: AwareDatetime | None = None  # default collection window if omitted


class ProviderStateRead(HealthSyncBase):
    enabled_providers: list[str] = Field(default_factory=list)
    error: str | None = None


# ---------- Samples ----------

class SleepStageRead(HealthSyncBase):
    type: SleepStageType
    start: datetime
    end: datetime


class DataPointRead(HealthSyncBase):
    """One consolidated point.  Metric-specific fields are None when absent."""

    start: datetime
    end: datetime
    source: str
    stages: list[SleepStageRead] | None = None
    illness_type: IllnessType | None = None
    severity: int | None = Field(default=None, ge=0, le=4)


class SampleRead(HealthSyncBase):
    points: list[DataPointRead]
    kind: SampleKind
    timestamp: datetime


# ---------- Sync ----------

class SyncRequest(HealthSyncBase):
    metrics: list[Metric] | None = Field(default=None, min_length=1)
    last_sync: AwareDatetime | None = None


class HealthDataStateRead(HealthSyncBase):
    health_data: dict[Metric, SampleRead] = Field(default_factory=dict)
    is_loading: bool = False
    error: str | None = None
    last_sync: datetime | None = None
