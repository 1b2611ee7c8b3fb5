"""Shared fixtures and fake providers for health data engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest

from src.health_data.base import (
    CallbackSubscription,
    DataCallback,
    HealthDataProvider,
    IllnessDataPoint,
    IllnessType,
    Metric,
    PollingConfig,
    RealtimeConfig,
    Sample,
    Severity,
    SleepDataPoint,
    StressDataPoint,
    SubscriptionHandle,
)
from src.health_data.config_loader import (
    HealthDataConfig,
    PollingSettings,
    load_health_data_config,
)
from src.health_data.registry import ProviderRegistry
from src.health_data.state import ProviderStateStore

# Canonical test night
T0 = datetime(2026, 2, 23, 0, 0, tzinfo=timezone.utc)


def at(hours: float) -> datetime:
    """Return T0 shifted by ``hours``."""
    return T0 + timedelta(hours=hours)


def sleep_point(start: float, end: float, source: str = "") -> SleepDataPoint:
    return SleepDataPoint(start=at(start), end=at(end), source=source)


def illness_point(
    start: float, end: float, severity: Severity, source: str = ""
) -> IllnessDataPoint:
    return IllnessDataPoint(
        start=at(start),
        end=at(end),
        source=source,
        illness_type=IllnessType.FEVER,
        severity=severity,
    )


def stress_point(start: float, end: float, source: str = "") -> StressDataPoint:
    return StressDataPoint(start=at(start), end=at(end), source=source)


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider(HealthDataProvider):
    """In-memory provider with per-instance descriptor and call recording.

    ``data`` maps metric → points returned by ``get_data``.  Set ``fail`` to
    an exception to make every ``get_data`` call raise it.
    """

    def __init__(
        self,
        provider_id: str,
        priority: int = 0,
        metrics: Sequence[Metric] = (Metric.SLEEP,),
        polling: PollingConfig = PollingConfig(),
        realtime: RealtimeConfig = RealtimeConfig(),
        available: bool = True,
    ) -> None:
        self.PROVIDER_ID = provider_id
        self.DISPLAY_NAME = provider_id.title()
        self.PRIORITY = priority
        self.SUPPORTED_METRICS = tuple(metrics)
        self.POLLING = polling
        self.REALTIME = realtime
        self.available = available
        self.data: dict[Metric, list] = {}
        self.fail: Exception | None = None
        self.init_error: Exception | None = None
        self.cleanup_error: Exception | None = None
        self.calls: list[str] = []
        self.fetches: list[tuple[Metric, datetime, datetime]] = []
        self.permissions: list[Metric] = []
        self.callback: DataCallback | None = None
        self.handles: list[CallbackSubscription] = []

    async def is_available(self) -> bool:
        return self.available

    async def init(self) -> None:
        self.calls.append("init")
        if self.init_error is not None:
            raise self.init_error

    async def request_permissions(self, metrics: Sequence[Metric]) -> None:
        self.calls.append("request_permissions")
        self.permissions = list(metrics)

    async def get_data(self, metric: Metric, start: datetime, end: datetime) -> Sample:
        self.fetches.append((metric, start, end))
        if self.fail is not None:
            raise self.fail
        return Sample(points=list(self.data.get(metric, [])))

    async def on_data(
        self, callback: DataCallback, start: datetime, end: datetime
    ) -> SubscriptionHandle:
        self.calls.append("on_data")
        self.callback = callback
        handle = CallbackSubscription(lambda: self.calls.append("unsubscribe"))
        self.handles.append(handle)
        return handle

    async def clean_up(self) -> None:
        self.calls.append("clean_up")
        if self.cleanup_error is not None:
            raise self.cleanup_error

    def push(self, metric: Metric, *points) -> None:
        """Simulate a realtime delivery."""
        assert self.callback is not None, "no active stream"
        self.callback(metric, Sample(points=list(points)))


# ---------------------------------------------------------------------------
# Config / registry fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def health_data_config() -> HealthDataConfig:
    """Load the real bundled config for tests."""
    return load_health_data_config()


@pytest.fixture
def fast_config() -> HealthDataConfig:
    """Config with a tiny polling floor so loops tick quickly."""
    return HealthDataConfig(polling=PollingSettings(default_interval_seconds=0.01))


@pytest.fixture
def enabled() -> set[str]:
    """Mutable enabled-set read by the registry fixture."""
    return set()


@pytest.fixture
def registry(enabled: set[str], fast_config: HealthDataConfig) -> ProviderRegistry:
    return ProviderRegistry(enabled_ids=lambda: enabled, config=fast_config)


@pytest.fixture
def provider_store(fast_config: HealthDataConfig) -> ProviderStateStore:
    store = ProviderStateStore(lookback_days=fast_config.sync.default_lookback_days)
    store.attach(ProviderRegistry(enabled_ids=store.enabled_ids, config=fast_config))
    return store
