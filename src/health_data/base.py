"""Base classes and canonical data models for the health data engine.

Every provider adapter must subclass HealthDataProvider and return the
canonical Sample / DataPoint models.  These types are the single source of
truth consumed by the registry, the polling scheduler, the subscription hub
and the consolidation engine.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable, ClassVar, Sequence, Union

from src.health_data.errors import ErrorKind, HealthDataError

logger = logging.getLogger("healthsync.health_data")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_start_date(
    lookback_days: int, anchor: datetime | None = None, now: datetime | None = None
) -> datetime:
    """Return the start of the default collection window.

    Callers that know a meaningful anchor (e.g. the start of the previous
    menstrual cycle) pass it; otherwise the window reaches back
    ``lookback_days`` from now.
    """
    if anchor is not None:
        return anchor
    return (now or utc_now()) - timedelta(days=lookback_days)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Metric(str, Enum):
    """Tracked health dimensions."""

    SLEEP = "sleep"
    ILLNESS = "illness"
    STRESS = "stress"


#: Every metric, in canonical order.
HEALTH_METRICS: tuple[Metric, ...] = tuple(Metric)


class Severity(IntEnum):
    """Ordinal severity for illness and stress episodes (0–4)."""

    NONE = 0
    MILD = 1
    MODERATE = 2
    SEVERE = 3
    VERY_SEVERE = 4


class SleepStageType(str, Enum):
    AWAKE = "awake"
    CORE = "core"
    DEEP = "deep"
    REM = "rem"
    UNSPECIFIED = "unspecified"
    IN_BED = "in_bed"


class IllnessType(str, Enum):
    COUGH = "cough"
    DIARRHEA = "diarrhea"
    HEADACHE = "headache"
    FATIGUE = "fatigue"
    FEVER = "fever"
    CHILLS = "chills"


class SampleKind(str, Enum):
    QUANTITY = "quantity"
    CATEGORY = "category"


# ---------------------------------------------------------------------------
# Canonical data points
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SleepStage:
    """One stage inside a sleep session."""

    type: SleepStageType
    start: datetime
    end: datetime


@dataclass(frozen=True)
class DataPoint:
    """One observed, interval-bound event attributed to a source.

    Attributes:
        start:  Timezone-aware start of the interval.
        end:    Timezone-aware end of the interval.
        source: Provider id the observation is attributed to.
    """

    start: datetime
    end: datetime
    source: str

    def overlaps(self, other: DataPoint) -> bool:
        """Inclusive interval overlap; touching endpoints count as overlap."""
        return self.start <= other.end and self.end >= other.start


@dataclass(frozen=True)
class SleepDataPoint(DataPoint):
    """A complete sleep session with its ordered stages."""

    stages: tuple[SleepStage, ...] = ()


@dataclass(frozen=True)
class IllnessDataPoint(DataPoint):
    """A single illness symptom episode."""

    illness_type: IllnessType = IllnessType.FEVER
    severity: Severity = Severity.NONE


@dataclass(frozen=True)
class StressDataPoint(DataPoint):
    """A single stress episode."""

    severity: Severity = Severity.NONE


#: Point class expected for each metric.
POINT_TYPES: dict[Metric, type[DataPoint]] = {
    Metric.SLEEP: SleepDataPoint,
    Metric.ILLNESS: IllnessDataPoint,
    Metric.STRESS: StressDataPoint,
}


@dataclass
class Sample:
    """A timestamped collection of data points for one metric.

    A Sample with no points is invalid and is never stored or forwarded.

    Attributes:
        points:    Ordered data points.
        kind:      'quantity' or 'category'.
        timestamp: When the sample was computed.
    """

    points: list[DataPoint] = field(default_factory=list)
    kind: SampleKind = SampleKind.CATEGORY
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_valid(self) -> bool:
        return bool(self.points)


def has_valid_data(sample: Sample | None) -> bool:
    """Return True if ``sample`` exists and carries at least one point."""
    return sample is not None and sample.is_valid


def check_points(metric: Metric, sample: Sample) -> None:
    """Raise INVALID_METRIC if any point in ``sample`` is not a ``metric`` point."""
    expected = POINT_TYPES[metric]
    for point in sample.points:
        if not isinstance(point, expected):
            raise HealthDataError(
                ErrorKind.INVALID_METRIC,
                f"{type(point).__name__} is not a {metric.value} data point",
            )


# ---------------------------------------------------------------------------
# Provider descriptor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PollingConfig:
    """Pull-based collection capability.

    Attributes:
        supported:       Whether the provider can be polled.
        min_interval_ms: Lowest polling interval the provider tolerates.
    """

    supported: bool = False
    min_interval_ms: int = 0


@dataclass(frozen=True)
class RealtimeConfig:
    """Push-based collection capability."""

    supported: bool = False


# ---------------------------------------------------------------------------
# Subscription handles
# ---------------------------------------------------------------------------


DataCallback = Callable[[Metric, Sample], None]
CleanupFn = Callable[[], Union[None, Awaitable[None]]]


class SubscriptionHandle(ABC):
    """An active realtime subscription.  Closing it stops the push stream."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the subscription down."""


class CallbackSubscription(SubscriptionHandle):
    """Adapts a plain cleanup callable (sync or async) to SubscriptionHandle.

    ``close()`` runs the callable at most once.
    """

    def __init__(self, cleanup: CleanupFn) -> None:
        self._cleanup = cleanup
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        result = self._cleanup()
        if inspect.isawaitable(result):
            await result


# ---------------------------------------------------------------------------
# Abstract base provider
# ---------------------------------------------------------------------------


class HealthDataProvider(ABC):
    """Abstract base class for all health data providers.

    Each vendor adapter implements this interface to provide a uniform surface
    for the registry, scheduler and consolidation engine.  Vendor-specific
    identifiers and wire formats stay inside the adapter.

    Subclasses must implement:
        - is_available()
        - init()
        - request_permissions()
        - get_data()

    Optional overrides:
        - on_data()   (required when REALTIME.supported is True)
        - clean_up()
    """

    #: Unique, stable provider id (e.g. 'apple-health').
    PROVIDER_ID: ClassVar[str] = "unknown"

    #: Human-readable name for logging and UI.
    DISPLAY_NAME: ClassVar[str] = "Unknown Provider"

    #: Conflict-resolution rank. Higher wins.
    PRIORITY: ClassVar[int] = 0

    SUPPORTED_METRICS: ClassVar[tuple[Metric, ...]] = ()
    POLLING: ClassVar[PollingConfig] = PollingConfig()
    REALTIME: ClassVar[RealtimeConfig] = RealtimeConfig()

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True if the provider can run on this host."""

    @abstractmethod
    async def init(self) -> None:
        """Prepare the provider (OAuth, SDK init).  Idempotent.

        Raises:
            HealthDataError: PROVIDER_UNAVAILABLE or PROVIDER_INIT_FAILED.
        """

    @abstractmethod
    async def request_permissions(self, metrics: Sequence[Metric]) -> None:
        """Request read access for ``metrics``.  Idempotent.

        Raises:
            HealthDataError: PERMISSION_DENIED or INVALID_METRIC.
        """

    @abstractmethod
    async def get_data(self, metric: Metric, start: datetime, end: datetime) -> Sample:
        """Fetch canonical data for ``metric`` within ``[start, end)``.

        Raises:
            HealthDataError: DATA_FETCH_ERROR or INVALID_METRIC.
        """

    async def on_data(
        self, callback: DataCallback, start: datetime, end: datetime
    ) -> SubscriptionHandle:
        """Subscribe to pushed updates.

        Default raises SUBSCRIPTION_ERROR; override when REALTIME.supported.
        """
        raise HealthDataError(
            ErrorKind.SUBSCRIPTION_ERROR,
            f"Provider {self.PROVIDER_ID} does not support realtime updates",
        )

    async def clean_up(self) -> None:
        """Release provider resources.  Override if needed."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self.PROVIDER_ID

    def supported_metrics(self) -> list[Metric]:
        return list(self.SUPPORTED_METRICS)

    def supports(self, metric: Metric) -> bool:
        return metric in self.SUPPORTED_METRICS

    def describe(self) -> dict[str, Any]:
        """Return the static descriptor as a plain dict."""
        return {
            "id": self.PROVIDER_ID,
            "name": self.DISPLAY_NAME,
            "priority": self.PRIORITY,
            "supported_metrics": [m.value for m in self.SUPPORTED_METRICS],
            "polling": {
                "supported": self.POLLING.supported,
                "min_interval_ms": self.POLLING.min_interval_ms,
            },
            "realtime": {"supported": self.REALTIME.supported},
        }
