"""Consolidation engine — merge multi-provider observations into one timeline.

For each metric, gathers raw data points from every enabled provider,
tags each with its provider id, and resolves overlaps by provider priority
into a single ordered, mutually non-overlapping sequence.

The same merge runs for bulk syncs (``consolidate``) and for incremental
realtime updates (``merge_incoming``), so a timeline built from pushed data
is identical to one built by a full re-sync of the same points.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Mapping, Sequence

from src.health_data.base import (
    DataCallback,
    DataPoint,
    HealthDataProvider,
    Metric,
    Sample,
    SampleKind,
    check_points,
    default_start_date,
    has_valid_data,
    utc_now,
)
from src.health_data.errors import ErrorKind, HealthDataError, wrap_error
from src.health_data.registry import ProviderRegistry
from src.health_data.sync.subscriptions import Unsubscribe

logger = logging.getLogger("healthsync.health_data.consolidation")

HealthData = dict[Metric, Sample]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class ConsolidationResult:
    """Outcome of a multi-metric consolidation.

    Failures are isolated per metric: a metric whose fetch failed appears in
    ``errors`` and is absent from ``data``; the others still consolidate.

    Attributes:
        data:   Metric → canonical Sample (metrics with no points omitted).
        errors: Metric → error that aborted that metric.
    """

    data: HealthData = field(default_factory=dict)
    errors: dict[Metric, HealthDataError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> HealthDataError | None:
        return next(iter(self.errors.values()), None)


@dataclass
class HealthDataState:
    """Snapshot handed to callers after a sync.

    Attributes:
        health_data: Metric → canonical Sample.
        is_loading:  True while a refresh is running.
        error:       Message of the first failure, if any.
        last_sync:   End of the last fully successful sync window.
    """

    health_data: HealthData = field(default_factory=dict)
    is_loading: bool = False
    error: str | None = None
    last_sync: datetime | None = None


# ---------------------------------------------------------------------------
# Overlap merge
# ---------------------------------------------------------------------------


def merge_data_points(
    points: Iterable[DataPoint], priorities: Mapping[str, int]
) -> list[DataPoint]:
    """Resolve overlapping points into a non-overlapping sequence.

    Algorithm:
    1. Stable-sort by start time, so exact ties keep collection order.
    2. For each point, find the first already-merged point it overlaps
       (inclusive bounds: touching endpoints overlap).
    3. No overlap: append.  Overlap: the incoming point replaces the merged
       one in place only if its source priority is strictly greater; ties
       keep the point that was merged first.

    O(n·m) for n points and m merged points; per-sync counts are small.

    Args:
        points:     Data points for a single metric, each with a source.
        priorities: Provider id → priority.

    Returns:
        Merged points, ordered by the position each slot was first filled.

    Raises:
        HealthDataError: PRIORITY_ERROR if an overlapping point's source has
            no priority.  Fatal; nothing further is merged.
    """
    merged: list[DataPoint] = []

    for point in sorted(points, key=lambda p: p.start):
        index = next(
            (i for i, existing in enumerate(merged) if point.overlaps(existing)),
            None,
        )
        if index is None:
            merged.append(point)
            continue

        existing = merged[index]
        current_priority = priorities.get(point.source)
        existing_priority = priorities.get(existing.source)
        if current_priority is None or existing_priority is None:
            missing = point.source if current_priority is None else existing.source
            raise HealthDataError(
                ErrorKind.PRIORITY_ERROR,
                f"Provider priority not found for {missing!r}",
                cause={"provider_id": missing, "priorities": dict(priorities)},
            )

        if current_priority > existing_priority:
            merged[index] = point

    return merged


def tag_source(points: Iterable[DataPoint], provider_id: str) -> list[DataPoint]:
    """Return copies of ``points`` attributed to ``provider_id``."""
    return [
        p if p.source == provider_id else replace(p, source=provider_id)
        for p in points
    ]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ConsolidationEngine:
    """Consolidate provider data for bulk syncs and realtime updates.

    Usage::

        engine = ConsolidationEngine(registry)
        result = await engine.consolidate([Metric.SLEEP], start, end)
        sleep = result.data.get(Metric.SLEEP)

        merged = engine.merge_incoming(existing_sample, pushed_sample)
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def subscribe_to_health_updates(self, listener: DataCallback) -> Unsubscribe:
        """Register ``listener`` for samples from polling and realtime paths."""
        return self._registry.subscribe(listener)

    async def consolidate(
        self, metrics: Sequence[Metric], start_date: datetime, end_date: datetime
    ) -> ConsolidationResult:
        """Build one canonical Sample per metric from all enabled providers.

        Provider fetches for a metric run concurrently; merging starts only
        once every fetch for that metric has finished.

        Raises:
            HealthDataError: PRIORITY_ERROR, re-raised immediately.
        """
        result = ConsolidationResult()

        for metric in metrics:
            try:
                sample = await self.consolidate_metric(metric, start_date, end_date)
            except HealthDataError as err:
                if err.kind is ErrorKind.PRIORITY_ERROR:
                    raise
                logger.warning(
                    "Consolidation of %s failed: %s (%s)",
                    metric.value,
                    err.message,
                    err.kind.value,
                )
                result.errors[metric] = err
                continue

            if sample is not None:
                result.data[metric] = sample

        logger.info(
            "Consolidated %d/%d metric(s) for %s → %s, %d error(s)",
            len(result.data),
            len(metrics),
            start_date,
            end_date,
            len(result.errors),
        )
        return result

    async def consolidate_metric(
        self, metric: Metric, start_date: datetime, end_date: datetime
    ) -> Sample | None:
        """Consolidate a single metric.

        Returns:
            The canonical Sample, or None if no provider returned points.

        Raises:
            HealthDataError: DATA_FETCH_ERROR for untyped fetch failures, a
                provider's typed error unchanged, or PRIORITY_ERROR.
        """
        providers = self._registry.providers_for_metric(metric)
        if not providers:
            return None

        fetched = await asyncio.gather(
            *(self._fetch(p, metric, start_date, end_date) for p in providers),
            return_exceptions=True,
        )

        all_points: list[DataPoint] = []
        for provider, outcome in zip(providers, fetched):
            if isinstance(outcome, BaseException):
                raise outcome
            all_points.extend(outcome)

        priorities = {p.id: p.PRIORITY for p in providers}
        merged = merge_data_points(all_points, priorities)
        if not merged:
            return None

        logger.debug(
            "Merged %d %s point(s) from %d provider(s) into %d",
            len(all_points),
            metric.value,
            len(providers),
            len(merged),
        )
        return Sample(points=merged, kind=SampleKind.CATEGORY, timestamp=utc_now())

    async def _fetch(
        self,
        provider: HealthDataProvider,
        metric: Metric,
        start_date: datetime,
        end_date: datetime,
    ) -> list[DataPoint]:
        try:
            sample = await provider.get_data(metric, start_date, end_date)
        except Exception as exc:
            raise wrap_error(
                exc,
                ErrorKind.DATA_FETCH_ERROR,
                f"Failed to fetch {metric.value} data from provider {provider.id}",
            ) from exc

        if not has_valid_data(sample):
            return []
        check_points(metric, sample)
        return tag_source(sample.points, provider.id)

    def merge_incoming(self, existing: Sample | None, incoming: Sample) -> Sample:
        """Fold ``incoming`` into ``existing`` with the bulk merge rules.

        Priorities come from every registered provider.

        Raises:
            HealthDataError: PRIORITY_ERROR.
        """
        if existing is None:
            return incoming

        merged = merge_data_points(
            [*existing.points, *incoming.points], self._registry.priorities()
        )
        return Sample(points=merged, kind=incoming.kind, timestamp=utc_now())

    async def sync_health_data(
        self, metrics: Sequence[Metric], last_sync: datetime | None
    ) -> HealthDataState:
        """Consolidate ``[last_sync, now)`` and wrap the outcome as a state.

        On full success ``last_sync`` advances to now.  If any metric failed,
        ``error`` carries the first failure message, ``health_data`` holds the
        metrics that succeeded and ``last_sync`` is left unchanged so the
        window is retried.

        Raises:
            HealthDataError: PRIORITY_ERROR.
        """
        now = utc_now()
        start = last_sync or default_start_date(
            self._registry.config.sync.default_lookback_days, now=now
        )
        result = await self.consolidate(metrics, start, now)

        if result.ok:
            return HealthDataState(health_data=result.data, last_sync=now)

        return HealthDataState(
            health_data=result.data,
            error=result.first_error.message,
            last_sync=last_sync,
        )
