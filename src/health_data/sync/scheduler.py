"""Periodic pull-based collection per (provider, metric).

Each active pair owns one asyncio task that fires an immediate tick and then
one tick per interval:

1. Fetch ``[start_date, now)`` from the provider
2. Drop empty samples
3. Hand valid samples to the subscription hub for fan-out

A failing tick is logged and reported but never stops the loop, so polling
heals across transient provider failures.  Tasks are keyed by ``PollKey``
and the key is removed in the same call that cancels its task.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, NamedTuple

from src.health_data.base import (
    DataCallback,
    HealthDataProvider,
    Metric,
    Sample,
    has_valid_data,
    utc_now,
)
from src.health_data.errors import ErrorKind, HealthDataError, wrap_error

logger = logging.getLogger("healthsync.health_data.sync.scheduler")

ErrorCallback = Callable[[HealthDataError], None]

# Global polling floor (milliseconds) when no config is supplied.
DEFAULT_POLLING_INTERVAL_MS = 60_000


class PollKey(NamedTuple):
    """Identity of one polling loop."""

    provider_id: str
    metric: Metric


def _discard_result(fetch: asyncio.Future) -> None:
    """Consume the outcome of a fetch whose tick was cancelled."""
    if fetch.cancelled():
        return
    exc = fetch.exception()
    if exc is not None:
        logger.debug("Discarded failed in-flight fetch after cancellation: %s", exc)
    else:
        logger.debug("Discarded in-flight fetch result after cancellation")


class PollingScheduler:
    """Schedule and run polling loops for enabled providers.

    Usage::

        scheduler = PollingScheduler(on_sample=hub.notify)
        scheduler.start_polling(provider, start_date)
        ...
        scheduler.stop_polling(provider.id)
    """

    def __init__(
        self,
        on_sample: DataCallback,
        default_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            on_sample:           Called with (metric, sample) for each valid tick.
            default_interval_ms: Global polling floor.
            on_error:            Called with the typed error of each failed tick.
        """
        self._on_sample = on_sample
        self._default_interval_ms = default_interval_ms
        self._on_error = on_error
        self._tasks: dict[PollKey, asyncio.Task] = {}

    def interval_for(self, provider: HealthDataProvider) -> float:
        """Return the polling interval in seconds for ``provider``."""
        interval_ms = max(self._default_interval_ms, provider.POLLING.min_interval_ms)
        return interval_ms / 1000.0

    def start_polling(self, provider: HealthDataProvider, start_date: datetime) -> None:
        """Start one polling loop per supported metric.

        Restarting is idempotent: existing loops for the provider are
        cancelled first.  Must be called with a running event loop.
        """
        if not provider.POLLING.supported:
            return

        self.stop_polling(provider.id)
        interval = self.interval_for(provider)

        for metric in provider.supported_metrics():
            key = PollKey(provider.id, metric)
            self._tasks[key] = asyncio.create_task(
                self._poll_loop(key, provider, start_date, interval),
                name=f"poll:{provider.id}:{metric.value}",
            )

        logger.info(
            "Polling %s for %d metric(s) every %.1fs from %s",
            provider.id,
            len(provider.SUPPORTED_METRICS),
            interval,
            start_date,
        )

    def stop_polling(self, provider_id: str) -> None:
        """Cancel and remove every loop for ``provider_id``.  Idempotent."""
        keys = [key for key in self._tasks if key.provider_id == provider_id]
        for key in keys:
            self._tasks.pop(key).cancel()
        if keys:
            logger.info("Stopped %d polling loop(s) for %s", len(keys), provider_id)

    def stop_all(self) -> None:
        """Cancel every loop."""
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()

    async def shutdown(self) -> None:
        """Cancel every loop and wait for the tasks to finish unwinding."""
        tasks = list(self._tasks.values())
        self.stop_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def is_polling(self, provider_id: str, metric: Metric | None = None) -> bool:
        if metric is not None:
            return PollKey(provider_id, metric) in self._tasks
        return any(key.provider_id == provider_id for key in self._tasks)

    @property
    def active_keys(self) -> list[PollKey]:
        return list(self._tasks)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def poll_once(
        self, provider: HealthDataProvider, metric: Metric, start_date: datetime
    ) -> Sample:
        """Fetch ``[start_date, now)`` once.

        The fetch is shielded: if the calling task is cancelled mid-flight
        the fetch still completes and its outcome is discarded.

        Raises:
            HealthDataError: POLLING_ERROR (or the provider's typed error).
        """
        fetch = asyncio.ensure_future(provider.get_data(metric, start_date, utc_now()))
        try:
            return await asyncio.shield(fetch)
        except asyncio.CancelledError:
            fetch.add_done_callback(_discard_result)
            raise
        except Exception as exc:
            raise wrap_error(
                exc,
                ErrorKind.POLLING_ERROR,
                f"Failed to poll {metric.value} data for provider {provider.id}",
            ) from exc

    async def _poll_loop(
        self,
        key: PollKey,
        provider: HealthDataProvider,
        start_date: datetime,
        interval: float,
    ) -> None:
        while True:
            await self._tick(key, provider, start_date)
            await asyncio.sleep(interval)

    async def _tick(
        self, key: PollKey, provider: HealthDataProvider, start_date: datetime
    ) -> None:
        try:
            sample = await self.poll_once(provider, key.metric, start_date)
        except HealthDataError as err:
            self._report(key, err)
            return

        if self._tasks.get(key) is not asyncio.current_task():
            # Stopped or restarted while the fetch was in flight.
            logger.debug(
                "Dropping stale poll result for %s/%s", key.provider_id, key.metric.value
            )
            return

        if has_valid_data(sample):
            self._on_sample(key.metric, sample)

    def _report(self, key: PollKey, err: HealthDataError) -> None:
        logger.warning(
            "Poll failed for %s/%s: %s (%s)",
            key.provider_id,
            key.metric.value,
            err.message,
            err.kind.value,
        )
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception:
            logger.exception("Polling error callback raised for %s", key.provider_id)
