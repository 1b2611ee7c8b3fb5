"""Realtime subscription hub and listener fan-out.

Owns two pieces of state:

- one ``SubscriptionHandle`` per provider with an active push stream,
- the ordered set of data listeners.

Both the polling scheduler and realtime provider callbacks deliver through
``notify()``, so listeners observe one stream in registration order no
matter which path produced the sample.
"""

from __future__ import annotations

import itertools
import logging
from datetime import datetime
from typing import Awaitable, Callable

from src.health_data.base import (
    DataCallback,
    HealthDataProvider,
    Metric,
    Sample,
    SubscriptionHandle,
    has_valid_data,
    utc_now,
)
from src.health_data.errors import ErrorKind, HealthDataError, wrap_error

logger = logging.getLogger("healthsync.health_data.sync.subscriptions")

Unsubscribe = Callable[[], Awaitable[None]]


class SubscriptionHub:
    """Manage realtime subscriptions and deliver samples to listeners.

    Usage::

        hub = SubscriptionHub()
        unsubscribe = hub.add_listener(lambda metric, sample: ...)
        await hub.start_stream(provider, start_date)
        ...
        await unsubscribe()   # last listener gone → streams torn down
    """

    def __init__(self) -> None:
        self._handles: dict[str, SubscriptionHandle] = {}
        self._listeners: dict[int, DataCallback] = {}
        self._tokens = itertools.count()

    # ------------------------------------------------------------------
    # Realtime streams
    # ------------------------------------------------------------------

    async def start_stream(self, provider: HealthDataProvider, start_date: datetime) -> None:
        """Subscribe to ``provider``'s push stream from ``start_date`` to now.

        Any handle already stored for the provider is closed and replaced.

        Raises:
            HealthDataError: SUBSCRIPTION_ERROR (or the provider's typed error).
        """
        try:
            handle = await provider.on_data(self.notify, start_date, utc_now())
        except Exception as exc:
            raise wrap_error(
                exc,
                ErrorKind.SUBSCRIPTION_ERROR,
                f"Failed to initialize data stream for provider {provider.id}",
            ) from exc

        previous = self._handles.get(provider.id)
        self._handles[provider.id] = handle
        if previous is not None and previous is not handle:
            try:
                await previous.close()
            except Exception as exc:
                logger.warning(
                    "Closing replaced stream for %s failed: %s", provider.id, exc
                )
        logger.info("Realtime stream active for %s from %s", provider.id, start_date)

    async def stop_stream(self, provider_id: str) -> None:
        """Close and discard the provider's handle.  No-op if none is stored.

        The handle is discarded even when closing fails.

        Raises:
            HealthDataError: CLEANUP_ERROR (or the handle's typed error).
        """
        handle = self._handles.pop(provider_id, None)
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as exc:
            raise wrap_error(
                exc,
                ErrorKind.CLEANUP_ERROR,
                f"Failed to clean up provider {provider_id}",
            ) from exc
        logger.info("Realtime stream closed for %s", provider_id)

    async def close_all(self) -> None:
        """Close every stored handle and clear the map.

        Every handle is attempted; failures are aggregated into one error.

        Raises:
            HealthDataError: CLEANUP_ERROR listing every failed provider.
        """
        handles = list(self._handles.items())
        self._handles.clear()
        failures: dict[str, Exception] = {}
        for provider_id, handle in handles:
            try:
                await handle.close()
            except Exception as exc:
                logger.warning("Failed to close stream for %s: %s", provider_id, exc)
                failures[provider_id] = exc

        if failures:
            raise HealthDataError(
                ErrorKind.CLEANUP_ERROR,
                "Failed to cleanup provider subscriptions: "
                + ", ".join(sorted(failures)),
                cause=failures,
            )
        if handles:
            logger.info("Closed %d realtime stream(s)", len(handles))

    def has_stream(self, provider_id: str) -> bool:
        return provider_id in self._handles

    @property
    def active_streams(self) -> list[str]:
        return list(self._handles)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: DataCallback) -> Unsubscribe:
        """Register ``callback`` and return an async unsubscribe function.

        The callback is never invoked once ``unsubscribe()`` has started.
        When the last listener unsubscribes, every realtime stream is torn
        down since nobody is left to observe pushed data.
        """
        token = next(self._tokens)
        self._listeners[token] = callback

        async def unsubscribe() -> None:
            if self._listeners.pop(token, None) is None:
                return
            if not self._listeners:
                logger.debug("Last listener removed, tearing down realtime streams")
                await self.close_all()

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def notify(self, metric: Metric, sample: Sample) -> None:
        """Deliver ``sample`` to every listener, synchronously, in order.

        Empty samples are dropped.  A failing listener is logged and does
        not stop delivery to the rest.
        """
        if not has_valid_data(sample):
            logger.debug("Dropping empty %s sample", metric.value)
            return
        for token, callback in list(self._listeners.items()):
            if token not in self._listeners:
                continue
            try:
                callback(metric, sample)
            except Exception:
                logger.exception("Listener raised while handling %s sample", metric.value)
