"""Provider registry — registration, enable/disable lifecycle, and lookup.

The registry is the single authority for which providers exist and for
sequencing their startup and teardown.  It owns the provider map; polling
loops and realtime handles are delegated to the PollingScheduler and the
SubscriptionHub it composes.

Which providers are *enabled* is persisted elsewhere.  The registry only
reads that set through the accessor given at construction and never writes
it; callers update it after a successful enable/disable.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable

from src.health_data.base import DataCallback, HealthDataProvider, Metric, utc_now
from src.health_data.config_loader import HealthDataConfig, get_health_data_config
from src.health_data.errors import ErrorKind, HealthDataError, wrap_error
from src.health_data.sync.scheduler import ErrorCallback, PollingScheduler
from src.health_data.sync.subscriptions import SubscriptionHub, Unsubscribe

logger = logging.getLogger("healthsync.health_data.registry")

EnabledIds = Callable[[], Iterable[str]]


class ProviderRegistry:
    """Registry of health data providers.

    Usage::

        registry = ProviderRegistry(enabled_ids=provider_state.enabled_ids)
        await registry.register(AppleHealthProvider())
        await registry.enable("apple-health", start_date)

        for provider in registry.providers_for_metric(Metric.SLEEP):
            ...
    """

    def __init__(
        self,
        enabled_ids: EnabledIds,
        config: HealthDataConfig | None = None,
        hub: SubscriptionHub | None = None,
        scheduler: PollingScheduler | None = None,
        on_poll_error: ErrorCallback | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            enabled_ids:   Read accessor for the externally persisted enabled-set.
            config:        Engine config (loaded from singleton if None).
            hub:           Subscription hub (a fresh one if None).
            scheduler:     Polling scheduler (a fresh one feeding ``hub`` if None).
            on_poll_error: Error channel for failed polling ticks.
        """
        self._enabled_ids = enabled_ids
        self._config = config or get_health_data_config()
        self._hub = hub or SubscriptionHub()
        self._scheduler = scheduler or PollingScheduler(
            on_sample=self._hub.notify,
            default_interval_ms=self._config.polling.default_interval_ms,
            on_error=on_poll_error,
        )
        self._providers: dict[str, HealthDataProvider] = {}
        self._lifecycle_lock = asyncio.Lock()

    @property
    def hub(self) -> SubscriptionHub:
        return self._hub

    @property
    def scheduler(self) -> PollingScheduler:
        return self._scheduler

    @property
    def config(self) -> HealthDataConfig:
        return self._config

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, provider: HealthDataProvider) -> bool:
        """Register ``provider`` if it is available on this host.

        Unavailable providers are skipped without error.  Realtime providers
        start streaming from now immediately when
        ``realtime.stream_on_register`` is set, whether or not they are
        enabled.

        Returns:
            True if the provider was registered.

        Raises:
            HealthDataError: DUPLICATE_PROVIDER, or SUBSCRIPTION_ERROR if the
                eager stream fails (the provider stays registered).
        """
        if not await provider.is_available():
            logger.info("Provider %s is not available, skipping", provider.id)
            return False

        if provider.id in self._providers:
            raise HealthDataError(
                ErrorKind.DUPLICATE_PROVIDER,
                f"Provider with id {provider.id} is already registered",
            )

        self._providers[provider.id] = provider
        logger.debug(
            "Registered provider %s (priority=%d)", provider.id, provider.PRIORITY
        )

        if provider.REALTIME.supported and self._config.realtime.stream_on_register:
            await self._hub.start_stream(provider, utc_now())
        return True

    def get(self, provider_id: str) -> HealthDataProvider | None:
        return self._providers.get(provider_id)

    def _require(self, provider_id: str) -> HealthDataProvider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise HealthDataError(
                ErrorKind.PROVIDER_NOT_FOUND, f"Provider {provider_id} not found"
            )
        return provider

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def enable(self, provider_id: str, query_start_date: datetime) -> None:
        """Initialize ``provider_id`` and start collecting from ``query_start_date``.

        Sequence: init → request permissions → (re)start realtime stream →
        start polling.

        Raises:
            HealthDataError: PROVIDER_NOT_FOUND, the provider's typed error,
                or PROVIDER_INIT_FAILED for anything untyped.
        """
        provider = self._require(provider_id)

        async with self._lifecycle_lock:
            try:
                await provider.init()
                await provider.request_permissions(self._config.metrics)

                if provider.REALTIME.supported:
                    await self._hub.start_stream(provider, query_start_date)

                if provider.POLLING.supported:
                    self._scheduler.start_polling(provider, query_start_date)
            except Exception as exc:
                raise wrap_error(
                    exc,
                    ErrorKind.PROVIDER_INIT_FAILED,
                    f"Failed to initialize provider {provider_id}",
                ) from exc

        logger.info("Enabled provider %s from %s", provider_id, query_start_date)

    async def disable(self, provider_id: str) -> None:
        """Tear down ``provider_id``'s collection.  Best effort.

        The realtime stream is closed first.  Polling teardown and the
        provider's ``clean_up()`` run even when closing the stream fails, in
        which case that failure is raised afterwards.

        Raises:
            HealthDataError: CLEANUP_ERROR (or a typed error from clean-up).
        """
        async with self._lifecycle_lock:
            try:
                await self._hub.stop_stream(provider_id)
            finally:
                self._scheduler.stop_polling(provider_id)
                provider = self._providers.get(provider_id)
                if provider is not None:
                    try:
                        await provider.clean_up()
                    except Exception as exc:
                        raise wrap_error(
                            exc,
                            ErrorKind.CLEANUP_ERROR,
                            f"Failed to clean up provider {provider_id}",
                        ) from exc

        logger.info("Disabled provider %s", provider_id)

    def start_polling_enabled_providers(self, start_date: datetime) -> None:
        """Start polling every registered provider in the enabled-set."""
        for provider_id in self._enabled_ids():
            provider = self._providers.get(provider_id)
            if provider is not None:
                self._scheduler.start_polling(provider, start_date)

    def subscribe(self, listener: DataCallback) -> Unsubscribe:
        """Register a data listener.  See ``SubscriptionHub.add_listener``."""
        return self._hub.add_listener(listener)

    async def shutdown(self) -> None:
        """Cancel every polling loop and close every realtime stream."""
        await self._scheduler.shutdown()
        await self._hub.close_all()
        logger.info("Provider registry shut down")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def providers_for_metric(self, metric: Metric) -> list[HealthDataProvider]:
        """Return enabled providers supporting ``metric``, highest priority first.

        Equal priorities keep registration order.
        """
        enabled = set(self._enabled_ids())
        return sorted(
            (
                p
                for p in self._providers.values()
                if p.supports(metric) and p.id in enabled
            ),
            key=lambda p: p.PRIORITY,
            reverse=True,
        )

    def all_providers(self) -> list[HealthDataProvider]:
        """Return every registered provider, enabled or not."""
        return list(self._providers.values())

    def priorities(self) -> dict[str, int]:
        """Return provider id → priority for every registered provider."""
        return {p.id: p.PRIORITY for p in self._providers.values()}

    def is_enabled(self, provider_id: str) -> bool:
        return provider_id in set(self._enabled_ids())

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers
