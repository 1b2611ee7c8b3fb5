"""In-process state holders for provider toggles and consolidated health data.

``ProviderStateStore`` owns the enabled-set that the registry reads, and the
toggle workflow that keeps it in step with the registry: the set only changes
after an enable/disable succeeded, and a failure is recorded in ``error``
rather than raised.

``HealthStateStore`` owns the latest consolidated timeline: full refreshes
replace it, realtime samples are folded in with the same merge rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Sequence

from src.health_data.base import HealthDataProvider, Metric, Sample, default_start_date
from src.health_data.consolidation import ConsolidationEngine, HealthDataState
from src.health_data.errors import HealthDataError
from src.health_data.registry import ProviderRegistry
from src.health_data.sync.subscriptions import Unsubscribe

logger = logging.getLogger("healthsync.health_data.state")

AnchorFn = Callable[[], "datetime | None"]


@dataclass
class ProviderState:
    """Enabled providers and the last toggle error."""

    enabled_providers: list[str] = field(default_factory=list)
    error: str | None = None


class ProviderStateStore:
    """Holds the enabled-set and runs provider toggles against a registry.

    The registry is attached after construction because it needs
    ``enabled_ids`` as its accessor::

        store = ProviderStateStore(lookback_days=30)
        registry = ProviderRegistry(enabled_ids=store.enabled_ids)
        store.attach(registry)
        await store.toggle_provider("fitbit", enabled=True)
    """

    def __init__(
        self,
        lookback_days: int = 30,
        anchor: AnchorFn | None = None,
        initial: ProviderState | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            lookback_days: Default window length when no anchor is known.
            anchor:        Returns a preferred window start, or None.
            initial:       Previously persisted state to resume from.
        """
        self._state = initial or ProviderState()
        self._lookback_days = lookback_days
        self._anchor = anchor
        self._registry: ProviderRegistry | None = None
        self._last_error: HealthDataError | None = None

    def attach(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ProviderRegistry:
        if self._registry is None:
            raise RuntimeError("ProviderStateStore has no registry attached")
        return self._registry

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def last_error(self) -> HealthDataError | None:
        """The typed error behind ``state.error``, if any."""
        return self._last_error

    def enabled_ids(self) -> list[str]:
        return list(self._state.enabled_providers)

    def start_date(self) -> datetime:
        anchor = self._anchor() if self._anchor else None
        return default_start_date(self._lookback_days, anchor=anchor)

    async def toggle_provider(
        self, provider_id: str, enabled: bool, start_date: datetime | None = None
    ) -> bool:
        """Enable or disable ``provider_id`` and update the enabled-set.

        Returns:
            True on success.  On a HealthDataError the set is left unchanged,
            the message is stored in ``state.error`` and False is returned.
        """
        try:
            if enabled:
                await self.registry.enable(provider_id, start_date or self.start_date())
            else:
                await self.registry.disable(provider_id)
        except HealthDataError as err:
            logger.warning(
                "Toggling %s to %s failed: %s", provider_id, enabled, err.message
            )
            self._last_error = err
            self._state = replace(self._state, error=err.message)
            return False

        enabled_providers = [p for p in self._state.enabled_providers if p != provider_id]
        if enabled:
            enabled_providers.append(provider_id)
        self._last_error = None
        self._state = ProviderState(enabled_providers=enabled_providers, error=None)
        return True

    def start_polling(self) -> None:
        """Start polling every enabled provider from the default start date."""
        self.registry.start_polling_enabled_providers(self.start_date())

    def available_providers(self) -> list[HealthDataProvider]:
        """Every registered provider (registration already filters availability)."""
        return self.registry.all_providers()


class HealthStateStore:
    """Holds the consolidated timeline and keeps it current.

    Usage::

        store = HealthStateStore(engine, lookback_days=30)
        await store.refresh_data()
        unsubscribe = store.subscribe_to_health_updates()
    """

    def __init__(
        self,
        engine: ConsolidationEngine,
        metrics: Sequence[Metric] | None = None,
        lookback_days: int = 30,
        anchor: AnchorFn | None = None,
    ) -> None:
        self._engine = engine
        self._metrics = tuple(metrics) if metrics else engine.registry.config.metrics
        self._lookback_days = lookback_days
        self._anchor = anchor
        self._state = HealthDataState()

    @property
    def state(self) -> HealthDataState:
        return self._state

    def get(self, metric: Metric) -> Sample | None:
        return self._state.health_data.get(metric)

    async def refresh_data(
        self,
        metrics: Sequence[Metric] | None = None,
        last_sync: datetime | None = None,
    ) -> HealthDataState:
        """Re-consolidate and replace the stored timeline.

        Args:
            metrics:   Metrics to sync; the tracked metrics if omitted.
            last_sync: Window start; the default start date if omitted.
        """
        self._state = replace(self._state, is_loading=True)
        if last_sync is None:
            anchor = self._anchor() if self._anchor else None
            last_sync = default_start_date(self._lookback_days, anchor=anchor)
        try:
            self._state = await self._engine.sync_health_data(
                tuple(metrics) if metrics else self._metrics, last_sync
            )
        except HealthDataError as err:
            self._state = replace(self._state, is_loading=False, error=err.message)
            raise
        return self._state

    def apply_sample(self, metric: Metric, sample: Sample) -> None:
        """Fold a pushed sample into the stored timeline for ``metric``."""
        existing = self._state.health_data.get(metric)
        merged = self._engine.merge_incoming(existing, sample)
        health_data = {**self._state.health_data, metric: merged}
        self._state = replace(self._state, health_data=health_data)

    def subscribe_to_health_updates(self) -> Unsubscribe:
        """Start folding every sample from providers into the state."""
        return self._engine.subscribe_to_health_updates(self.apply_sample)

    def delete_health_data(self) -> None:
        self._state = HealthDataState()
