"""Tests for provider registration, lifecycle sequencing and lookup."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.health_data.base import Metric, PollingConfig, RealtimeConfig
from src.health_data.config_loader import HealthDataConfig, RealtimeSettings
from src.health_data.errors import ErrorKind, HealthDataError
from src.health_data.registry import ProviderRegistry
from src.health_data.tests.conftest import T0, FakeProvider


class TestRegistration:
    """Tests for register()."""

    @pytest.mark.asyncio
    async def test_register_available_provider(self, registry: ProviderRegistry) -> None:
        provider = FakeProvider("fitbit")

        assert await registry.register(provider) is True
        assert "fitbit" in registry
        assert registry.get("fitbit") is provider

    @pytest.mark.asyncio
    async def test_unavailable_provider_is_skipped(self, registry: ProviderRegistry) -> None:
        assert await registry.register(FakeProvider("fitbit", available=False)) is False
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, registry: ProviderRegistry) -> None:
        await registry.register(FakeProvider("fitbit"))

        with pytest.raises(HealthDataError) as exc_info:
            await registry.register(FakeProvider("fitbit"))

        assert exc_info.value.kind is ErrorKind.DUPLICATE_PROVIDER
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_realtime_provider_streams_on_register(
        self, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider("apple-health", realtime=RealtimeConfig(supported=True))

        await registry.register(provider)

        assert registry.hub.has_stream("apple-health")
        assert provider.calls == ["on_data"]

    @pytest.mark.asyncio
    async def test_stream_on_register_can_be_disabled(self) -> None:
        config = HealthDataConfig(realtime=RealtimeSettings(stream_on_register=False))
        registry = ProviderRegistry(enabled_ids=lambda: (), config=config)
        provider = FakeProvider("apple-health", realtime=RealtimeConfig(supported=True))

        await registry.register(provider)

        assert not registry.hub.has_stream("apple-health")
        assert provider.calls == []


class TestEnable:
    """Tests for enable() sequencing and error wrapping."""

    @pytest.mark.asyncio
    async def test_unknown_provider_not_found(self, registry: ProviderRegistry) -> None:
        with pytest.raises(HealthDataError) as exc_info:
            await registry.enable("unknown-id", T0)

        assert exc_info.value.kind is ErrorKind.PROVIDER_NOT_FOUND
        assert len(registry) == 0
        assert registry.scheduler.active_keys == []
        assert registry.hub.active_streams == []

    @pytest.mark.asyncio
    async def test_enable_sequence(self, registry: ProviderRegistry) -> None:
        provider = FakeProvider(
            "apple-health",
            metrics=[Metric.SLEEP, Metric.STRESS],
            polling=PollingConfig(supported=True, min_interval_ms=60_000),
            realtime=RealtimeConfig(supported=True),
        )
        await registry.register(provider)
        provider.calls.clear()

        await registry.enable("apple-health", T0)

        assert provider.calls[:3] == ["init", "request_permissions", "on_data"]
        assert provider.permissions == list(registry.config.metrics)
        assert registry.scheduler.is_polling("apple-health", Metric.SLEEP)
        assert registry.scheduler.is_polling("apple-health", Metric.STRESS)
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_restream_closes_previous_handle(self, registry: ProviderRegistry) -> None:
        provider = FakeProvider("apple-health", realtime=RealtimeConfig(supported=True))
        await registry.register(provider)

        await registry.enable("apple-health", T0)

        assert len(provider.handles) == 2
        assert provider.handles[0].closed
        assert not provider.handles[1].closed

    @pytest.mark.asyncio
    async def test_untyped_init_failure_wrapped(self, registry: ProviderRegistry) -> None:
        provider = FakeProvider("fitbit")
        provider.init_error = RuntimeError("sdk exploded")
        await registry.register(provider)

        with pytest.raises(HealthDataError) as exc_info:
            await registry.enable("fitbit", T0)

        assert exc_info.value.kind is ErrorKind.PROVIDER_INIT_FAILED
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "request_permissions" not in provider.calls

    @pytest.mark.asyncio
    async def test_typed_failure_passes_through(self, registry: ProviderRegistry) -> None:
        provider = FakeProvider("fitbit")
        provider.request_permissions = AsyncMock(
            side_effect=HealthDataError(ErrorKind.PERMISSION_DENIED, "nope")
        )
        await registry.register(provider)

        with pytest.raises(HealthDataError) as exc_info:
            await registry.enable("fitbit", T0)

        assert exc_info.value.kind is ErrorKind.PERMISSION_DENIED
        assert not registry.scheduler.is_polling("fitbit")


class TestDisable:
    """Tests for disable() best-effort teardown."""

    @pytest.mark.asyncio
    async def test_disable_never_enabled_cleans_up_once(
        self, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider("apple-health")
        await registry.register(provider)

        await registry.disable("apple-health")

        assert provider.calls.count("clean_up") == 1

    @pytest.mark.asyncio
    async def test_disable_stops_polling_and_stream(self, registry: ProviderRegistry) -> None:
        provider = FakeProvider(
            "apple-health",
            polling=PollingConfig(supported=True),
            realtime=RealtimeConfig(supported=True),
        )
        await registry.register(provider)
        await registry.enable("apple-health", T0)

        await registry.disable("apple-health")

        assert not registry.scheduler.is_polling("apple-health")
        assert not registry.hub.has_stream("apple-health")
        assert "unsubscribe" in provider.calls

    @pytest.mark.asyncio
    async def test_disable_cleans_up_even_if_stream_close_fails(
        self, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider("apple-health", realtime=RealtimeConfig(supported=True))
        await registry.register(provider)
        provider.handles[0].close = AsyncMock(side_effect=RuntimeError("stuck"))

        with pytest.raises(HealthDataError) as exc_info:
            await registry.disable("apple-health")

        assert exc_info.value.kind is ErrorKind.CLEANUP_ERROR
        assert provider.calls.count("clean_up") == 1
        assert not registry.hub.has_stream("apple-health")

    @pytest.mark.asyncio
    async def test_clean_up_failure_wrapped(self, registry: ProviderRegistry) -> None:
        provider = FakeProvider("fitbit")
        provider.cleanup_error = OSError("socket closed")
        await registry.register(provider)

        with pytest.raises(HealthDataError) as exc_info:
            await registry.disable("fitbit")

        assert exc_info.value.kind is ErrorKind.CLEANUP_ERROR

    @pytest.mark.asyncio
    async def test_disable_unknown_is_noop(self, registry: ProviderRegistry) -> None:
        await registry.disable("ghost")


class TestLookup:
    """Tests for providers_for_metric() and helpers."""

    @pytest.mark.asyncio
    async def test_providers_for_metric_sorted_by_priority(
        self, registry: ProviderRegistry, enabled: set[str]
    ) -> None:
        await registry.register(FakeProvider("fitbit", priority=0))
        await registry.register(FakeProvider("google-health", priority=10))
        await registry.register(FakeProvider("apple-health", priority=10))
        enabled.update({"fitbit", "google-health", "apple-health"})

        ids = [p.id for p in registry.providers_for_metric(Metric.SLEEP)]

        assert ids == ["google-health", "apple-health", "fitbit"]

    @pytest.mark.asyncio
    async def test_only_enabled_and_supporting_providers(
        self, registry: ProviderRegistry, enabled: set[str]
    ) -> None:
        await registry.register(FakeProvider("fitbit", metrics=[Metric.SLEEP]))
        await registry.register(FakeProvider("google-health", metrics=[Metric.STRESS]))
        await registry.register(FakeProvider("apple-health", metrics=[Metric.SLEEP]))
        enabled.update({"fitbit", "google-health"})

        ids = [p.id for p in registry.providers_for_metric(Metric.SLEEP)]

        assert ids == ["fitbit"]
        assert registry.is_enabled("google-health")
        assert not registry.is_enabled("apple-health")

    @pytest.mark.asyncio
    async def test_priorities_cover_all_registered(self, registry: ProviderRegistry) -> None:
        await registry.register(FakeProvider("fitbit", priority=0))
        await registry.register(FakeProvider("apple-health", priority=10))

        assert registry.priorities() == {"fitbit": 0, "apple-health": 10}

    @pytest.mark.asyncio
    async def test_start_polling_enabled_providers(
        self, registry: ProviderRegistry, enabled: set[str]
    ) -> None:
        await registry.register(FakeProvider("fitbit", polling=PollingConfig(supported=True)))
        await registry.register(
            FakeProvider("google-health", polling=PollingConfig(supported=True))
        )
        enabled.add("fitbit")

        registry.start_polling_enabled_providers(T0)

        assert registry.scheduler.is_polling("fitbit")
        assert not registry.scheduler.is_polling("google-health")
        await registry.shutdown()
        assert registry.scheduler.active_keys == []
