"""HealthSync provider orchestration and data consolidation engine.

Collects sleep, illness and stress observations from several health data
providers, keeps their lifecycles in order, and merges overlapping
observations into one timeline per metric by provider priority.

Subpackages:
    sync/ — Polling scheduler and realtime subscription hub

Core modules:
    base          — HealthDataProvider ABC and canonical data models
    errors        — HealthDataError and the ErrorKind taxonomy
    registry      — Provider registration and enable/disable lifecycle
    consolidation — Bulk sync, overlap merge, incremental merge
    state         — Provider toggle and health data state stores
    config_loader — Load/validate/hot-reload health_data_config.yaml
"""

from src.health_data.base import (
    HEALTH_METRICS,
    DataPoint,
    HealthDataProvider,
    Metric,
    Sample,
)
from src.health_data.config_loader import HealthDataConfig, get_health_data_config
from src.health_data.consolidation import ConsolidationEngine, merge_data_points
from src.health_data.errors import ErrorKind, HealthDataError
from src.health_data.registry import ProviderRegistry

__all__ = [
    "HealthDataProvider",
    "DataPoint",
    "Sample",
    "Metric",
    "HEALTH_METRICS",
    "ErrorKind",
    "HealthDataError",
    "ProviderRegistry",
    "ConsolidationEngine",
    "merge_data_points",
    "HealthDataConfig",
    "get_health_data_config",
]
