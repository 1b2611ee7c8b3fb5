"""Load, validate, and hot-reload the health data engine configuration.

The config lives in ``health_data_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_health_data_config()`` to
re-read from disk after an admin update — no restart required.

Usage::

    from src.health_data.config_loader import get_health_data_config

    config = get_health_data_config()
    config.polling.default_interval_seconds   # 60
    config.sync.default_lookback_days         # 30
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from src.health_data.base import HEALTH_METRICS, Metric

logger = logging.getLogger("healthsync.health_data.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "health_data_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class PollingSettings:
    """Global polling settings."""

    default_interval_seconds: float = 60.0

    @property
    def default_interval_ms(self) -> int:
        return int(self.default_interval_seconds * 1000)


@dataclass
class SyncSettings:
    """Bulk sync window settings."""

    default_lookback_days: int = 30


@dataclass
class RealtimeSettings:
    """Realtime stream settings."""

    stream_on_register: bool = True


@dataclass
class HealthDataConfig:
    """Complete, validated engine configuration.

    Attributes:
        version:  Config schema version string.
        metrics:  Metrics requested on enable and synced by default.
        polling:  Polling loop settings.
        sync:     Bulk sync settings.
        realtime: Realtime stream settings.
    """

    version: str = "1.0"
    metrics: tuple[Metric, ...] = HEALTH_METRICS
    polling: PollingSettings = field(default_factory=PollingSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    realtime: RealtimeSettings = field(default_factory=RealtimeSettings)
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when health_data_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Health data config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> HealthDataConfig:
    """Validate the raw YAML dict and construct a HealthDataConfig.

    Every problem is collected before raising so a single run reports all
    of them.

    Raises:
        ConfigValidationError: If any field is missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Metrics ──
    metrics: list[Metric] = []
    metrics_raw = raw.get("metrics", [m.value for m in HEALTH_METRICS])
    if not isinstance(metrics_raw, list) or not metrics_raw:
        errors.append("'metrics' must be a non-empty list")
        metrics_raw = []
    for name in metrics_raw:
        try:
            metric = Metric(name)
        except ValueError:
            errors.append(
                f"metrics: unknown metric {name!r} "
                f"(expected one of {[m.value for m in Metric]})"
            )
            continue
        if metric in metrics:
            errors.append(f"metrics: duplicate metric {name!r}")
            continue
        metrics.append(metric)

    # ── Polling ──
    polling_raw = raw.get("polling") or {}
    try:
        interval = float(polling_raw.get("default_interval_seconds", 60))
    except (TypeError, ValueError):
        errors.append(
            "polling.default_interval_seconds must be a number, "
            f"got {polling_raw.get('default_interval_seconds')!r}"
        )
        interval = 60.0
    if interval <= 0:
        errors.append(f"polling.default_interval_seconds = {interval} must be > 0")

    # ── Sync ──
    sync_raw = raw.get("sync") or {}
    try:
        lookback = int(sync_raw.get("default_lookback_days", 30))
    except (TypeError, ValueError):
        errors.append(
            "sync.default_lookback_days must be an integer, "
            f"got {sync_raw.get('default_lookback_days')!r}"
        )
        lookback = 30
    if lookback < 1:
        errors.append(f"sync.default_lookback_days = {lookback} must be >= 1")

    # ── Realtime ──
    realtime_raw = raw.get("realtime") or {}
    stream_on_register = realtime_raw.get("stream_on_register", True)
    if not isinstance(stream_on_register, bool):
        errors.append(
            f"realtime.stream_on_register must be a boolean, got {stream_on_register!r}"
        )

    if errors:
        raise ConfigValidationError(
            f"health_data_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return HealthDataConfig(
        version=version,
        metrics=tuple(metrics),
        polling=PollingSettings(default_interval_seconds=interval),
        sync=SyncSettings(default_lookback_days=lookback),
        realtime=RealtimeSettings(stream_on_register=stream_on_register),
        _raw=raw,
    )


def load_health_data_config(path: Path | None = None) -> HealthDataConfig:
    """Load and validate the engine config from disk.

    Args:
        path: Override path to YAML. Uses the bundled file by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded health data config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: HealthDataConfig | None = None
_config_lock = threading.Lock()


def get_health_data_config() -> HealthDataConfig:
    """Return the global config singleton, loading it on first call.

    Thread-safe.  Use ``reload_health_data_config()`` to refresh after YAML
    changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_health_data_config()
    return _config


def reload_health_data_config(path: Path | None = None) -> HealthDataConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_health_data_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info(
        "Reloaded health data config: %s → %s",
        old_version,
        new_config.version,
    )
    return new_config
