"""Collection infrastructure for the health data engine.

Modules:
    scheduler     — Per (provider, metric) polling loops on asyncio tasks
    subscriptions — Realtime subscription handles and listener fan-out
"""

from src.health_data.sync.scheduler import PollingScheduler, PollKey
from src.health_data.sync.subscriptions import SubscriptionHub

__all__ = ["PollingScheduler", "PollKey", "SubscriptionHub"]
