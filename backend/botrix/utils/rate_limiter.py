# /botrix/utils/rate_limiter.py

from typing import Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter
from slowapi import Limiter

from botrix.utils.request_utils import get_remote_address
from botrix.config.settings import settings

# This file centralizes rate limiting:
# - `limiter` is the slowapi instance used by the API routes (per client IP)
# - `webhook_rate_limiter` counts inbound webhook messages per bot

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"]
)


class WebhookRateLimiter:
    """
    Fixed-window counter keyed by bot id, on the same `limits` storage slowapi uses.

    Counters expire with their window, so bots that stop sending leave nothing
    behind. The default memory storage is per process.
    """

    namespace = "webhook"

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def is_rate_limited(self, bot_id: str, limit: int = 100, window_seconds: int = 60) -> bool:
        item = RateLimitItemPerSecond(limit, int(window_seconds))
        return not self._strategy.hit(item, self.namespace, bot_id)

    def reset(self) -> None:
        """Forget every window."""
        self._storage.reset()


webhook_rate_limiter = WebhookRateLimiter()
