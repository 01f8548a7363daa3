from toolgostar.platform.ratelimit.limiter import (
    Admission,
    RateLimiter,
    RateLimitTier,
    get_rate_limiter,
    reset_rate_limiter,
    set_rate_limiter,
    tiers_from_settings,
)
from toolgostar.platform.ratelimit.store import CounterStore, InMemoryCounterStore, RedisCounterStore, WindowCount

__all__ = [
    "Admission",
    "RateLimiter",
    "RateLimitTier",
    "get_rate_limiter",
    "reset_rate_limiter",
    "set_rate_limiter",
    "tiers_from_settings",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WindowCount",
]
