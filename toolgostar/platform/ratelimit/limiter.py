from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from threading import Lock

from toolgostar.core.config import Settings, get_settings
from toolgostar.metrics import observe_rate_limit_decision, observe_rate_limit_store_error
from toolgostar.platform.ratelimit.store import CounterStore, InMemoryCounterStore, RedisCounterStore


logger = logging.getLogger("toolgostar.ratelimit")

LOGIN = "login"
AUTH_SURFACE = "auth_surface"
REFRESH = "refresh"
CONTACT = "contact"
QUOTE = "quote"
GENERAL = "general"


@dataclass(frozen=True, slots=True)
class RateLimitTier:
    name: str
    max_requests: int
    window_seconds: int


@dataclass(frozen=True, slots=True)
class Admission:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int = 0


def tiers_from_settings(settings: Settings) -> dict[str, RateLimitTier]:
    pairs = {
        LOGIN: (settings.rate_limit_login_max, settings.rate_limit_login_window_seconds),
        AUTH_SURFACE: (settings.rate_limit_auth_surface_max, settings.rate_limit_auth_surface_window_seconds),
        REFRESH: (settings.rate_limit_refresh_max, settings.rate_limit_refresh_window_seconds),
        CONTACT: (settings.rate_limit_contact_max, settings.rate_limit_contact_window_seconds),
        QUOTE: (settings.rate_limit_quote_max, settings.rate_limit_quote_window_seconds),
        GENERAL: (settings.rate_limit_general_max, settings.rate_limit_general_window_seconds),
    }
    return {name: RateLimitTier(name, max_requests, window) for name, (max_requests, window) in pairs.items()}


class RateLimiter:
    def __init__(self, store: CounterStore, tiers: Mapping[str, RateLimitTier]) -> None:
        self._store = store
        self._tiers = dict(tiers)

    @property
    def store(self) -> CounterStore:
        return self._store

    def tier(self, endpoint_class: str) -> RateLimitTier:
        try:
            return self._tiers[endpoint_class]
        except KeyError as exc:
            raise ValueError(f"unknown rate limit tier: {endpoint_class}") from exc

    def admit(self, client_key: str, endpoint_class: str) -> Admission:
        tier = self.tier(endpoint_class)
        if tier.max_requests <= 0:
            observe_rate_limit_decision(tier.name, allowed=False)
            return Admission(allowed=False, limit=0, remaining=0, retry_after_seconds=tier.window_seconds)

        try:
            window = self._store.increment(f"{tier.name}:{client_key}", tier.window_seconds)
        except Exception as exc:
            # Counters are disposable; an unavailable store admits rather than locking everyone out.
            observe_rate_limit_store_error(self._store.backend_name)
            logger.warning(
                "rate_limit.store_unavailable",
                extra={"tier": tier.name, "error": str(exc)},
            )
            return Admission(allowed=True, limit=tier.max_requests, remaining=tier.max_requests)

        if window.count > tier.max_requests:
            observe_rate_limit_decision(tier.name, allowed=False)
            return Admission(
                allowed=False,
                limit=tier.max_requests,
                remaining=0,
                retry_after_seconds=max(1, math.ceil(window.resets_in)),
            )

        observe_rate_limit_decision(tier.name, allowed=True)
        return Admission(allowed=True, limit=tier.max_requests, remaining=tier.max_requests - window.count)

    def reset(self) -> None:
        self._store.clear()


def build_counter_store(settings: Settings) -> CounterStore:
    if settings.rate_limit_backend.lower() == "redis":
        return RedisCounterStore.from_url(settings.redis_url)
    return InMemoryCounterStore()


_limiter: RateLimiter | None = None
_limiter_lock = Lock()


def get_rate_limiter() -> RateLimiter:
    global _limiter
    with _limiter_lock:
        if _limiter is None:
            settings = get_settings()
            _limiter = RateLimiter(build_counter_store(settings), tiers_from_settings(settings))
        return _limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    global _limiter
    with _limiter_lock:
        _limiter = limiter


def reset_rate_limiter() -> None:
    """Drop counters and rebuild the limiter from current settings on next use."""

    global _limiter
    with _limiter_lock:
        if _limiter is not None and isinstance(_limiter.store, InMemoryCounterStore):
            _limiter.reset()
        _limiter = None
