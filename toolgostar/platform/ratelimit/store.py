from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import redis


@dataclass(frozen=True, slots=True)
class WindowCount:
    count: int
    resets_in: float


class CounterStore(Protocol):
    """Fixed-window counters keyed by (client, endpoint class)."""

    backend_name: str

    def increment(self, key: str, window_seconds: int) -> WindowCount:
        ...

    def clear(self) -> None:
        ...


@dataclass
class _WindowState:
    count: int
    expires_at: float


class InMemoryCounterStore:
    """Process-local store; only correct while the API runs as a single instance."""

    backend_name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 1024) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _WindowState] = {}
        self._sweep_every = sweep_every
        self._operations = 0

    def increment(self, key: str, window_seconds: int) -> WindowCount:
        now = self._clock()
        with self._lock:
            self._operations += 1
            if self._operations % self._sweep_every == 0:
                self._sweep(now)

            state = self._windows.get(key)
            if state is None or state.expires_at <= now:
                state = _WindowState(count=0, expires_at=now + window_seconds)
                self._windows[key] = state
            state.count += 1
            return WindowCount(count=state.count, resets_in=max(0.0, state.expires_at - now))

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()
            self._operations = 0

    def _sweep(self, now: float) -> None:
        expired = [key for key, state in self._windows.items() if state.expires_at <= now]
        for key in expired:
            del self._windows[key]


class RedisCounterStore:
    """Shared store for multi-instance deployments, built on INCR with a window TTL."""

    backend_name = "redis"

    def __init__(self, client: Any, key_prefix: str = "toolgostar:ratelimit:") -> None:
        self._client = client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str) -> RedisCounterStore:
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_timeout=1.0))

    def increment(self, key: str, window_seconds: int) -> WindowCount:
        redis_key = f"{self._key_prefix}{key}"
        window_ms = window_seconds * 1000
        pipeline = self._client.pipeline(transaction=True)
        # NX keeps the original expiry so the window does not slide on every hit.
        pipeline.set(redis_key, 0, nx=True, px=window_ms)
        pipeline.incr(redis_key)
        pipeline.pttl(redis_key)
        _, count, ttl_ms = pipeline.execute()
        if ttl_ms is None or ttl_ms < 0:
            self._client.pexpire(redis_key, window_ms)
            ttl_ms = window_ms
        return WindowCount(count=int(count), resets_in=ttl_ms / 1000.0)

    def clear(self) -> None:
        for redis_key in self._client.scan_iter(match=f"{self._key_prefix}*"):
            self._client.delete(redis_key)
