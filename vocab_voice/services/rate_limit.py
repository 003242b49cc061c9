from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from vocab_voice.config import DEFAULT_RATE_LIMIT, DEFAULT_RATE_LIMITS, RateLimitConfig
from vocab_voice.errors import RateLimitError

T = TypeVar("T")


@dataclass
class RateLimitDecision:
    allowed: bool
    wait_seconds: int
    remaining: int


class RateLimiter:
    """Sliding-window limiter keyed by provider name.

    One instance is shared for the whole process; each provider gets its own
    timestamp queue and lock so pruning and recording happen as one step.
    """

    def __init__(
        self,
        configs: dict[str, RateLimitConfig] | None = None,
        *,
        default: RateLimitConfig = DEFAULT_RATE_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.configs = dict(DEFAULT_RATE_LIMITS if configs is None else configs)
        self.default = default
        self.clock = clock
        self._queues: dict[str, deque[float]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def config_for(self, provider: str) -> RateLimitConfig:
        return self.configs.get(provider, self.default)

    def check(self, provider: str) -> RateLimitDecision:
        config = self.config_for(provider)
        queue, lock = self._slot(provider)
        with lock:
            now = self.clock()
            self._prune(queue, now, config.window_seconds)
            if len(queue) >= config.max_requests:
                wait = math.ceil(queue[0] + config.window_seconds - now)
                return RateLimitDecision(allowed=False, wait_seconds=wait, remaining=0)
            queue.append(now)
            return RateLimitDecision(
                allowed=True,
                wait_seconds=0,
                remaining=config.max_requests - len(queue),
            )

    def limit(self, provider: str) -> None:
        decision = self.check(provider)
        if not decision.allowed:
            raise RateLimitError(provider, decision.wait_seconds)

    async def with_rate_limit(self, provider: str, fn: Callable[[], Awaitable[T]]) -> T:
        self.limit(provider)
        return await fn()

    def request_count(self, provider: str) -> int:
        config = self.config_for(provider)
        queue, lock = self._slot(provider)
        with lock:
            self._prune(queue, self.clock(), config.window_seconds)
            return len(queue)

    def reset(self, provider: str | None = None) -> None:
        with self._registry_lock:
            targets = [provider] if provider else list(self._queues)
            for name in targets:
                if name in self._queues:
                    self._queues[name].clear()

    def status(self) -> dict[str, dict]:
        names = sorted(set(self.configs) | set(self._queues))
        payload: dict[str, dict] = {}
        for name in names:
            count = self.request_count(name)
            limit = self.config_for(name).max_requests
            payload[name] = {"count": count, "remaining": max(0, limit - count), "limit": limit}
        return payload

    def _slot(self, provider: str) -> tuple[deque[float], threading.Lock]:
        with self._registry_lock:
            if provider not in self._queues:
                self._queues[provider] = deque()
                self._locks[provider] = threading.Lock()
            return self._queues[provider], self._locks[provider]

    @staticmethod
    def _prune(queue: deque[float], now: float, window: float) -> None:
        while queue and now - queue[0] >= window:
            queue.popleft()
