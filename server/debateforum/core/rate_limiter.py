"""In-memory rate limiting for auth-sensitive and general API endpoints.

State lives in the process only: a restart clears every counter, and
several server processes each keep their own counts. A shared store is
needed before running more than one instance.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from debateforum.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimiterConfig:
    points: int  # max consumable per window
    duration: int  # window length, seconds
    block_duration: int  # lockout once exhausted, seconds


LIMITER_CLASSES: dict[str, LimiterConfig] = {
    "auth": LimiterConfig(points=5, duration=60 * 15, block_duration=60 * 15),
    "passwordReset": LimiterConfig(points=3, duration=60 * 60, block_duration=60 * 60),
    "registration": LimiterConfig(
        points=3, duration=60 * 60, block_duration=60 * 60 * 24
    ),
    "api": LimiterConfig(points=100, duration=60 * 15, block_duration=60 * 5),
    "email": LimiterConfig(points=5, duration=60 * 60, block_duration=60 * 60 * 2),
}


# Seconds between sweeps of expired keys.
PRUNE_INTERVAL = 60


@dataclass(frozen=True)
class LimiterKey:
    identifier: str
    limiter_class: str


@dataclass
class _LimiterState:
    consumed: int
    window_start: float
    blocked_until: float | None = None


@dataclass(frozen=True)
class Consumption:
    limit: int
    consumed_points: int
    remaining_points: int
    ms_before_next: int

    def reset_at(self, now: float) -> str:
        reset = now + self.ms_before_next / 1000
        return datetime.fromtimestamp(reset, tz=timezone.utc).isoformat()


class RateLimiter:
    """Token bucket per (identifier, limiter class) with a block period.

    Construct once per process and hand the instance to request handlers.
    """

    def __init__(
        self,
        limiters: dict[str, LimiterConfig] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.limiters = dict(limiters or LIMITER_CLASSES)
        self.clock = clock
        self._states: dict[LimiterKey, _LimiterState] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def config_for(self, limiter_class: str) -> LimiterConfig:
        try:
            return self.limiters[limiter_class]
        except KeyError:
            raise ValueError(f"Unknown rate limiter class: {limiter_class}")

    def consume(self, identifier: str, limiter_class: str = "api") -> Consumption:
        config = self.config_for(limiter_class)
        key = LimiterKey(identifier, limiter_class)
        with self._lock:
            now = self.clock()
            if now - self._last_prune >= PRUNE_INTERVAL:
                self._prune(now)
            state = self._current_state(key, config, now)

            if state.blocked_until is not None:
                ms_left = int((state.blocked_until - now) * 1000)
                logger.warning(
                    f"Rate limit exceeded for {identifier} on {limiter_class} limiter."
                )
                raise RateLimitExceeded(limiter_class, ms_left, config.points)

            state.consumed += 1
            if state.consumed > config.points:
                state.blocked_until = now + config.block_duration
                logger.warning(
                    f"Rate limit exceeded for {identifier} on {limiter_class} limiter, "
                    f"blocked for {config.block_duration}s."
                )
                raise RateLimitExceeded(
                    limiter_class, config.block_duration * 1000, config.points
                )

            ms_before_next = int((state.window_start + config.duration - now) * 1000)
            return Consumption(
                limit=config.points,
                consumed_points=state.consumed,
                remaining_points=config.points - state.consumed,
                ms_before_next=ms_before_next,
            )

    def get(self, identifier: str, limiter_class: str = "api") -> Consumption:
        """Report the current allowance without consuming a point."""
        config = self.config_for(limiter_class)
        key = LimiterKey(identifier, limiter_class)
        with self._lock:
            now = self.clock()
            state = self._states.get(key)
            if state is not None and self._expired(state, config, now):
                del self._states[key]
                state = None
            if state is None:
                return Consumption(config.points, 0, config.points, 0)
            if state.blocked_until is not None:
                ms_before_next = int((state.blocked_until - now) * 1000)
            else:
                ms_before_next = int((state.window_start + config.duration - now) * 1000)
            return Consumption(
                limit=config.points,
                consumed_points=state.consumed,
                remaining_points=max(config.points - state.consumed, 0),
                ms_before_next=ms_before_next,
            )

    def reset(self, identifier: str, limiter_class: str = "api") -> None:
        with self._lock:
            self._states.pop(LimiterKey(identifier, limiter_class), None)

    def prune(self) -> int:
        """Drop every key whose window and block have both run out."""
        with self._lock:
            return self._prune(self.clock())

    def _prune(self, now: float) -> int:
        expired = [
            key
            for key, state in self._states.items()
            if self._expired(state, self.limiters[key.limiter_class], now)
        ]
        for key in expired:
            del self._states[key]
        self._last_prune = now
        if expired:
            logger.debug(f"Pruned {len(expired)} expired rate limit key(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._states)

    def _current_state(
        self, key: LimiterKey, config: LimiterConfig, now: float
    ) -> _LimiterState:
        state = self._states.get(key)
        if state is None or self._expired(state, config, now):
            state = _LimiterState(consumed=0, window_start=now)
            self._states[key] = state
        return state

    @staticmethod
    def _expired(state: _LimiterState, config: LimiterConfig, now: float) -> bool:
        if state.blocked_until is not None:
            return now >= state.blocked_until
        return now >= state.window_start + config.duration
