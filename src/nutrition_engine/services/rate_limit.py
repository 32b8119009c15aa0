"""Per-client request budgets by endpoint class."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

from nutrition_engine.services.cache import Clock, utc_now


class EndpointClass(StrEnum):
    """Groups of endpoints sharing one request budget."""

    TEXT_ESTIMATION = "text_estimation"
    FOOD_PARSING = "food_parsing"
    PHOTO_IDENTIFICATION = "photo_identification"
    COACHING = "coaching"


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    window_seconds: int


DEFAULT_POLICIES: dict[EndpointClass, RateLimitPolicy] = {
    EndpointClass.TEXT_ESTIMATION: RateLimitPolicy(30, 15 * 60),
    EndpointClass.FOOD_PARSING: RateLimitPolicy(60, 15 * 60),
    EndpointClass.PHOTO_IDENTIFICATION: RateLimitPolicy(20, 15 * 60),
    EndpointClass.COACHING: RateLimitPolicy(20, 15 * 60),
}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int | None = None


@dataclass
class RateWindow:
    window_start: datetime
    count: int


@dataclass
class FixedWindowRateLimiter:
    """Counts requests per (client, endpoint class) in resetting windows."""

    policies: dict[EndpointClass, RateLimitPolicy] = field(
        default_factory=lambda: dict(DEFAULT_POLICIES)
    )
    clock: Clock = utc_now
    _windows: dict[tuple[str, EndpointClass], RateWindow] = field(
        default_factory=dict
    )
    _last_sweep: datetime | None = field(default=None, init=False)

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, client_id: str, endpoint_class: EndpointClass) -> RateLimitDecision:
        """Count one request and report whether it fits the budget."""
        policy = self.policies[endpoint_class]
        window_size = timedelta(seconds=policy.window_seconds)
        now = self.clock()
        self._sweep(now)
        key = (client_id, endpoint_class)
        window = self._windows.get(key)

        if window is None or now - window.window_start > window_size:
            self._windows[key] = RateWindow(window_start=now, count=1)
            return RateLimitDecision(
                allowed=True, remaining=max(policy.max_requests - 1, 0)
            )

        if window.count >= policy.max_requests:
            reset_at = window.window_start + window_size
            retry_after = max(math.ceil((reset_at - now).total_seconds()), 1)
            return RateLimitDecision(
                allowed=False, remaining=0, retry_after=retry_after
            )

        window.count += 1
        return RateLimitDecision(
            allowed=True, remaining=policy.max_requests - window.count
        )

    def reset(self) -> None:
        self._windows.clear()

    def _sweep(self, now: datetime) -> None:
        """Drop expired windows, at most once per shortest window."""
        if self._last_sweep is None:
            self._last_sweep = now
            return
        interval = min(policy.window_seconds for policy in self.policies.values())
        if (now - self._last_sweep).total_seconds() < interval:
            return
        self._last_sweep = now
        expired = [
            key
            for key, window in self._windows.items()
            if (now - window.window_start).total_seconds()
            > self.policies[key[1]].window_seconds
        ]
        for key in expired:
            del self._windows[key]
