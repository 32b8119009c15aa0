"""Cache and in-flight request coalescing."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol, TypeVar

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Cache(Protocol):
    """Cache interface for simple key-value data."""

    def get(self, key: str) -> object | None:
        """Return a cached value if present and not expired."""

    def set(self, key: str, value: object, ttl_seconds: int) -> None:
        """Store a cached value with a TTL in seconds."""

    def evict(self, key: str) -> None:
        """Drop a cached value if present."""


@dataclass
class CacheEntry:
    key: str
    value: object
    created_at: datetime
    ttl: timedelta

    def is_expired(self, now: datetime) -> bool:
        return now - self.created_at > self.ttl


@dataclass
class InMemoryCache(Cache):
    """Process-local TTL cache with lazy eviction."""

    clock: Clock = utc_now
    _entries: dict[str, CacheEntry] = field(default_factory=dict)

    def get(self, key: str) -> object | None:
        """Return a cached value if it hasn't expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: object, ttl_seconds: int) -> None:
        """Store a cached value with a TTL."""
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=self.clock(),
            ttl=timedelta(seconds=ttl_seconds),
        )

    def evict(self, key: str) -> None:
        """Remove a cached value."""
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _Flight:
    task: asyncio.Future[object]
    waiters: int = 0


@dataclass
class InFlightRequests:
    """Coalesces concurrent identical requests onto one shared task.

    The entry for a key disappears as soon as its task settles, whatever the
    outcome. A waiter that gets cancelled leaves the shared task running for
    the others; when the last waiter goes away the task is cancelled as well.
    """

    _flights: dict[str, _Flight] = field(default_factory=dict)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Await the in-flight task for `key`, starting one if needed."""
        flight = self._flights.get(key)
        if flight is None:
            flight = _Flight(task=asyncio.ensure_future(factory()))
            self._flights[key] = flight
            flight.task.add_done_callback(
                lambda _task, key=key, flight=flight: self._discard(key, flight)
            )
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)  # type: ignore[return-value]
        except asyncio.CancelledError:
            if flight.waiters <= 1 and not flight.task.done():
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    def is_pending(self, key: str) -> bool:
        return key in self._flights

    def __len__(self) -> int:
        return len(self._flights)

    def _discard(self, key: str, flight: _Flight) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]
