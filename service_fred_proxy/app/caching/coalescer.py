"""
Single-flight coalescing of concurrent cache misses.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class _Flight:
    task: asyncio.Task
    fresh: bool


class RequestCoalescer:
    """Runs at most one fetch per key; concurrent callers share its outcome.

    The fetch runs in its own task. Callers await it through ``asyncio.shield``
    so a cancelled caller (client disconnect) leaves the fetch running for the
    others. The handle is dropped once the task finishes, on success or failure.

    A ``fresh`` caller must not be answered by a flight that may serve from the
    store. When it finds such a flight it waits for that flight to finish and
    then starts its own, so one key never has two fetches outstanding. Any
    caller may join a fresh flight.

    Results are shared by every waiter and must be treated as read-only.
    """

    def __init__(self, *, metrics: Optional["MetricsCollector"] = None):
        self._in_flight: Dict[str, _Flight] = {}
        self._lock = asyncio.Lock()
        self.metrics = metrics
        self.logger = get_logger("fred_proxy.coalescer")

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def resolve(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        *,
        cache_type: str = "default",
        fresh: bool = False,
    ) -> Any:
        while True:
            async with self._lock:
                flight = self._in_flight.get(key)
                if flight is not None and flight.task.done():
                    flight = None
                if flight is None:
                    task = asyncio.create_task(fetch_fn(), name=f"coalesced:{key}")
                    self._in_flight[key] = _Flight(task=task, fresh=fresh)
                    task.add_done_callback(lambda done, key=key: self._release(key, done))
                    joined = False
                    break
                if flight.fresh or not fresh:
                    task = flight.task
                    joined = True
                    break
                pending = flight.task

            self.logger.debug("Waiting for in-flight fetch before refreshing", key=key)
            await asyncio.wait({pending})

        if joined:
            self.logger.debug("Joined in-flight fetch", key=key)
            if self.metrics:
                self.metrics.increment_counter("coalesced_requests_total", cache_type=cache_type)

        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        flight = self._in_flight.get(key)
        if flight is not None and flight.task is task:
            del self._in_flight[key]
        # Mark the exception as retrieved when every waiter was cancelled.
        if not task.cancelled():
            task.exception()
