"""
In-memory sliding-window state for rate limits and spending caps.

Each tracked key holds a time-ordered list of events. An event with timestamp
`t` is inside the window of width `W` at time `now` iff

    now - W <= t <= now

Both bounds matter for counting: events stamped after `now` do not count
today, so a future-dated request cannot lock a victim out. Only the lower
bound deletes. An event is dropped once it is older than `now - W`; events
ahead of `now` are kept, because a request evaluated later (or a thread that
stamped its request first but took the lock second) must still see them.

Thread safety:
    One lock per store guards every prune + count/sum (+ record) sequence.
    `try_consume` and `try_spend` perform check-then-record atomically so two
    threads cannot both take the last slot. State is process-local and is
    never persisted.
"""

import copy
import threading
import time
from bisect import insort
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True, order=True)
class WindowEvent:
    """
    One recorded pass through a stateful rule.

    Attributes:
        timestamp: Epoch seconds
        amount: Amount spent (zero for rate-limit events)
    """

    timestamp: float
    amount: Decimal = field(default=Decimal(0), compare=False)


@dataclass(frozen=True)
class WindowCheck:
    """
    Outcome of an atomic check-and-record.

    Attributes:
        allowed: Whether the event fit and was recorded
        count: Events in window before this check
        total: Amount in window before this check
        retry_after: Seconds until the oldest in-window event expires
            (only set for rejected rate-limit checks)
    """

    allowed: bool
    count: int = 0
    total: Decimal = Decimal(0)
    retry_after: float | None = None


def _in_window(timestamp: float, lower: float, upper: float) -> bool:
    return lower <= timestamp <= upper


class StateStore:
    """
    Per-key event history with windowed count and sum queries.

    Usage:
        store = StateStore()
        store.record("0:agent_id:a1", timestamp=now)
        store.count_in_window("0:agent_id:a1", window_seconds=60, now=now)

    Reads drop expired events and change nothing else. Keys are
    created lazily by the first record.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """
        Initialize an empty store.

        Args:
            clock: Source of "now" (epoch seconds) when callers don't pass one
        """
        self._clock = clock
        self._events: dict[str, list[WindowEvent]] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Queries
    # =========================================================================

    def count_in_window(
        self,
        key: str,
        window_seconds: float,
        now: float | None = None,
    ) -> int:
        """Number of events for `key` inside [now - window, now]."""
        now = self._now(now)
        with self._lock:
            return len(self._prune(key, window_seconds, now))

    def sum_in_window(
        self,
        key: str,
        window_seconds: float,
        now: float | None = None,
    ) -> Decimal:
        """Total amount for `key` inside [now - window, now]."""
        now = self._now(now)
        with self._lock:
            return _total(self._prune(key, window_seconds, now))

    def oldest_in_window(
        self,
        key: str,
        window_seconds: float,
        now: float | None = None,
    ) -> float | None:
        """Timestamp of the oldest in-window event, or None when empty."""
        now = self._now(now)
        with self._lock:
            kept = self._prune(key, window_seconds, now)
            return kept[0].timestamp if kept else None

    def history(self, key: str) -> tuple[WindowEvent, ...]:
        """Retained events for `key` as stored, without pruning."""
        with self._lock:
            return tuple(self._events.get(key, ()))

    def keys(self) -> list[str]:
        """Keys that currently hold at least one event."""
        with self._lock:
            return sorted(self._events)

    # =========================================================================
    # Mutation
    # =========================================================================

    def record(
        self,
        key: str,
        timestamp: float,
        amount: Decimal = Decimal(0),
    ) -> None:
        """Append one event, keeping the history time-ordered."""
        with self._lock:
            insort(self._events.setdefault(key, []), WindowEvent(timestamp, amount))

    def try_consume(
        self,
        key: str,
        window_seconds: float,
        max_requests: int,
        now: float | None = None,
    ) -> WindowCheck:
        """
        Record one request unless `max_requests` are already in the window.

        Returns:
            WindowCheck; when rejected, `retry_after` is the time until the
            oldest in-window event falls out of the window.
        """
        now = self._now(now)
        with self._lock:
            kept = self._prune(key, window_seconds, now)
            count = len(kept)
            if count >= max_requests:
                retry_after = None
                if kept:
                    retry_after = max(0.0, kept[0].timestamp + _width(window_seconds) - now)
                return WindowCheck(allowed=False, count=count, retry_after=retry_after)
            insort(self._events.setdefault(key, []), WindowEvent(now))
            return WindowCheck(allowed=True, count=count)

    def try_spend(
        self,
        key: str,
        window_seconds: float,
        amount: Decimal,
        max_amount: Decimal,
        now: float | None = None,
    ) -> WindowCheck:
        """Record `amount` unless it would push the window total past `max_amount`."""
        now = self._now(now)
        with self._lock:
            kept = self._prune(key, window_seconds, now)
            total = _total(kept)
            if total + amount > max_amount:
                return WindowCheck(allowed=False, count=len(kept), total=total)
            insort(self._events.setdefault(key, []), WindowEvent(now, amount))
            return WindowCheck(allowed=True, count=len(kept), total=total)

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or everything."""
        with self._lock:
            if key is None:
                self._events.clear()
            else:
                self._events.pop(key, None)

    def snapshot(self) -> "StateStore":
        """Independent copy sharing no mutable state with this store."""
        clone = StateStore(clock=self._clock)
        with self._lock:
            clone._events = copy.deepcopy(self._events)
        return clone

    # =========================================================================
    # Internals (callers hold the lock)
    # =========================================================================

    def _prune(self, key: str, window_seconds: float, now: float) -> list[WindowEvent]:
        """Drop events older than the window and return those inside it."""
        events = self._events.get(key)
        if not events:
            return []
        lower = now - _width(window_seconds)
        retained = [e for e in events if e.timestamp >= lower]
        if len(retained) != len(events):
            if retained:
                self._events[key] = retained
            else:
                del self._events[key]
        return [e for e in retained if _in_window(e.timestamp, lower, now)]

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now


def _width(window_seconds: float) -> float:
    return max(0.0, float(window_seconds))


def _total(events: list[WindowEvent]) -> Decimal:
    return sum((e.amount for e in events), Decimal(0))
