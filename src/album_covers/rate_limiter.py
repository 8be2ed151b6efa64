"""Per-provider rate limiting for cover lookups.

Enforces a minimum interval between granted calls to each external provider.
Each provider id has its own lock, so callers for one provider are serialized
while different providers stay independent.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class IntervalGate:
    """
    Minimum-interval gate for a single provider.

    The last-grant timestamp is read and updated under the gate's lock, and the
    lock is held while sleeping, so two callers can never be granted within
    min_interval of each other.
    """

    min_interval: float
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    _last_grant: float | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def await_turn(self) -> float:
        """
        Block until the interval since the last grant has elapsed.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            waited = 0.0
            if self._last_grant is not None and self.min_interval > 0:
                elapsed = self.clock() - self._last_grant
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self.sleep(waited)
            self._last_grant = self.clock()
            return waited

    def set_interval(self, min_interval: float) -> None:
        """Change the interval; waits for any caller currently holding the gate."""
        with self._lock:
            self.min_interval = min_interval

    def seconds_since_last_grant(self) -> float | None:
        with self._lock:
            if self._last_grant is None:
                return None
            return self.clock() - self._last_grant


class RateLimiter:
    """
    Registry of per-provider interval gates.

    Intervals are configuration; providers without an explicit interval fall
    back to default_interval. Owned by the pipeline's composition root and
    passed to each provider client.
    """

    DEFAULT_INTERVALS: dict[str, float] = {
        "musicbrainz": 1.2,
        "coverartarchive": 0.5,
        "discogs": 1.0,
        "spotify": 0.2,
        "metal_archives": 2.0,
        "rateyourmusic": 5.0,
    }

    def __init__(
        self,
        intervals: Mapping[str, float] | None = None,
        default_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.intervals = dict(self.DEFAULT_INTERVALS if intervals is None else intervals)
        self.default_interval = default_interval
        self._clock = clock
        self._sleep = sleep
        self._gates: dict[str, IntervalGate] = {}
        self._lock = threading.Lock()

    def gate(self, provider_id: str) -> IntervalGate:
        """Get or create the gate for a provider."""
        with self._lock:
            gate = self._gates.get(provider_id)
            if gate is None:
                gate = IntervalGate(
                    min_interval=self.intervals.get(provider_id, self.default_interval),
                    clock=self._clock,
                    sleep=self._sleep,
                )
                self._gates[provider_id] = gate
            return gate

    def configure(self, provider_id: str, min_interval: float) -> None:
        """Change the interval for a provider, keeping its last-grant time."""
        with self._lock:
            self.intervals[provider_id] = min_interval
            gate = self._gates.get(provider_id)
        if gate is not None:
            gate.set_interval(min_interval)

    def await_turn(self, provider_id: str) -> None:
        """Block until provider_id may be called again, then record the grant."""
        waited = self.gate(provider_id).await_turn()
        if waited > 0:
            logger.debug(f"Rate limit: waited {waited:.2f}s for {provider_id}")

    def status(self) -> dict[str, dict[str, Any]]:
        """Interval and time since last grant for every provider seen so far."""
        with self._lock:
            gates = dict(self._gates)
        return {
            provider_id: {
                "min_interval": gate.min_interval,
                "seconds_since_last_grant": gate.seconds_since_last_grant(),
            }
            for provider_id, gate in gates.items()
        }


## Tests


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_call_is_not_delayed():
    clock = _FakeClock()
    limiter = RateLimiter({"musicbrainz": 1.2}, clock=clock, sleep=clock.sleep)
    limiter.await_turn("musicbrainz")
    assert clock.sleeps == []


def test_second_call_waits_remaining_interval():
    clock = _FakeClock()
    limiter = RateLimiter({"musicbrainz": 1.2}, clock=clock, sleep=clock.sleep)
    limiter.await_turn("musicbrainz")
    clock.now += 0.2
    limiter.await_turn("musicbrainz")
    assert len(clock.sleeps) == 1
    assert abs(clock.sleeps[0] - 1.0) < 1e-9


def test_no_wait_after_interval_elapsed():
    clock = _FakeClock()
    limiter = RateLimiter({"discogs": 1.0}, clock=clock, sleep=clock.sleep)
    limiter.await_turn("discogs")
    clock.now += 5.0
    limiter.await_turn("discogs")
    assert clock.sleeps == []


def test_providers_are_independent():
    clock = _FakeClock()
    limiter = RateLimiter({"musicbrainz": 1.2, "discogs": 1.0}, clock=clock, sleep=clock.sleep)
    limiter.await_turn("musicbrainz")
    limiter.await_turn("discogs")
    assert clock.sleeps == []


def test_unknown_provider_uses_default_interval():
    limiter = RateLimiter({}, default_interval=3.0)
    assert limiter.gate("somewhere").min_interval == 3.0


def test_configure_replaces_interval():
    limiter = RateLimiter()
    limiter.configure("musicbrainz", 2.5)
    assert limiter.gate("musicbrainz").min_interval == 2.5


def test_configure_keeps_last_grant():
    clock = _FakeClock()
    limiter = RateLimiter({"musicbrainz": 1.0}, clock=clock, sleep=clock.sleep)
    gate = limiter.gate("musicbrainz")
    limiter.await_turn("musicbrainz")

    limiter.configure("musicbrainz", 2.0)
    limiter.await_turn("musicbrainz")

    assert limiter.gate("musicbrainz") is gate
    assert clock.sleeps == [2.0]


def test_status_reports_seen_providers():
    limiter = RateLimiter({"spotify": 0.0})
    limiter.await_turn("spotify")
    status = limiter.status()
    assert status["spotify"]["min_interval"] == 0.0
    assert status["spotify"]["seconds_since_last_grant"] is not None
