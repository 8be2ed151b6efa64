"""Concurrency tests for the per-provider rate limiter (real clock, short intervals)."""

from __future__ import annotations

import threading
import time

from album_covers.rate_limiter import RateLimiter

INTERVAL = 0.3
# Scheduler jitter allowance
TOLERANCE = 0.05


def run_concurrently(limiter: RateLimiter, provider_ids: list[str]) -> dict[str, list[float]]:
    """Start one thread per provider id, all released at once; return grant times."""
    grants: dict[str, list[float]] = {pid: [] for pid in provider_ids}
    lock = threading.Lock()
    barrier = threading.Barrier(len(provider_ids))

    def worker(provider_id: str) -> None:
        barrier.wait()
        limiter.await_turn(provider_id)
        granted = time.monotonic()
        with lock:
            grants[provider_id].append(granted)

    threads = [threading.Thread(target=worker, args=(pid,)) for pid in provider_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return grants


def test_two_callers_same_provider_are_spaced():
    limiter = RateLimiter({"musicbrainz": INTERVAL})

    grants = run_concurrently(limiter, ["musicbrainz", "musicbrainz"])["musicbrainz"]

    assert len(grants) == 2
    first, second = sorted(grants)
    assert second - first >= INTERVAL - TOLERANCE


def test_many_callers_never_granted_within_interval():
    limiter = RateLimiter({"discogs": INTERVAL / 2})

    grants = sorted(run_concurrently(limiter, ["discogs"] * 5)["discogs"])

    assert len(grants) == 5
    gaps = [b - a for a, b in zip(grants, grants[1:], strict=False)]
    assert min(gaps) >= INTERVAL / 2 - TOLERANCE
    # Total elapsed is at least four intervals
    assert grants[-1] - grants[0] >= 4 * (INTERVAL / 2) - TOLERANCE


def test_different_providers_do_not_block_each_other():
    limiter = RateLimiter({"musicbrainz": 5.0, "discogs": 5.0})
    limiter.await_turn("musicbrainz")
    limiter.await_turn("discogs")

    start = time.monotonic()
    run_concurrently(limiter, ["spotify", "coverartarchive"])
    elapsed = time.monotonic() - start

    # Neither new provider waits on the busy ones
    assert elapsed < 1.0


def test_unrelated_provider_proceeds_while_another_waits():
    limiter = RateLimiter({"musicbrainz": 1.0, "spotify": 0.0})
    limiter.await_turn("musicbrainz")

    spotify_done = threading.Event()
    musicbrainz_done = threading.Event()

    def call(provider_id: str, done: threading.Event) -> None:
        limiter.await_turn(provider_id)
        done.set()

    blocked = threading.Thread(target=call, args=("musicbrainz", musicbrainz_done))
    free = threading.Thread(target=call, args=("spotify", spotify_done))
    blocked.start()
    time.sleep(0.05)
    free.start()

    assert spotify_done.wait(timeout=0.5)
    assert not musicbrainz_done.is_set()

    blocked.join(timeout=5)
    free.join(timeout=5)
    assert musicbrainz_done.is_set()
