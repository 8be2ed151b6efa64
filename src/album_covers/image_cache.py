"""Bounded in-memory LRU cache of processed cover images."""

from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from typing import Any
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 200

_SIZE_SUFFIX = re.compile(r"/(front|back)-\d+$")


def normalize_key(url: str) -> str:
    """
    Cache key for an image URL.

    Drops query string and fragment, then collapses a trailing size suffix
    (/front-500, /back-250) so every size variant of the same image shares
    one entry.
    """
    parts = urlsplit(url.strip())
    path = _SIZE_SUFFIX.sub(r"/\1", parts.path)
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


class ImageCache:
    """
    Thread-safe LRU cache of image bytes.

    A get() hit and every put() move the entry to most-recently-used. Inserting
    past max_entries evicts least-recently-used entries. Callers compute values
    outside the cache; only the map itself is guarded.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, bytes] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str) -> bytes | None:
        with self._lock:
            data = self._entries.get(key)
            if data is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return data

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self._entries[key] = data
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Evicted {evicted} from image cache")

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }


## Tests


def test_normalize_key_collapses_size_suffix():
    assert normalize_key("https://coverartarchive.org/release/abc/front-500") == (
        "https://coverartarchive.org/release/abc/front"
    )
    assert normalize_key("https://coverartarchive.org/release/abc/back-250") == (
        "https://coverartarchive.org/release/abc/back"
    )


def test_normalize_key_strips_query_and_fragment():
    assert normalize_key("https://img.example/a.jpg?size=large#x") == "https://img.example/a.jpg"


def test_normalize_key_leaves_other_paths():
    assert normalize_key("https://img.example/front-cover.jpg") == (
        "https://img.example/front-cover.jpg"
    )


def test_get_refreshes_recency():
    cache = ImageCache(max_entries=2)
    cache.put("a", b"1")
    cache.put("b", b"2")
    assert cache.get("a") == b"1"
    cache.put("c", b"3")
    assert "a" in cache
    assert "b" not in cache


def test_contains_does_not_refresh_recency():
    cache = ImageCache(max_entries=2)
    cache.put("a", b"1")
    cache.put("b", b"2")
    assert "a" in cache
    cache.put("c", b"3")
    assert "a" not in cache


def test_stats():
    cache = ImageCache(max_entries=1)
    cache.put("a", b"1")
    cache.get("a")
    cache.get("missing")
    cache.put("b", b"2")
    assert cache.stats() == {"size": 1, "capacity": 1, "hits": 1, "misses": 1, "evictions": 1}
