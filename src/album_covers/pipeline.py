"""
Cover pipeline: the composition root tying resolution, processing and caching together.

Entry points a web layer (or the CLI) calls:
- resolve_and_persist_cover(record): eager resolution when a record is created
- resolve_missing_covers(): batch sweep over records without a usable cover
- serve_cover_proxy(url, if_none_match): cached, normalized image bytes with validators
- preload(url) / preload_many(urls): background cache warm-up
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any
from urllib.parse import urlsplit

import httpx

from album_covers.catalog_db import Album, AlbumStore
from album_covers.config import Config, ConfigurationError
from album_covers.discogs import DiscogsClient
from album_covers.image_cache import ImageCache, normalize_key
from album_covers.image_processor import FetchError, ImageProcessor
from album_covers.musicbrainz import MusicBrainzClient
from album_covers.provider import CoverProvider
from album_covers.rate_limiter import RateLimiter
from album_covers.resolver import (
    DEFAULT_COVER,
    CoverResolver,
    ResolutionState,
    ResolvedCover,
    ScoringPolicy,
)
from album_covers.scrapers import MetalArchivesScraper, RateYourMusicScraper
from album_covers.spotify import SpotifyClient

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class ProxyStatus(IntEnum):
    """Outcome of a proxy request, valued as the HTTP status to send."""

    OK = 200
    NOT_MODIFIED = 304
    NOT_FOUND = 404


@dataclass
class ProxyResponse:
    """What a web layer needs to answer an image proxy request."""

    status: ProxyStatus
    body: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)


def compute_etag(data: bytes) -> str:
    """Strong validator: quoted MD5 hex digest of the image bytes."""
    return f'"{hashlib.md5(data).hexdigest()}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """
    Evaluate an If-None-Match header against the current ETag.

    Supports comma-separated lists, weak validators (W/ prefix, compared
    weakly as GET requires) and the "*" wildcard.
    """
    if not if_none_match:
        return False
    if if_none_match.strip() == "*":
        return True

    current = etag.strip().strip('"')
    for candidate in if_none_match.split(","):
        tag = candidate.strip()
        if tag.startswith("W/"):
            tag = tag[2:]
        if tag.strip('"') == current:
            return True
    return False


def is_fetchable_url(url: str | None) -> bool:
    """An absolute http(s) URL with a host that urllib can parse."""
    if url is None or not url.strip():
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.netloc)


@dataclass
class SweepResult:
    """Result of a missing-cover sweep."""

    total: int = 0
    processed: int = 0
    found: int = 0
    defaulted: int = 0
    failed: int = 0
    errors: list[tuple[Any, Exception]] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Share of processed records that got a real cover, as a percentage."""
        if self.processed == 0:
            return 100.0
        return (self.found / self.processed) * 100

    def add_resolved(self, resolved: ResolvedCover) -> None:
        self.processed += 1
        if resolved.is_default:
            self.defaulted += 1
        else:
            self.found += 1

    def add_failure(self, item: Any, error: Exception) -> None:
        self.processed += 1
        self.failed += 1
        self.errors.append((item, error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "found": self.found,
            "defaulted": self.defaulted,
            "failed": self.failed,
            "errors": [{"album_id": item, "error": str(error)} for item, error in self.errors],
        }


class CoverPipeline:
    """
    Owns the resolver, the image processor, the image cache and the preload pool.

    Serving and batch resolution run on the caller's thread; preloading runs
    on a fixed-size worker pool.
    """

    def __init__(
        self,
        resolver: CoverResolver,
        store: AlbumStore,
        processor: ImageProcessor | None = None,
        cache: ImageCache | None = None,
        max_age_days: int = 7,
        preload_workers: int = 5,
    ):
        self.resolver = resolver
        self.store = store
        self.processor = processor or ImageProcessor()
        self.cache = cache or ImageCache()
        self.max_age_seconds = max_age_days * SECONDS_PER_DAY
        self._executor = ThreadPoolExecutor(
            max_workers=preload_workers, thread_name_prefix="cover-preload"
        )
        self._closed = False

    # Resolution

    def resolve_and_persist_cover(self, record: Album) -> ResolvedCover:
        """
        Resolve a cover for one record and persist its cover_url.

        An unexpected error during resolution persists DEFAULT_COVER instead,
        so the record is picked up again by the next sweep.
        """
        try:
            resolved = self.resolver.resolve(record.artist.name, record.title)
        except Exception as e:
            logger.exception(f"Cover resolution failed for {record.artist.name} - {record.title}: {e}")
            resolved = ResolvedCover(url=DEFAULT_COVER, state=ResolutionState.EXHAUSTED)

        record.cover_url = resolved.url
        self.store.save(record)
        return resolved

    def resolve_missing_covers(
        self, progress_callback: Callable[[int, int], None] | None = None
    ) -> SweepResult:
        """Resolve every record without a usable cover, one at a time."""
        records = self.store.find_records_missing_cover()
        result = SweepResult(total=len(records))
        logger.info(f"Resolving covers for {len(records)} album(s)")

        for i, record in enumerate(records):
            try:
                resolved = self.resolve_and_persist_cover(record)
                result.add_resolved(resolved)
            except Exception as e:
                result.add_failure(record.id, e)
                logger.warning(f"Cover sweep error for album {record.id} (continuing): {e}")

            if progress_callback:
                progress_callback(i + 1, len(records))

        logger.info(
            f"Cover sweep done: {result.found} found, {result.defaulted} defaulted, "
            f"{result.failed} failed"
        )
        return result

    # Serving

    def fetch_and_cache(self, url: str) -> bytes | None:
        """
        Processed image bytes for url, from cache or freshly fetched.

        Fetching and processing happen outside the cache lock; two concurrent
        misses on the same key may both fetch, and the last insert wins.
        """
        try:
            key = normalize_key(url)
        except ValueError as e:
            logger.warning(f"Unusable cover URL {url!r}: {e}")
            return None
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            data = self.processor.fetch(url)
        except FetchError as e:
            logger.warning(f"Could not fetch cover image: {e}")
            return None

        self.cache.put(key, data)
        return data

    def serve_cover_proxy(self, url: str | None, if_none_match: str | None = None) -> ProxyResponse:
        """Answer an image proxy request with HTTP cache semantics."""
        if url is None or not is_fetchable_url(url):
            return ProxyResponse(status=ProxyStatus.NOT_FOUND)

        data = self.fetch_and_cache(url)
        if data is None:
            return ProxyResponse(status=ProxyStatus.NOT_FOUND)

        etag = compute_etag(data)
        if etag_matches(if_none_match, etag):
            return ProxyResponse(status=ProxyStatus.NOT_MODIFIED, headers={"ETag": etag})

        return ProxyResponse(
            status=ProxyStatus.OK,
            body=data,
            headers={
                "Content-Type": "image/jpeg",
                "Cache-Control": f"max-age={self.max_age_seconds}",
                "ETag": etag,
            },
        )

    # Preloading

    def preload(self, url: str | None) -> Future[bytes | None] | None:
        """
        Warm the cache for url in the background.

        Returns immediately. Returns the submitted future, or None when nothing
        was scheduled (unusable URL, already cached, or pipeline closed).
        """
        if url is None or not is_fetchable_url(url):
            return None
        if normalize_key(url) in self.cache:
            return None
        if self._closed:
            logger.debug(f"Pipeline closed, not preloading {url}")
            return None

        future = self._executor.submit(self.fetch_and_cache, url)
        future.add_done_callback(self._log_preload_failure)
        return future

    def preload_many(self, urls: Iterable[str | None]) -> int:
        """Schedule preloads for several URLs; returns how many were scheduled."""
        return sum(1 for url in urls if self.preload(url) is not None)

    @staticmethod
    def _log_preload_failure(future: Future[bytes | None]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Cover preload failed: {error}", exc_info=error)

    # Lifecycle

    def close(self) -> None:
        """Stop the preload pool and close network clients."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)
        for provider in self.resolver.providers:
            provider.close()
        self.processor.close()

    def __enter__(self) -> CoverPipeline:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


ProviderFactory = Callable[[Config, RateLimiter, httpx.Timeout], CoverProvider]

PROVIDER_FACTORIES: dict[str, ProviderFactory] = {
    "musicbrainz": lambda config, limiter, timeout: MusicBrainzClient(
        limiter,
        timeout=timeout,
        search_limit=config.providers.search_limit,
        image_size=config.providers.caa_image_size,
        user_agent=config.http.api_user_agent,
    ),
    "discogs": lambda config, limiter, timeout: DiscogsClient(
        limiter,
        token=config.providers.discogs_token,
        timeout=timeout,
        per_page=config.providers.search_limit,
    ),
    "spotify": lambda config, limiter, timeout: SpotifyClient(
        limiter,
        client_id=config.providers.spotify_client_id,
        client_secret=config.providers.spotify_client_secret,
        timeout=timeout,
        search_limit=config.providers.search_limit,
    ),
    "metal_archives": lambda config, limiter, timeout: MetalArchivesScraper(
        limiter, timeout=timeout, search_limit=config.providers.search_limit
    ),
    "rateyourmusic": lambda config, limiter, timeout: RateYourMusicScraper(
        limiter, timeout=timeout
    ),
}


def build_providers(config: Config, limiter: RateLimiter) -> list[CoverProvider]:
    """
    Instantiate providers in configured priority order.

    A provider whose credentials are missing is skipped with a warning;
    the rest of the chain still runs.
    """
    timeout = httpx.Timeout(config.http.read_timeout_s, connect=config.http.connect_timeout_s)
    providers: list[CoverProvider] = []
    for name in config.providers.order:
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            logger.warning(f"Unknown cover provider '{name}' in providers.order, skipping")
            continue
        try:
            providers.append(factory(config, limiter, timeout))
        except ConfigurationError as e:
            logger.warning(f"Skipping provider {name}: {e}")
    return providers


def build_resolver(
    config: Config,
    limiter: RateLimiter | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CoverResolver:
    """Resolver with the configured provider chain and scoring policy."""
    if limiter is None:
        limiter = RateLimiter(
            config.limits.intervals, default_interval=config.limits.default_interval
        )
    providers = build_providers(config, limiter)
    if not providers:
        logger.warning("No cover providers configured; every resolution will use the default cover")

    policy = ScoringPolicy.from_config(config.scoring, max_candidates=config.providers.search_limit)
    return CoverResolver(providers, policy=policy, sleep=sleep)


def build_pipeline(
    config: Config,
    store: AlbumStore,
    sleep: Callable[[float], None] = time.sleep,
) -> CoverPipeline:
    """Composition root: wire limiter, providers, resolver, processor and cache from config."""
    resolver = build_resolver(config, sleep=sleep)

    processor = ImageProcessor(
        canonical_size=config.image.canonical_size,
        timeout=httpx.Timeout(config.http.read_timeout_s, connect=config.http.connect_timeout_s),
        user_agent=config.http.image_user_agent,
    )
    cache = ImageCache(max_entries=config.cache.max_entries)

    return CoverPipeline(
        resolver,
        store,
        processor=processor,
        cache=cache,
        max_age_days=config.cache.max_age_days,
        preload_workers=config.preload.workers,
    )


## Tests


def test_compute_etag_is_quoted_md5():
    assert compute_etag(b"abc") == '"900150983cd24fb0d6963f7d28e17f72"'


def test_etag_matches():
    etag = '"abc123"'
    assert etag_matches('"abc123"', etag)
    assert etag_matches('W/"abc123"', etag)
    assert etag_matches('"zzz", "abc123"', etag)
    assert etag_matches("*", etag)
    assert not etag_matches('"other"', etag)
    assert not etag_matches(None, etag)
    assert not etag_matches("", etag)


def test_is_fetchable_url():
    assert is_fetchable_url("https://coverartarchive.org/release/x/front-500")
    assert is_fetchable_url("http://img.example/a.jpg")
    assert not is_fetchable_url(DEFAULT_COVER)
    assert not is_fetchable_url("   ")
    assert not is_fetchable_url(None)
    assert not is_fetchable_url("http://[::1/a.jpg")
    assert not is_fetchable_url("https:///path-only")


def test_sweep_result_counts():
    result = SweepResult(total=3)
    result.add_resolved(ResolvedCover(url="https://img.example/a.jpg", state=ResolutionState.ACCEPTED))
    result.add_resolved(ResolvedCover(url=DEFAULT_COVER))
    result.add_failure(7, RuntimeError("boom"))
    assert (result.processed, result.found, result.defaulted, result.failed) == (3, 1, 1, 1)
    assert result.to_dict()["errors"] == [{"album_id": 7, "error": "boom"}]
