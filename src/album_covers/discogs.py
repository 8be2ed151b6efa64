"""
Discogs database search for cover images.

Marketplace-grade fallback: search results carry a direct cover_image URL,
so no second lookup is needed. The database search endpoint requires a
personal access token.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator
from typing import Any

import httpx

from album_covers.config import ConfigurationError
from album_covers.provider import (
    MALFORMED_PAYLOAD_ERRORS,
    Candidate,
    CoverQuery,
    HttpProvider,
    ProviderUnavailable,
)
from album_covers.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
PLACEHOLDER_MARKERS = ("spacer.gif",)

# Discogs appends " (2)", " (3)" to disambiguate artists sharing a name
_DISAMBIGUATION_SUFFIX = re.compile(r"\s*\(\d+\)$")


def split_result_title(title: str) -> tuple[str | None, str]:
    """
    Split a Discogs search result title of the form "Artist - Title".

    Returns:
        Tuple of (artist or None, title)
    """
    if " - " not in title:
        return None, title.strip()
    artist, _, release_title = title.partition(" - ")
    return _DISAMBIGUATION_SUFFIX.sub("", artist.strip()), release_title.strip()


def usable_image_url(url: Any) -> bool:
    """Whether a cover_image value points at a real image."""
    if not isinstance(url, str) or not url:
        return False
    path = url.split("?", 1)[0].lower()
    if any(marker in path for marker in PLACEHOLDER_MARKERS):
        return False
    return path.endswith(IMAGE_EXTENSIONS)


class DiscogsClient(HttpProvider):
    """Discogs database search, authenticated with a personal access token."""

    name = "discogs"

    BASE_URL = "https://api.discogs.com"
    user_agent = "album-covers/0.1.0 +https://github.com/album-covers/album-covers"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        token: str | None = None,
        timeout: httpx.Timeout | float = 5.0,
        per_page: int = 5,
    ):
        """
        Initialize Discogs client.

        Args:
            rate_limiter: Shared per-provider rate limiter
            token: Discogs personal access token (env: DISCOGS_TOKEN)
            timeout: Connect/read timeouts
            per_page: Results requested per search

        Raises:
            ConfigurationError: If no token is available
        """
        self.token = token or os.getenv("DISCOGS_TOKEN")
        if not self.token:
            raise ConfigurationError(
                "Discogs database search requires a token (set DISCOGS_TOKEN or providers.discogs_token)"
            )
        super().__init__(
            timeout=timeout,
            headers={"Authorization": f"Discogs token={self.token}"},
        )
        self.rate_limiter = rate_limiter
        self.per_page = per_page

    def search(self, query: CoverQuery) -> Iterator[Candidate]:
        self.rate_limiter.await_turn(self.name)
        logger.info(f"Calling Discogs for {query.artist} - {query.title}")

        data = self._get_json(
            f"{self.BASE_URL}/database/search",
            params={
                "artist": query.artist,
                "release_title": query.title,
                "type": "release",
                "per_page": str(self.per_page),
            },
        )
        if not isinstance(data, dict):
            raise ProviderUnavailable(self.name, "unexpected response shape")

        results = data.get("results") or []
        if not isinstance(results, list):
            raise ProviderUnavailable(self.name, "unexpected response shape")
        for result in results:
            try:
                candidate = self._parse_result(result)
            except MALFORMED_PAYLOAD_ERRORS as e:
                raise ProviderUnavailable(self.name, "malformed response") from e
            if candidate is not None:
                yield candidate

    def _parse_result(self, result: Any) -> Candidate | None:
        if not isinstance(result, dict):
            return None

        image_url = result.get("cover_image")
        if not usable_image_url(image_url):
            return None

        artist, title = split_result_title(str(result.get("title", "")))
        release_id = result.get("id")
        master_id = result.get("master_id")

        return Candidate(
            title=title,
            artist_names=frozenset({artist}) if artist else frozenset(),
            source_url=image_url,
            release_id=str(release_id) if release_id else None,
            release_group_id=str(master_id) if master_id else None,
        )


## Tests


def test_split_result_title():
    assert split_result_title("Nirvana - Nevermind") == ("Nirvana", "Nevermind")
    assert split_result_title("Ghost (2) - Opus Eponymous") == ("Ghost", "Opus Eponymous")
    assert split_result_title("Untitled") == (None, "Untitled")


def test_split_result_title_keeps_dashes_in_title():
    assert split_result_title("Blur - Parklife - Live") == ("Blur", "Parklife - Live")


def test_usable_image_url():
    assert usable_image_url("https://i.discogs.com/abc/cover.jpg")
    assert usable_image_url("https://i.discogs.com/abc/cover.jpeg?x=1")
    assert not usable_image_url("https://s.discogs.com/images/spacer.gif")
    assert not usable_image_url("https://i.discogs.com/abc/cover.gif")
    assert not usable_image_url(None)
    assert not usable_image_url(123)
