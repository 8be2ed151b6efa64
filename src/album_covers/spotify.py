"""
Spotify Web API album search for cover images.

Uses the client credentials flow. Album search results carry their images
inline, so the largest image becomes the candidate's source URL.
"""

from __future__ import annotations

import base64
import logging
import os
import time
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


def build_album_query(query: CoverQuery) -> str:
    """Field-filtered Spotify search string."""
    title = query.title.replace('"', "")
    artist = query.artist.replace('"', "")
    return f'album:"{title}" artist:"{artist}"'


def largest_image_url(images: Any) -> str | None:
    """Pick the URL of the widest image in a Spotify images array."""
    if not isinstance(images, list):
        return None
    best_url = None
    best_width = -1
    for image in images:
        if not isinstance(image, dict) or not isinstance(image.get("url"), str):
            continue
        width = image.get("width")
        if not isinstance(width, int | float):
            width = 0
        if width > best_width:
            best_url = image["url"]
            best_width = width
    return best_url


def parse_album(album: Any) -> Candidate | None:
    """Convert one album search item into a Candidate; None when it has no image."""
    if not isinstance(album, dict):
        return None
    image_url = largest_image_url(album.get("images"))
    if not image_url:
        return None
    artists = frozenset(
        a["name"]
        for a in album.get("artists") or []
        if isinstance(a, dict) and isinstance(a.get("name"), str)
    )
    return Candidate(
        title=str(album.get("name") or ""),
        artist_names=artists,
        source_url=image_url,
        release_id=album.get("id"),
    )


class SpotifyClient(HttpProvider):
    """
    Spotify album search.

    Uses client credentials flow for authentication. The access token is
    cached until 60 seconds before it expires.
    """

    name = "spotify"

    BASE_URL = "https://api.spotify.com/v1"
    AUTH_URL = "https://accounts.spotify.com/api/token"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: httpx.Timeout | float = 5.0,
        search_limit: int = 10,
    ):
        """
        Initialize Spotify client with client credentials flow.

        Args:
            rate_limiter: Shared per-provider rate limiter
            client_id: Spotify client ID (env: SPOTIFY_CLIENT_ID)
            client_secret: Spotify client secret (env: SPOTIFY_CLIENT_SECRET)
            timeout: Connect/read timeouts
            search_limit: Max albums requested per search

        Raises:
            ConfigurationError: If either credential is missing
        """
        self.client_id = client_id or os.getenv("SPOTIFY_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("SPOTIFY_CLIENT_SECRET")

        if not self.client_id or not self.client_secret:
            raise ConfigurationError(
                "Spotify client_id and client_secret required "
                "(set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET env vars). "
                f"Got: client_id={'set' if self.client_id else 'missing'}, "
                f"client_secret={'set' if self.client_secret else 'missing'}"
            )

        super().__init__(timeout=timeout)
        self.rate_limiter = rate_limiter
        self.search_limit = search_limit
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0

    def _get_access_token(self) -> str:
        """Get access token using client credentials flow, cached until expiry."""
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        credentials = f"{self.client_id}:{self.client_secret}"
        b64_credentials = base64.b64encode(credentials.encode()).decode()

        try:
            response = self.client.post(
                self.AUTH_URL,
                headers={
                    "Authorization": f"Basic {b64_credentials}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
            response.raise_for_status()
            data = response.json()
            token = data["access_token"]
            expires_in = float(data.get("expires_in", 3600))
            if not isinstance(token, str) or not token:
                raise ValueError("access_token missing")
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(self.name, f"token request HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(self.name, f"token request failed: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderUnavailable(self.name, "malformed token response") from e

        self._access_token = token
        self._token_expires_at = time.time() + expires_in - 60  # 60s buffer
        logger.debug(f"Obtained Spotify access token (expires in {expires_in}s)")

        return token

    def search(self, query: CoverQuery) -> Iterator[Candidate]:
        token = self._get_access_token()
        self.rate_limiter.await_turn(self.name)
        logger.info(f"Calling Spotify for {query.artist} - {query.title}")

        data = self._get_json(
            f"{self.BASE_URL}/search",
            params={
                "q": build_album_query(query),
                "type": "album",
                "limit": str(self.search_limit),
            },
            headers={"Authorization": f"Bearer {token}"},
        )
        if not isinstance(data, dict):
            raise ProviderUnavailable(self.name, "unexpected response shape")

        try:
            albums = (data.get("albums") or {}).get("items") or []
            candidates = [c for c in map(parse_album, albums) if c is not None]
        except MALFORMED_PAYLOAD_ERRORS as e:
            raise ProviderUnavailable(self.name, "malformed response") from e
        yield from candidates


## Tests


def test_build_album_query():
    assert build_album_query(CoverQuery("Daft Punk", "Discovery")) == (
        'album:"Discovery" artist:"Daft Punk"'
    )


def test_build_album_query_drops_quotes():
    assert build_album_query(CoverQuery('Say "Hi"', "X")) == 'album:"X" artist:"Say Hi"'


def test_largest_image_url():
    images = [
        {"url": "https://i.scdn.co/image/small", "width": 64, "height": 64},
        {"url": "https://i.scdn.co/image/large", "width": 640, "height": 640},
        {"url": "https://i.scdn.co/image/medium", "width": 300, "height": 300},
    ]
    assert largest_image_url(images) == "https://i.scdn.co/image/large"


def test_largest_image_url_empty():
    assert largest_image_url([]) is None
    assert largest_image_url(None) is None


def test_largest_image_url_ignores_non_numeric_width():
    images = [
        {"url": "https://i.scdn.co/image/odd", "width": "wide"},
        {"url": "https://i.scdn.co/image/large", "width": 640},
    ]
    assert largest_image_url(images) == "https://i.scdn.co/image/large"


def test_parse_album_skips_items_without_images():
    assert parse_album({"name": "Discovery", "images": []}) is None
    assert parse_album("not an album") is None
