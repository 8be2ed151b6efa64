"""Pytest configuration and shared fixtures for album-covers tests."""

from __future__ import annotations

from collections.abc import Iterator
from io import BytesIO

import pytest
from PIL import Image

from album_covers.provider import Candidate, CoverProvider, CoverQuery, ProviderUnavailable
from album_covers.rate_limiter import RateLimiter

# =============================================================================
# Environment isolation
# =============================================================================

_CREDENTIAL_VARS = ("DISCOGS_TOKEN", "SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep credentials and ALBUM_COVERS_* overrides from the host out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("ALBUM_COVERS_") or name in _CREDENTIAL_VARS:
            monkeypatch.delenv(name, raising=False)


# =============================================================================
# Provider fakes
# =============================================================================


class ScriptedProvider(CoverProvider):
    """
    In-memory provider returning canned candidates.

    `results` maps a CoverQuery to its candidates; queries not listed return
    nothing. `urls` maps candidate titles to resolved image URLs (defaults to
    the candidate's source_url). Set `fail` to make every search raise.
    """

    def __init__(
        self,
        name: str,
        results: dict[CoverQuery, list[Candidate]] | None = None,
        urls: dict[str, str | None] | None = None,
        fail: bool = False,
    ):
        self.name = name
        self.results = results or {}
        self.urls = urls or {}
        self.fail = fail
        self.queries: list[CoverQuery] = []
        self.resolved: list[Candidate] = []
        self.closed = False

    def search(self, query: CoverQuery) -> Iterator[Candidate]:
        self.queries.append(query)
        if self.fail:
            raise ProviderUnavailable(self.name, "simulated outage")
        yield from self.results.get(query, [])

    def resolve_url(self, candidate: Candidate) -> str | None:
        self.resolved.append(candidate)
        if candidate.title in self.urls:
            return self.urls[candidate.title]
        return candidate.source_url

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def no_wait_limiter():
    """RateLimiter with every interval at zero."""
    return RateLimiter({}, default_interval=0.0)


# =============================================================================
# Images
# =============================================================================


def make_image_bytes(width: int, height: int, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    """Encode a solid-color test image."""
    buf = BytesIO()
    color = (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)
    Image.new(mode, (width, height), color[: len(mode)]).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    """Factory for PNG bytes of a given size."""

    def _make(width: int = 1200, height: int = 800, mode: str = "RGB") -> bytes:
        return make_image_bytes(width, height, "PNG", mode)

    return _make


# =============================================================================
# Catalog
# =============================================================================


@pytest.fixture
def catalog(tmp_path):
    """Empty CatalogDB in a temporary directory."""
    from album_covers.catalog_db import CatalogDB

    return CatalogDB(tmp_path / "catalog.sqlite")
