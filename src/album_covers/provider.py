"""
Common capability interface for cover-art providers.

Each provider turns a search query into zero or more candidates and, where the
candidate only carries an identifier, resolves it to a concrete image URL.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ProviderUnavailable(Exception):
    """A provider failed for this query (network, timeout, bad status, malformed payload)."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider} unavailable: {reason}")
        self.provider = provider
        self.reason = reason


# Raised when a payload parses as JSON but has unexpected field types
MALFORMED_PAYLOAD_ERRORS = (AttributeError, TypeError, ValueError, KeyError)


class ReleaseStatus(StrEnum):
    """Release status as reported by the provider."""

    OFFICIAL = "official"
    OTHER = "other"


@dataclass(frozen=True)
class CoverQuery:
    """Search key derived from a record's artist name and album title."""

    artist: str
    title: str


@dataclass
class Candidate:
    """One provider-returned possible cover match, before scoring."""

    title: str
    artist_names: frozenset[str] = field(default_factory=frozenset)
    source_url: str | None = None
    status: ReleaseStatus | None = None
    provider_score: int | None = None
    release_group_id: str | None = None
    release_id: str | None = None
    page_url: str | None = None


class CoverProvider(ABC):
    """
    Base class for cover-art providers.

    Subclasses set `name` (also the rate-limit id) and implement `search`.
    Providers whose candidates need a second lookup override `resolve_url`.
    """

    name: str = ""

    @abstractmethod
    def search(self, query: CoverQuery) -> Iterator[Candidate]:
        """
        Search the provider for covers matching query.

        Lazy and single-use: each call performs live network I/O.

        Raises:
            ProviderUnavailable: On network failure or malformed response
        """
        ...

    def resolve_url(self, candidate: Candidate) -> str | None:
        """Concrete image URL for a candidate, or None if it has no usable image."""
        return candidate.source_url

    def close(self) -> None:
        """Release network resources."""

    def __enter__(self) -> CoverProvider:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class HttpProvider(CoverProvider):
    """
    Provider backed by a lazily created httpx.Client.

    Wraps transport and status errors in ProviderUnavailable so callers only
    have one failure type to handle.
    """

    user_agent: str = "album-covers/0.1.0 ( https://github.com/album-covers/album-covers )"
    follow_redirects: bool = False

    def __init__(self, timeout: httpx.Timeout | float = 5.0, headers: dict[str, str] | None = None):
        self.timeout = timeout
        self.headers = {"User-Agent": self.user_agent, **(headers or {})}
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialized HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers=self.headers,
                follow_redirects=self.follow_redirects,
            )
        return self._client

    def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        """GET that raises ProviderUnavailable on any failure."""
        try:
            response = self.client.get(url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(self.name, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(self.name, f"{type(e).__name__}: {e}") from e
        return response

    def _get_json(self, url: str, **kwargs: Any) -> Any:
        response = self._get(url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable(self.name, "malformed JSON response") from e

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None


## Tests


def test_provider_unavailable_message():
    err = ProviderUnavailable("discogs", "HTTP 503")
    assert err.provider == "discogs"
    assert "discogs unavailable: HTTP 503" in str(err)


def test_candidate_defaults():
    candidate = Candidate(title="Abbey Road")
    assert candidate.artist_names == frozenset()
    assert candidate.source_url is None
    assert candidate.status is None


def test_default_resolve_url_returns_source_url():
    class _Static(CoverProvider):
        name = "static"

        def search(self, query: CoverQuery) -> Iterator[Candidate]:
            yield Candidate(title=query.title, source_url="https://img.example/a.jpg")

    with _Static() as provider:
        candidate = next(provider.search(CoverQuery("a", "b")))
        assert provider.resolve_url(candidate) == "https://img.example/a.jpg"
