"""
MusicBrainz release search backed by the Cover Art Archive.

Searches releases by artist and title, then resolves the chosen release to a
Cover Art Archive front image, preferring the release-group image and falling
back to the release image.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import httpx

from album_covers.provider import (
    Candidate,
    CoverQuery,
    MALFORMED_PAYLOAD_ERRORS,
    HttpProvider,
    ProviderUnavailable,
    ReleaseStatus,
)
from album_covers.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def escape_lucene_phrase(value: str) -> str:
    """Escape a value for use inside a quoted Lucene phrase."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_release_query(query: CoverQuery) -> str:
    """Lucene query matching both artist and release title."""
    return (
        f'artist:"{escape_lucene_phrase(query.artist)}" '
        f'AND release:"{escape_lucene_phrase(query.title)}"'
    )


def parse_release(release: dict[str, Any]) -> Candidate | None:
    """
    Convert one release from a MusicBrainz search response into a Candidate.

    Returns None for entries without a release id.
    """
    release_id = release.get("id")
    if not release_id:
        return None

    artist_names: set[str] = set()
    for credit in release.get("artist-credit", []) or []:
        if not isinstance(credit, dict):
            continue
        artist = credit.get("artist")
        for name in (credit.get("name"), artist.get("name") if isinstance(artist, dict) else None):
            if isinstance(name, str) and name:
                artist_names.add(name)

    status = None
    if release.get("status"):
        status = (
            ReleaseStatus.OFFICIAL
            if str(release["status"]).lower() == "official"
            else ReleaseStatus.OTHER
        )

    score = release.get("score")
    release_group = release.get("release-group")
    if not isinstance(release_group, dict):
        release_group = {}

    return Candidate(
        title=str(release.get("title") or ""),
        artist_names=frozenset(artist_names),
        status=status,
        provider_score=int(score) if isinstance(score, int | str) and str(score).isdigit() else None,
        release_group_id=release_group.get("id"),
        release_id=release_id,
    )


class MusicBrainzClient(HttpProvider):
    """
    MusicBrainz release search with Cover Art Archive image resolution.

    Search calls wait for the "musicbrainz" rate-limit turn; every archive
    existence check waits for the "coverartarchive" turn.
    """

    name = "musicbrainz"
    archive_limit_id = "coverartarchive"

    BASE_URL = "https://musicbrainz.org/ws/2"
    ARCHIVE_URL = "https://coverartarchive.org"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        timeout: httpx.Timeout | float = 5.0,
        search_limit: int = 10,
        image_size: int = 500,
        user_agent: str | None = None,
    ):
        """
        Initialize MusicBrainz client.

        Args:
            rate_limiter: Shared per-provider rate limiter
            timeout: Connect/read timeouts for every request
            search_limit: Max releases requested per search
            image_size: Cover Art Archive thumbnail size (250, 500 or 1200)
            user_agent: Descriptive User-Agent required by the MusicBrainz ToS
        """
        if user_agent:
            self.user_agent = user_agent
        super().__init__(timeout=timeout, headers={"Accept": "application/json"})
        self.rate_limiter = rate_limiter
        self.search_limit = search_limit
        self.image_size = image_size

    def search(self, query: CoverQuery) -> Iterator[Candidate]:
        self.rate_limiter.await_turn(self.name)
        logger.info(f"Calling MusicBrainz for {query.artist} - {query.title}")

        data = self._get_json(
            f"{self.BASE_URL}/release/",
            params={
                "query": build_release_query(query),
                "fmt": "json",
                "limit": str(self.search_limit),
            },
        )
        if not isinstance(data, dict):
            raise ProviderUnavailable(self.name, "unexpected response shape")

        releases = data.get("releases") or []
        if not isinstance(releases, list):
            raise ProviderUnavailable(self.name, "unexpected response shape")
        logger.debug(f"MusicBrainz returned {len(releases)} release(s)")
        for release in releases:
            if not isinstance(release, dict):
                continue
            try:
                candidate = parse_release(release)
            except MALFORMED_PAYLOAD_ERRORS as e:
                raise ProviderUnavailable(self.name, "malformed response") from e
            if candidate is not None:
                yield candidate

    def cover_urls(self, candidate: Candidate) -> list[str]:
        """Archive URLs to try for a candidate, release group first."""
        urls = []
        if candidate.release_group_id:
            urls.append(
                f"{self.ARCHIVE_URL}/release-group/{candidate.release_group_id}/front-{self.image_size}"
            )
        if candidate.release_id:
            urls.append(f"{self.ARCHIVE_URL}/release/{candidate.release_id}/front-{self.image_size}")
        return urls

    def resolve_url(self, candidate: Candidate) -> str | None:
        for url in self.cover_urls(candidate):
            if self.cover_exists(url):
                logger.info(f"Found Cover Art Archive image: {url}")
                return url
        return None

    def cover_exists(self, url: str) -> bool:
        """
        Lightweight existence check for an archive image.

        2xx and 3xx count as present (the archive redirects to its storage
        backend). 404 and network failures mean "try the next URL".
        """
        self.rate_limiter.await_turn(self.archive_limit_id)
        try:
            response = self.client.head(url, follow_redirects=False)
        except httpx.HTTPError as e:
            logger.debug(f"Cover Art Archive check failed for {url}: {e}")
            return False

        if 200 <= response.status_code < 400:
            return True
        if response.status_code != 404:
            logger.debug(f"Cover Art Archive returned {response.status_code} for {url}")
        return False


## Tests


def test_build_release_query_escapes_quotes():
    query = build_release_query(CoverQuery('The "Band"', "Title"))
    assert query == 'artist:"The \\"Band\\"" AND release:"Title"'


def test_parse_release_extracts_fields():
    candidate = parse_release(
        {
            "id": "rel-1",
            "score": 98,
            "title": "OK Computer",
            "status": "Official",
            "artist-credit": [{"name": "Radiohead", "artist": {"id": "a1", "name": "Radiohead"}}],
            "release-group": {"id": "rg-1"},
        }
    )
    assert candidate is not None
    assert candidate.title == "OK Computer"
    assert candidate.artist_names == frozenset({"Radiohead"})
    assert candidate.status == ReleaseStatus.OFFICIAL
    assert candidate.provider_score == 98
    assert candidate.release_group_id == "rg-1"
    assert candidate.release_id == "rel-1"


def test_parse_release_without_id():
    assert parse_release({"title": "No id"}) is None


def test_cover_urls_prefer_release_group():
    client = MusicBrainzClient(RateLimiter({}), image_size=250)
    urls = client.cover_urls(Candidate(title="x", release_group_id="rg", release_id="rel"))
    assert urls == [
        "https://coverartarchive.org/release-group/rg/front-250",
        "https://coverartarchive.org/release/rel/front-250",
    ]


def test_parse_release_tolerates_odd_field_types():
    candidate = parse_release(
        {
            "id": "r1",
            "title": "Abbey Road",
            "release-group": "rg-as-string",
            "artist-credit": [{"name": 42, "artist": "The Beatles"}, {"name": "The Beatles"}],
        }
    )
    assert candidate is not None
    assert candidate.release_group_id is None
    assert candidate.artist_names == frozenset({"The Beatles"})
