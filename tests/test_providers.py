"""Tests for the provider clients against mocked HTTP responses."""

from __future__ import annotations

import re

import httpx
import pytest
from freezegun import freeze_time

from album_covers.config import ConfigurationError
from album_covers.discogs import DiscogsClient
from album_covers.musicbrainz import MusicBrainzClient
from album_covers.provider import Candidate, CoverQuery, ProviderUnavailable, ReleaseStatus
from album_covers.scrapers import MetalArchivesScraper, RateYourMusicScraper
from album_covers.spotify import SpotifyClient

MB_SEARCH = re.compile(r"https://musicbrainz\.org/ws/2/release/\?.*")
DISCOGS_SEARCH = re.compile(r"https://api\.discogs\.com/database/search\?.*")
SPOTIFY_SEARCH = re.compile(r"https://api\.spotify\.com/v1/search\?.*")
SPOTIFY_TOKEN = "https://accounts.spotify.com/api/token"


class TestMusicBrainzClient:
    """MusicBrainz search and Cover Art Archive resolution."""

    def test_search_parses_releases(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(
            url=MB_SEARCH,
            json={
                "releases": [
                    {
                        "id": "rel-1",
                        "score": 100,
                        "title": "Abbey Road",
                        "status": "Official",
                        "artist-credit": [{"name": "The Beatles", "artist": {"name": "The Beatles"}}],
                        "release-group": {"id": "rg-1"},
                    },
                    {"title": "Missing id"},
                ]
            },
        )

        with MusicBrainzClient(no_wait_limiter) as client:
            candidates = list(client.search(CoverQuery("The Beatles", "Abbey Road")))

        assert len(candidates) == 1
        assert candidates[0].title == "Abbey Road"
        assert candidates[0].artist_names == frozenset({"The Beatles"})
        assert candidates[0].status == ReleaseStatus.OFFICIAL
        assert candidates[0].provider_score == 100

        request = httpx_mock.get_requests()[0]
        assert request.url.params["fmt"] == "json"
        assert request.url.params["query"] == 'artist:"The Beatles" AND release:"Abbey Road"'
        assert request.headers["User-Agent"].startswith("album-covers/")

    def test_custom_user_agent(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(url=MB_SEARCH, json={"releases": []})

        with MusicBrainzClient(no_wait_limiter, user_agent="my-app/1.0 (ops@example.com)") as client:
            assert list(client.search(CoverQuery("a", "b"))) == []

        assert httpx_mock.get_requests()[0].headers["User-Agent"] == "my-app/1.0 (ops@example.com)"

    def test_search_server_error_raises_unavailable(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(url=MB_SEARCH, status_code=503)

        with MusicBrainzClient(no_wait_limiter) as client:
            with pytest.raises(ProviderUnavailable) as exc_info:
                list(client.search(CoverQuery("a", "b")))

        assert exc_info.value.provider == "musicbrainz"
        assert exc_info.value.reason == "HTTP 503"

    def test_search_timeout_raises_unavailable(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=MB_SEARCH)

        with MusicBrainzClient(no_wait_limiter) as client:
            with pytest.raises(ProviderUnavailable):
                list(client.search(CoverQuery("a", "b")))

    def test_search_malformed_json_raises_unavailable(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(url=MB_SEARCH, text="<html>maintenance</html>")

        with MusicBrainzClient(no_wait_limiter) as client:
            with pytest.raises(ProviderUnavailable, match="malformed JSON"):
                list(client.search(CoverQuery("a", "b")))

    def test_resolve_url_falls_back_to_release_image(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(
            method="HEAD",
            url="https://coverartarchive.org/release-group/rg-1/front-500",
            status_code=404,
        )
        httpx_mock.add_response(
            method="HEAD",
            url="https://coverartarchive.org/release/rel-1/front-500",
            status_code=307,
            headers={"Location": "https://archive.org/download/x/front.jpg"},
        )

        candidate = Candidate(title="x", release_group_id="rg-1", release_id="rel-1")
        with MusicBrainzClient(no_wait_limiter) as client:
            url = client.resolve_url(candidate)

        assert url == "https://coverartarchive.org/release/rel-1/front-500"

    def test_resolve_url_none_when_archive_has_nothing(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(
            method="HEAD",
            url="https://coverartarchive.org/release/rel-9/front-500",
            status_code=404,
        )

        with MusicBrainzClient(no_wait_limiter) as client:
            assert client.resolve_url(Candidate(title="x", release_id="rel-9")) is None

    def test_cover_check_network_error_means_missing(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with MusicBrainzClient(no_wait_limiter) as client:
            assert client.cover_exists("https://coverartarchive.org/release/r/front-500") is False


class TestDiscogsClient:
    """Discogs database search."""

    def test_requires_token(self, no_wait_limiter):
        with pytest.raises(ConfigurationError):
            DiscogsClient(no_wait_limiter)

    def test_token_from_environment(self, no_wait_limiter, monkeypatch):
        monkeypatch.setenv("DISCOGS_TOKEN", "env-token")  # pyright: ignore[reportUnknownMemberType]
        client = DiscogsClient(no_wait_limiter)
        assert client.token == "env-token"

    def test_search_filters_placeholders(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(
            url=DISCOGS_SEARCH,
            json={
                "results": [
                    {
                        "id": 1,
                        "title": "Nirvana (2) - Nevermind",
                        "cover_image": "https://s.discogs.com/images/spacer.gif",
                    },
                    {
                        "id": 2,
                        "master_id": 13814,
                        "title": "Nirvana - Nevermind",
                        "cover_image": "https://i.discogs.com/abc/R-2.jpeg",
                    },
                ]
            },
        )

        with DiscogsClient(no_wait_limiter, token="secret") as client:
            candidates = list(client.search(CoverQuery("Nirvana", "Nevermind")))

        assert len(candidates) == 1
        assert candidates[0].artist_names == frozenset({"Nirvana"})
        assert candidates[0].source_url == "https://i.discogs.com/abc/R-2.jpeg"
        assert candidates[0].release_group_id == "13814"

        request = httpx_mock.get_requests()[0]
        assert request.headers["Authorization"] == "Discogs token=secret"
        assert request.url.params["release_title"] == "Nevermind"

    def test_search_rate_limited_raises_unavailable(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(url=DISCOGS_SEARCH, status_code=429)

        with DiscogsClient(no_wait_limiter, token="secret") as client:
            with pytest.raises(ProviderUnavailable, match="HTTP 429"):
                list(client.search(CoverQuery("a", "b")))


class TestSpotifyClient:
    """Spotify client-credentials search."""

    ALBUMS = {
        "albums": {
            "items": [
                {
                    "id": "album-1",
                    "name": "Discovery",
                    "artists": [{"name": "Daft Punk"}],
                    "images": [
                        {"url": "https://i.scdn.co/image/64", "width": 64},
                        {"url": "https://i.scdn.co/image/640", "width": 640},
                    ],
                },
                {"id": "album-2", "name": "No Images", "artists": [], "images": []},
            ]
        }
    }

    def test_requires_both_credentials(self, no_wait_limiter):
        with pytest.raises(ConfigurationError):
            SpotifyClient(no_wait_limiter, client_id="id")

    def test_search_uses_bearer_token(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(
            method="POST", url=SPOTIFY_TOKEN, json={"access_token": "tok", "expires_in": 3600}
        )
        httpx_mock.add_response(url=SPOTIFY_SEARCH, json=self.ALBUMS)

        with SpotifyClient(no_wait_limiter, client_id="id", client_secret="secret") as client:
            candidates = list(client.search(CoverQuery("Daft Punk", "Discovery")))

        assert len(candidates) == 1
        assert candidates[0].source_url == "https://i.scdn.co/image/640"
        assert candidates[0].release_id == "album-1"

        token_request, search_request = httpx_mock.get_requests()
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert search_request.headers["Authorization"] == "Bearer tok"
        assert search_request.url.params["type"] == "album"

    def test_token_is_reused_until_expiry(self, no_wait_limiter, httpx_mock):
        with freeze_time("2025-01-01 12:00:00") as frozen:
            httpx_mock.add_response(
                method="POST", url=SPOTIFY_TOKEN, json={"access_token": "first", "expires_in": 3600}
            )
            httpx_mock.add_response(url=SPOTIFY_SEARCH, json=self.ALBUMS)
            httpx_mock.add_response(url=SPOTIFY_SEARCH, json=self.ALBUMS)

            client = SpotifyClient(no_wait_limiter, client_id="id", client_secret="secret")
            list(client.search(CoverQuery("Daft Punk", "Discovery")))
            frozen.tick(1800)
            list(client.search(CoverQuery("Daft Punk", "Discovery")))

            token_requests = [r for r in httpx_mock.get_requests() if r.method == "POST"]
            assert len(token_requests) == 1

            # Token is refreshed 60 seconds before it expires
            httpx_mock.add_response(
                method="POST", url=SPOTIFY_TOKEN, json={"access_token": "second", "expires_in": 3600}
            )
            httpx_mock.add_response(url=SPOTIFY_SEARCH, json=self.ALBUMS)
            frozen.tick(1750)
            list(client.search(CoverQuery("Daft Punk", "Discovery")))
            client.close()

        requests = httpx_mock.get_requests()
        assert [r.method for r in requests].count("POST") == 2
        assert requests[-1].headers["Authorization"] == "Bearer second"

    def test_token_failure_raises_unavailable(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(method="POST", url=SPOTIFY_TOKEN, status_code=401)

        with SpotifyClient(no_wait_limiter, client_id="id", client_secret="bad") as client:
            with pytest.raises(ProviderUnavailable, match="token request HTTP 401"):
                list(client.search(CoverQuery("a", "b")))


class TestMetalArchivesScraper:
    """Metal Archives AJAX search plus album page scrape."""

    SEARCH = re.compile(r"https://www\.metal-archives\.com/search/ajax-advanced/searching/albums/\?.*")
    ALBUM_PAGE = "https://www.metal-archives.com/albums/Metallica/Master_of_Puppets/547"

    def test_search_then_resolve_from_album_page(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(
            url=self.SEARCH,
            json={
                "iTotalRecords": 1,
                "aaData": [
                    [
                        '<a href="https://www.metal-archives.com/bands/Metallica/125">Metallica</a>',
                        f'<a href="{self.ALBUM_PAGE}">Master of Puppets</a>',
                        "Full-length",
                        "March 3rd, 1986",
                    ]
                ],
            },
        )
        httpx_mock.add_response(
            url=self.ALBUM_PAGE,
            text=(
                '<div class="album_img"><a id="cover" href="#">'
                '<img src="https://www.metal-archives.com/images/5/4/7/547.jpg?0104" /></a></div>'
            ),
        )

        with MetalArchivesScraper(no_wait_limiter) as scraper:
            candidates = list(scraper.search(CoverQuery("Metallica", "Master of Puppets")))
            assert len(candidates) == 1
            assert candidates[0].artist_names == frozenset({"Metallica"})
            url = scraper.resolve_url(candidates[0])

        assert url == "https://www.metal-archives.com/images/5/4/7/547.jpg?0104"
        search_request = httpx_mock.get_requests()[0]
        assert search_request.headers["X-Requested-With"] == "XMLHttpRequest"
        assert search_request.url.params["bandName"] == "Metallica"

    def test_album_page_without_cover(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(url=self.ALBUM_PAGE, text="<html><body>No image</body></html>")

        with MetalArchivesScraper(no_wait_limiter) as scraper:
            assert scraper.resolve_url(Candidate(title="x", page_url=self.ALBUM_PAGE)) is None


class TestRateYourMusicScraper:
    """RateYourMusic search page scrape."""

    def test_search_parses_result_rows(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(
            url=re.compile(r"https://rateyourmusic\.com/search\?.*"),
            text="""
            <table>
              <tr>
                <td><img src="//e.snmc.io/i/300/s/1/cover.jpg"></td>
                <td><a class="searchpage" href="/release/album/bjork/homogenic/">Homogenic</a>
                    <a class="artist" href="/artist/bjork">Björk</a></td>
              </tr>
            </table>
            """,
        )

        with RateYourMusicScraper(no_wait_limiter) as scraper:
            candidates = list(scraper.search(CoverQuery("Björk", "Homogenic")))

        assert len(candidates) == 1
        assert candidates[0].title == "Homogenic"
        assert candidates[0].artist_names == frozenset({"Björk"})
        assert candidates[0].source_url == "https://e.snmc.io/i/300/s/1/cover.jpg"
        request = httpx_mock.get_requests()[0]
        assert request.url.params["searchterm"] == "Björk Homogenic"
        assert "Mozilla/5.0" in request.headers["User-Agent"]

    def test_blocked_page_raises_unavailable(self, no_wait_limiter, httpx_mock):
        httpx_mock.add_response(url=re.compile(r"https://rateyourmusic\.com/search\?.*"), status_code=403)

        with RateYourMusicScraper(no_wait_limiter) as scraper:
            with pytest.raises(ProviderUnavailable, match="HTTP 403"):
                list(scraper.search(CoverQuery("a", "b")))
