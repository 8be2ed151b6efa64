"""
RateYourMusic release search.

Scrapes the public search page. Each result row links the release page and
its artists and shows a thumbnail served from the e.snmc.io image host.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from html.parser import HTMLParser

import httpx

from album_covers.provider import Candidate, CoverQuery
from album_covers.rate_limiter import RateLimiter
from album_covers.scrapers.base import PageScraper, absolute_url

logger = logging.getLogger(__name__)

IMAGE_HOST_MARKERS = ("e.snmc.io/i/", "/cover/")


def is_cover_image(src: str) -> bool:
    return any(marker in src for marker in IMAGE_HOST_MARKERS)


@dataclass
class _ResultRow:
    title: str = ""
    release_href: str | None = None
    artists: list[str] = field(default_factory=list)
    image_src: str | None = None


class SearchResultParser(HTMLParser):
    """
    Parse RateYourMusic search result rows.

    A row is a <tr>; inside it the release link has class "searchpage",
    artist links have class "artist", and the first cover-host <img> is the
    thumbnail.
    """

    def __init__(self) -> None:
        super().__init__()
        self.rows: list[_ResultRow] = []
        self._row: _ResultRow | None = None
        self._link_kind: str | None = None
        self._link_text = ""

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attr = dict(attrs)
        if tag == "tr":
            self._row = _ResultRow()
        elif self._row is None:
            return
        elif tag == "img":
            src = attr.get("src") or attr.get("data-src") or ""
            if self._row.image_src is None and is_cover_image(src):
                self._row.image_src = src
        elif tag == "a":
            classes = (attr.get("class") or "").split()
            if "searchpage" in classes:
                self._link_kind = "release"
                self._row.release_href = attr.get("href")
            elif "artist" in classes:
                self._link_kind = "artist"
            self._link_text = ""

    def handle_endtag(self, tag: str) -> None:
        if tag == "a" and self._row is not None and self._link_kind is not None:
            text = " ".join(self._link_text.split())
            if self._link_kind == "release":
                self._row.title = text
            elif text:
                self._row.artists.append(text)
            self._link_kind = None
        elif tag == "tr" and self._row is not None:
            if self._row.title:
                self.rows.append(self._row)
            self._row = None

    def handle_data(self, data: str) -> None:
        if self._link_kind is not None:
            self._link_text += data


def parse_search_page(html: str, base_url: str) -> list[Candidate]:
    parser = SearchResultParser()
    parser.feed(html)
    parser.close()

    candidates = []
    for row in parser.rows:
        if not row.image_src:
            continue
        candidates.append(
            Candidate(
                title=row.title,
                artist_names=frozenset(row.artists),
                source_url=absolute_url(row.image_src, base_url),
                page_url=absolute_url(row.release_href, base_url) if row.release_href else None,
            )
        )
    return candidates


class RateYourMusicScraper(PageScraper):
    """Release search against rateyourmusic.com."""

    name = "rateyourmusic"

    BASE_URL = "https://rateyourmusic.com"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        timeout: httpx.Timeout | float = 5.0,
    ):
        super().__init__(timeout=timeout)
        self.rate_limiter = rate_limiter

    def search(self, query: CoverQuery) -> Iterator[Candidate]:
        self.rate_limiter.await_turn(self.name)
        logger.info(f"Calling RateYourMusic for {query.artist} - {query.title}")

        html = self._fetch_page(
            f"{self.BASE_URL}/search",
            params={"searchterm": f"{query.artist} {query.title}", "searchtype": "l"},
        )
        candidates = parse_search_page(html, self.BASE_URL)
        logger.debug(f"RateYourMusic returned {len(candidates)} release(s) with covers")
        yield from candidates


## Tests

_SEARCH_HTML = """
<table class="mbgen">
  <tr class="infobox">
    <td><img src="//e.snmc.io/i/300/s/abc/1234/cover.jpg" alt="cover"></td>
    <td>
      <a class="searchpage" href="/release/album/radiohead/ok-computer/">OK Computer</a>
      by <a class="artist" href="/artist/radiohead">Radiohead</a>
    </td>
  </tr>
  <tr class="infobox">
    <td><img src="/images/blank.gif"></td>
    <td><a class="searchpage" href="/release/album/x/y/">No Cover</a></td>
  </tr>
  <tr><td>header row without links</td></tr>
</table>
"""


def test_parse_search_page():
    candidates = parse_search_page(_SEARCH_HTML, "https://rateyourmusic.com")
    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate.title == "OK Computer"
    assert candidate.artist_names == frozenset({"Radiohead"})
    assert candidate.source_url == "https://e.snmc.io/i/300/s/abc/1234/cover.jpg"
    assert candidate.page_url == "https://rateyourmusic.com/release/album/radiohead/ok-computer/"


def test_is_cover_image():
    assert is_cover_image("https://e.snmc.io/i/600/w/abc.jpg")
    assert is_cover_image("https://cdn.example/cover/abc.jpg")
    assert not is_cover_image("/images/blank.gif")
