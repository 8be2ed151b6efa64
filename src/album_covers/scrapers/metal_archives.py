"""
Encyclopaedia Metallum (Metal Archives) album search.

The advanced-search AJAX endpoint returns DataTables rows whose cells are
HTML fragments: band link, album link, release type, date. The cover image
only appears on the album page, so resolve_url fetches that page.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from typing import Any

import httpx

from album_covers.provider import Candidate, CoverQuery, ProviderUnavailable
from album_covers.rate_limiter import RateLimiter
from album_covers.scrapers.base import PageScraper, collect_anchors

logger = logging.getLogger(__name__)

COVER_IMAGE_PATTERN = re.compile(
    r'<img[^>]+src="(https://www\.metal-archives\.com/images/(?:\d+/)+[^"]+?)"'
)


def parse_search_row(row: Any) -> Candidate | None:
    """Convert one aaData row into a Candidate carrying the album page URL."""
    if not isinstance(row, list) or len(row) < 2:
        return None

    band_anchors = collect_anchors(str(row[0]))
    album_anchors = collect_anchors(str(row[1]))
    if not album_anchors:
        return None

    album_href, album_title = album_anchors[0]
    if not album_href:
        return None

    return Candidate(
        title=album_title,
        artist_names=frozenset(text for _, text in band_anchors if text),
        page_url=album_href,
    )


def extract_cover_url(html: str) -> str | None:
    match = COVER_IMAGE_PATTERN.search(html)
    return match.group(1) if match else None


class MetalArchivesScraper(PageScraper):
    """Album search against www.metal-archives.com."""

    name = "metal_archives"

    BASE_URL = "https://www.metal-archives.com"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        timeout: httpx.Timeout | float = 5.0,
        search_limit: int = 10,
    ):
        super().__init__(timeout=timeout)
        self.rate_limiter = rate_limiter
        self.search_limit = search_limit

    def search(self, query: CoverQuery) -> Iterator[Candidate]:
        self.rate_limiter.await_turn(self.name)
        logger.info(f"Calling Metal Archives for {query.artist} - {query.title}")

        data = self._get_json(
            f"{self.BASE_URL}/search/ajax-advanced/searching/albums/",
            params={
                "bandName": query.artist,
                "releaseTitle": query.title,
                "iDisplayStart": "0",
                "iDisplayLength": str(self.search_limit),
            },
            headers={"X-Requested-With": "XMLHttpRequest"},
        )
        if not isinstance(data, dict):
            raise ProviderUnavailable(self.name, "unexpected response shape")

        rows = data.get("aaData") or []
        if not isinstance(rows, list):
            raise ProviderUnavailable(self.name, "unexpected response shape")
        for row in rows:
            candidate = parse_search_row(row)
            if candidate is not None:
                yield candidate

    def resolve_url(self, candidate: Candidate) -> str | None:
        if candidate.source_url:
            return candidate.source_url
        if not candidate.page_url:
            return None

        self.rate_limiter.await_turn(self.name)
        html = self._fetch_page(candidate.page_url)
        url = extract_cover_url(html)
        if url is None:
            logger.debug(f"No cover image on Metal Archives page {candidate.page_url}")
        return url


## Tests


def test_parse_search_row():
    row = [
        '<a href="https://www.metal-archives.com/bands/Death/141" title="Death (US)">Death</a>',
        '<a href="https://www.metal-archives.com/albums/Death/Symbolic/606">Symbolic</a>',
        "Full-length",
        "March 21st, 1995 <!-- 1995-03-21 -->",
    ]
    candidate = parse_search_row(row)
    assert candidate is not None
    assert candidate.title == "Symbolic"
    assert candidate.artist_names == frozenset({"Death"})
    assert candidate.page_url == "https://www.metal-archives.com/albums/Death/Symbolic/606"
    assert candidate.source_url is None


def test_parse_search_row_rejects_malformed():
    assert parse_search_row("not a row") is None
    assert parse_search_row(["only band"]) is None
    assert parse_search_row(["<a href='x'>Band</a>", "no link"]) is None


def test_extract_cover_url():
    html = (
        '<a class="image" id="cover" title="Death - Symbolic" '
        'href="https://www.metal-archives.com/images/6/0/6/606.jpg?4122">'
        '<img src="https://www.metal-archives.com/images/6/0/6/606.jpg?4122" '
        'title="Death - Symbolic" alt="Death - Symbolic" border="0" /></a>'
    )
    assert extract_cover_url(html) == "https://www.metal-archives.com/images/6/0/6/606.jpg?4122"


def test_extract_cover_url_missing():
    assert extract_cover_url("<html><body>No cover</body></html>") is None
