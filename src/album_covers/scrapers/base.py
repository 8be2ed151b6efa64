from __future__ import annotations

import logging
from html.parser import HTMLParser

from album_covers.provider import HttpProvider

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class PageScraper(HttpProvider):
    """
    Base class for providers that scrape public web pages.

    Pages are fetched with a browser-like User-Agent and redirects are
    followed. Fetch failures surface as ProviderUnavailable.
    """

    user_agent = BROWSER_USER_AGENT
    follow_redirects = True

    def _fetch_page(self, url: str, **kwargs) -> str:  # pyright: ignore[reportMissingParameterType]
        """Fetch a page as text."""
        response = self._get(url, **kwargs)
        return response.text


def absolute_url(url: str, base: str) -> str:
    """Resolve protocol-relative and root-relative URLs against a site base."""
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("/"):
        return f"{base.rstrip('/')}{url}"
    return url


class AnchorCollector(HTMLParser):
    """Collect (href, text) pairs for every anchor in an HTML fragment."""

    def __init__(self) -> None:
        super().__init__()
        self.anchors: list[tuple[str, str]] = []
        self._href: str | None = None
        self._text = ""

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == "a":
            self._href = dict(attrs).get("href") or ""
            self._text = ""

    def handle_endtag(self, tag: str) -> None:
        if tag == "a" and self._href is not None:
            self.anchors.append((self._href, " ".join(self._text.split())))
            self._href = None

    def handle_data(self, data: str) -> None:
        if self._href is not None:
            self._text += data


def collect_anchors(fragment: str) -> list[tuple[str, str]]:
    parser = AnchorCollector()
    parser.feed(fragment)
    parser.close()
    return parser.anchors


## Tests


def test_absolute_url():
    assert absolute_url("//e.snmc.io/i/600/cover.jpg", "https://rateyourmusic.com") == (
        "https://e.snmc.io/i/600/cover.jpg"
    )
    assert absolute_url("/release/album/x/", "https://rateyourmusic.com/") == (
        "https://rateyourmusic.com/release/album/x/"
    )
    assert absolute_url("https://a.example/b", "https://c.example") == "https://a.example/b"


def test_collect_anchors():
    anchors = collect_anchors(
        '<a href="https://www.metal-archives.com/bands/Death/141" title="Death (US)">Death</a>'
    )
    assert anchors == [("https://www.metal-archives.com/bands/Death/141", "Death")]


def test_collect_anchors_ignores_text_outside_links():
    anchors = collect_anchors('by <a href="/artist/x">  The   X </a> and more')
    assert anchors == [("/artist/x", "The X")]
