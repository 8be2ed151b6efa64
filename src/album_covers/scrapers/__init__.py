"""
Page-scraping cover providers.

Used for genres the catalog APIs cover poorly; both are opt-in through the
provider order in configuration.
"""

from __future__ import annotations

__all__ = [
    "PageScraper",
    "MetalArchivesScraper",
    "RateYourMusicScraper",
]

from album_covers.scrapers.base import PageScraper
from album_covers.scrapers.metal_archives import MetalArchivesScraper
from album_covers.scrapers.rateyourmusic import RateYourMusicScraper
