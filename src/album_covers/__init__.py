__all__ = (
    "Config",
    "ConfigurationError",
    # Catalog
    "Album",
    "Artist",
    "AlbumStore",
    "CatalogDB",
    # Providers
    "Candidate",
    "CoverProvider",
    "CoverQuery",
    "ProviderUnavailable",
    "MusicBrainzClient",
    "DiscogsClient",
    "SpotifyClient",
    "MetalArchivesScraper",
    "RateYourMusicScraper",
    "RateLimiter",
    # Resolution
    "DEFAULT_COVER",
    "CoverResolver",
    "ResolvedCover",
    "ResolutionState",
    "ScoringPolicy",
    "needs_cover",
    # Images
    "FetchError",
    "ImageCache",
    "ImageProcessor",
    # Pipeline
    "CoverPipeline",
    "ProxyResponse",
    "ProxyStatus",
    "SweepResult",
    "build_pipeline",
)

from album_covers.catalog_db import Album, AlbumStore, Artist, CatalogDB
from album_covers.config import Config, ConfigurationError
from album_covers.discogs import DiscogsClient
from album_covers.image_cache import ImageCache
from album_covers.image_processor import FetchError, ImageProcessor
from album_covers.musicbrainz import MusicBrainzClient
from album_covers.pipeline import (
    CoverPipeline,
    ProxyResponse,
    ProxyStatus,
    SweepResult,
    build_pipeline,
)
from album_covers.provider import Candidate, CoverProvider, CoverQuery, ProviderUnavailable
from album_covers.rate_limiter import RateLimiter
from album_covers.resolver import (
    DEFAULT_COVER,
    CoverResolver,
    ResolutionState,
    ResolvedCover,
    ScoringPolicy,
    needs_cover,
)
from album_covers.scrapers import MetalArchivesScraper, RateYourMusicScraper
from album_covers.spotify import SpotifyClient
