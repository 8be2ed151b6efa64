from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field


class ConfigurationError(Exception):
    """Required configuration (usually provider credentials) is missing or invalid."""


class HttpConfig(BaseModel):
    """Network timeouts and identification."""

    connect_timeout_s: float = Field(default=5.0, gt=0)
    read_timeout_s: float = Field(default=5.0, gt=0)
    api_user_agent: str = Field(
        default="album-covers/0.1.0 ( https://github.com/album-covers/album-covers )"
    )
    image_user_agent: str = Field(default="Mozilla/5.0")


class ProvidersConfig(BaseModel):
    """Provider chain and credentials."""

    # Priority order; catalog providers first, marketplace last
    order: list[str] = Field(default_factory=lambda: ["musicbrainz", "spotify", "discogs"])

    # API credentials (read from env vars if not provided)
    discogs_token: str | None = Field(default=None)
    spotify_client_id: str | None = Field(default=None)
    spotify_client_secret: str | None = Field(default=None)

    search_limit: int = Field(default=10, ge=1, le=100)
    caa_image_size: int = Field(default=500)


class LimitsConfig(BaseModel):
    """Minimum seconds between calls, per provider."""

    intervals: dict[str, float] = Field(
        default_factory=lambda: {
            "musicbrainz": 1.2,
            "coverartarchive": 0.5,
            "discogs": 1.0,
            "spotify": 0.2,
            "metal_archives": 2.0,
            "rateyourmusic": 5.0,
        }
    )
    default_interval: float = Field(default=1.0, ge=0)


class ScoringConfig(BaseModel):
    """Candidate scoring weights and acceptance policy."""

    title_exact: int = Field(default=60, ge=0)
    title_partial: int = Field(default=30, ge=0)
    artist_exact: int = Field(default=40, ge=0)
    artist_partial: int = Field(default=20, ge=0)
    official_bonus: int = Field(default=10, ge=0)
    native_score_divisor: int = Field(default=5, ge=1)
    native_score_cap: int = Field(default=20, ge=0)
    acceptance_threshold: int = Field(default=50, ge=0)

    # Pause after every resolution, independent of per-provider limits
    cooldown_seconds: float = Field(default=1.1, ge=0)


class ImageConfig(BaseModel):
    """Processed image shape."""

    canonical_size: int = Field(default=600, ge=1)


class CacheConfig(BaseModel):
    """In-memory image cache and HTTP freshness."""

    max_entries: int = Field(default=200, ge=1)
    max_age_days: int = Field(default=7, ge=0)


class PreloadConfig(BaseModel):
    """Background cache warm-up."""

    workers: int = Field(default=5, ge=1)


class DatabaseConfig(BaseModel):
    """Catalog database configuration."""

    catalog_path: Path = Field(default=Path("catalog.sqlite"))


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")  # DEBUG, INFO, WARNING, ERROR
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


class Config(BaseModel):
    """
    Main configuration for album-covers.

    Loads from TOML file with optional environment variable overrides.
    """

    http: HttpConfig = Field(default_factory=HttpConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    preload: PreloadConfig = Field(default_factory=PreloadConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """
        Load configuration from TOML file with environment variable overrides.

        Environment variables take precedence and follow the pattern:
        ALBUM_COVERS_<SECTION>_<KEY> (e.g., ALBUM_COVERS_CACHE_MAX_ENTRIES)

        All values are gathered into a single dictionary first, then validated
        by Pydantic to ensure consistent type checking and coercion.
        """
        config_dict: dict[str, object] = {}

        if config_path and config_path.exists():
            config_dict = tomllib.loads(config_path.read_text())

        config_dict = cls._merge_env_overrides(config_dict)
        return cls.model_validate(config_dict)

    @staticmethod
    def _section(config_dict: dict[str, object], name: str) -> dict[str, object]:
        section = config_dict.setdefault(name, {})
        if not isinstance(section, dict):
            section = {}
            config_dict[name] = section
        return section

    @classmethod
    def _merge_env_overrides(cls, config_dict: dict[str, object]) -> dict[str, object]:
        """
        Merge environment variable overrides into config dictionary.

        Returns a new dictionary with env vars applied, ready for Pydantic validation.
        """
        env_prefix = "ALBUM_COVERS_"

        http = cls._section(config_dict, "http")
        if connect := os.getenv(f"{env_prefix}HTTP_CONNECT_TIMEOUT_S"):
            http["connect_timeout_s"] = connect
        if read := os.getenv(f"{env_prefix}HTTP_READ_TIMEOUT_S"):
            http["read_timeout_s"] = read
        if api_ua := os.getenv(f"{env_prefix}HTTP_API_USER_AGENT"):
            http["api_user_agent"] = api_ua

        providers = cls._section(config_dict, "providers")
        if order := os.getenv(f"{env_prefix}PROVIDERS_ORDER"):
            providers["order"] = [p.strip() for p in order.split(",") if p.strip()]
        if search_limit := os.getenv(f"{env_prefix}PROVIDERS_SEARCH_LIMIT"):
            providers["search_limit"] = search_limit

        # API credentials from env
        if discogs_token := os.getenv("DISCOGS_TOKEN"):
            providers["discogs_token"] = discogs_token
        if spotify_id := os.getenv("SPOTIFY_CLIENT_ID"):
            providers["spotify_client_id"] = spotify_id
        if spotify_secret := os.getenv("SPOTIFY_CLIENT_SECRET"):
            providers["spotify_client_secret"] = spotify_secret

        scoring = cls._section(config_dict, "scoring")
        if threshold := os.getenv(f"{env_prefix}SCORING_ACCEPTANCE_THRESHOLD"):
            scoring["acceptance_threshold"] = threshold
        if cooldown := os.getenv(f"{env_prefix}SCORING_COOLDOWN_SECONDS"):
            scoring["cooldown_seconds"] = cooldown

        image = cls._section(config_dict, "image")
        if size := os.getenv(f"{env_prefix}IMAGE_CANONICAL_SIZE"):
            image["canonical_size"] = size

        cache = cls._section(config_dict, "cache")
        if max_entries := os.getenv(f"{env_prefix}CACHE_MAX_ENTRIES"):
            cache["max_entries"] = max_entries
        if max_age := os.getenv(f"{env_prefix}CACHE_MAX_AGE_DAYS"):
            cache["max_age_days"] = max_age

        preload = cls._section(config_dict, "preload")
        if workers := os.getenv(f"{env_prefix}PRELOAD_WORKERS"):
            preload["workers"] = workers

        database = cls._section(config_dict, "database")
        if catalog_path := os.getenv(f"{env_prefix}DATABASE_CATALOG_PATH"):
            database["catalog_path"] = catalog_path

        logging_config = cls._section(config_dict, "logging")
        if log_level := os.getenv(f"{env_prefix}LOGGING_LEVEL"):
            logging_config["level"] = log_level
        if log_format := os.getenv(f"{env_prefix}LOGGING_FORMAT"):
            logging_config["format"] = log_format

        return config_dict


## Tests


def test_config_defaults():
    config = Config()
    assert config.providers.order == ["musicbrainz", "spotify", "discogs"]
    assert config.limits.intervals["musicbrainz"] == 1.2
    assert config.scoring.acceptance_threshold == 50
    assert config.scoring.cooldown_seconds == 1.1
    assert config.image.canonical_size == 600
    assert config.cache.max_entries == 200
    assert config.preload.workers == 5
    assert config.http.connect_timeout_s == 5.0


def test_config_from_dict():
    config = Config.model_validate(
        {
            "providers": {"order": ["discogs"]},
            "cache": {"max_entries": 10},
            "database": {"catalog_path": "/tmp/catalog.db"},
        }
    )
    assert config.providers.order == ["discogs"]
    assert config.cache.max_entries == 10
    assert config.database.catalog_path == Path("/tmp/catalog.db")


def test_config_load_nonexistent_file():
    config = Config.load(Path("/nonexistent/config.toml"))
    assert config.cache.max_entries == 200
