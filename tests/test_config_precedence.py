"""Test configuration precedence: CLI > Env > TOML > Defaults."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError
from typer.testing import CliRunner

from album_covers.cli import app
from album_covers.config import Config


def write_toml(content: str) -> Path:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(content)
        return Path(f.name)


def test_toml_loading():
    """Test that TOML configuration is loaded correctly."""
    config_path = write_toml(
        """
[http]
connect_timeout_s = 2.5
read_timeout_s = 10.0
api_user_agent = "my-covers/2.0 ( ops@example.com )"

[providers]
order = ["discogs", "musicbrainz"]
search_limit = 5

[limits]
default_interval = 0.5

[limits.intervals]
musicbrainz = 2.0

[scoring]
acceptance_threshold = 70
cooldown_seconds = 0

[image]
canonical_size = 300

[cache]
max_entries = 50
max_age_days = 1

[preload]
workers = 2

[database]
catalog_path = "custom_catalog.sqlite"

[logging]
level = "DEBUG"
"""
    )

    try:
        config = Config.load(config_path)

        assert config.http.connect_timeout_s == 2.5
        assert config.http.read_timeout_s == 10.0
        assert config.http.api_user_agent == "my-covers/2.0 ( ops@example.com )"

        assert config.providers.order == ["discogs", "musicbrainz"]
        assert config.providers.search_limit == 5

        # A TOML table replaces the whole interval map
        assert config.limits.intervals == {"musicbrainz": 2.0}
        assert config.limits.default_interval == 0.5

        assert config.scoring.acceptance_threshold == 70
        assert config.scoring.cooldown_seconds == 0
        assert config.scoring.title_exact == 60  # default

        assert config.image.canonical_size == 300
        assert config.cache.max_entries == 50
        assert config.cache.max_age_days == 1
        assert config.preload.workers == 2
        assert config.database.catalog_path == Path("custom_catalog.sqlite")
        assert config.logging.level == "DEBUG"

    finally:
        config_path.unlink()


def test_env_overrides_toml(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that environment variables override TOML configuration."""
    config_path = write_toml(
        """
[providers]
order = ["musicbrainz"]

[cache]
max_entries = 50

[scoring]
acceptance_threshold = 70
"""
    )

    try:
        monkeypatch.setenv("ALBUM_COVERS_PROVIDERS_ORDER", "spotify, discogs")  # pyright: ignore[reportUnknownMemberType]
        monkeypatch.setenv("ALBUM_COVERS_CACHE_MAX_ENTRIES", "25")  # pyright: ignore[reportUnknownMemberType]
        monkeypatch.setenv("ALBUM_COVERS_SCORING_ACCEPTANCE_THRESHOLD", "40")  # pyright: ignore[reportUnknownMemberType]

        config = Config.load(config_path)

        assert config.providers.order == ["spotify", "discogs"]  # from env, not TOML
        assert config.cache.max_entries == 25  # from env, not 50 from TOML
        assert config.scoring.acceptance_threshold == 40  # from env, not 70 from TOML

    finally:
        config_path.unlink()


def test_cli_db_precedence_over_env_and_toml(monkeypatch, tmp_path):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that --db wins over both the env var and the TOML catalog path."""
    toml_db = tmp_path / "toml.sqlite"
    env_db = tmp_path / "env.sqlite"
    cli_db = tmp_path / "cli.sqlite"
    config_path = write_toml(f'[database]\ncatalog_path = "{toml_db.as_posix()}"\n')

    try:
        monkeypatch.setenv("ALBUM_COVERS_DATABASE_CATALOG_PATH", str(env_db))  # pyright: ignore[reportUnknownMemberType]

        runner = CliRunner()
        result = runner.invoke(
            app,
            [
                "--config",
                str(config_path),
                "--db",
                str(cli_db),
                "album",
                "add",
                "-a",
                "Radiohead",
                "-t",
                "OK Computer",
                "--no-resolve",
            ],
        )

        assert result.exit_code == 0, result.output
        assert cli_db.exists()
        assert not env_db.exists()
        assert not toml_db.exists()

    finally:
        config_path.unlink()


def test_env_db_precedence_over_toml(monkeypatch, tmp_path):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    toml_db = tmp_path / "toml.sqlite"
    env_db = tmp_path / "env.sqlite"
    config_path = write_toml(f'[database]\ncatalog_path = "{toml_db.as_posix()}"\n')

    try:
        monkeypatch.setenv("ALBUM_COVERS_DATABASE_CATALOG_PATH", str(env_db))  # pyright: ignore[reportUnknownMemberType]

        result = CliRunner().invoke(
            app,
            ["--config", str(config_path), "album", "add", "-a", "Blur", "-t", "Parklife", "--no-resolve"],
        )

        assert result.exit_code == 0, result.output
        assert env_db.exists()
        assert not toml_db.exists()

    finally:
        config_path.unlink()


def test_credentials_from_env(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that provider credentials come from their conventional env vars."""
    monkeypatch.setenv("DISCOGS_TOKEN", "discogs-secret")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "spotify-id")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("SPOTIFY_CLIENT_SECRET", "spotify-secret")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()

    assert config.providers.discogs_token == "discogs-secret"
    assert config.providers.spotify_client_id == "spotify-id"
    assert config.providers.spotify_client_secret == "spotify-secret"


def test_all_numeric_env_vars(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that numeric environment variables are coerced by validation."""
    monkeypatch.setenv("ALBUM_COVERS_HTTP_CONNECT_TIMEOUT_S", "1.5")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("ALBUM_COVERS_HTTP_READ_TIMEOUT_S", "7")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("ALBUM_COVERS_PROVIDERS_SEARCH_LIMIT", "3")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("ALBUM_COVERS_SCORING_COOLDOWN_SECONDS", "0.25")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("ALBUM_COVERS_IMAGE_CANONICAL_SIZE", "250")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("ALBUM_COVERS_CACHE_MAX_AGE_DAYS", "30")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("ALBUM_COVERS_PRELOAD_WORKERS", "8")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()

    assert config.http.connect_timeout_s == 1.5
    assert config.http.read_timeout_s == 7.0
    assert config.providers.search_limit == 3
    assert config.scoring.cooldown_seconds == 0.25
    assert config.image.canonical_size == 250
    assert config.cache.max_age_days == 30
    assert config.preload.workers == 8


def test_empty_env_var_is_ignored(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    monkeypatch.setenv("ALBUM_COVERS_CACHE_MAX_ENTRIES", "")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()

    assert config.cache.max_entries == 200


def test_invalid_env_value_fails_validation(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    monkeypatch.setenv("ALBUM_COVERS_CACHE_MAX_ENTRIES", "0")  # pyright: ignore[reportUnknownMemberType]

    with pytest.raises(ValidationError):
        Config.load()


def test_logging_env_vars(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that logging environment variables work correctly."""
    monkeypatch.setenv("ALBUM_COVERS_LOGGING_LEVEL", "DEBUG")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("ALBUM_COVERS_LOGGING_FORMAT", "%(levelname)s %(message)s")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()

    assert config.logging.level == "DEBUG"
    assert config.logging.format == "%(levelname)s %(message)s"
