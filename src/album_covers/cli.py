"""CLI for album-covers using Typer and Rich.

Drives the cover pipeline against a local SQLite catalog: resolve single
covers, sweep albums missing covers, manage catalog albums and fetch
normalized cover images.
"""

from __future__ import annotations

import json
import logging
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console

from album_covers.catalog_db import Album, Artist, CatalogDB
from album_covers.config import Config
from album_covers.console import (
    cover_label,
    make_table,
    print_error,
    print_success,
    print_warning,
    set_console,
    status,
    status_label,
    sweep_progress,
)
from album_covers.console import (
    print as cprint,
)
from album_covers.pipeline import CoverPipeline, ProxyStatus, build_pipeline, build_resolver
from album_covers.safe_logging import (
    configure_rich_logging,
    configure_safe_logging,
    redact_credentials,
)

logger = logging.getLogger(__name__)


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    TEXT = "text"
    JSON = "json"


class ExitCode:
    """Standard exit codes for CLI commands."""

    SUCCESS = 0
    ERROR = 1
    NO_RESULTS = 2


app = typer.Typer(
    name="covers",
    help="album-covers: resolve, normalize and cache album cover art",
    no_args_is_help=True,
    add_completion=False,
)

album_app = typer.Typer(help="Catalog album management")
app.add_typer(album_app, name="album")


class AppState:
    """Global application state passed between commands."""

    config: Config
    output_format: OutputFormat
    verbose: int


state = AppState()


def _print_json(data: Any) -> None:
    cprint(json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True)


def _open_catalog() -> CatalogDB:
    return CatalogDB(state.config.database.catalog_path)


def _open_pipeline(catalog: CatalogDB) -> CoverPipeline:
    return build_pipeline(state.config, catalog)


@app.callback()
def main(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to configuration TOML file", exists=True),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Catalog database path"),
    ] = None,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", help="Output format"),
    ] = OutputFormat.TEXT,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
) -> None:
    """album-covers: resolve, normalize and cache album cover art."""
    # CLI > Env > Config File > Defaults
    cfg = Config.load(config_path)
    if db:
        cfg.database.catalog_path = db

    if verbose > 0:
        log_level = logging.DEBUG if verbose >= 2 else logging.INFO
    else:
        log_level = getattr(logging, cfg.logging.level.upper(), logging.WARNING)

    if output == OutputFormat.JSON:
        # Plain log lines on stderr keep stdout parseable
        configure_safe_logging(level=log_level, format_string=cfg.logging.format)
        set_console(Console())
    else:
        set_console(configure_rich_logging(level=log_level, show_time=True, show_path=False))

    # Suppress external library logging unless very verbose (-vvv)
    if verbose < 3:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    if config_path:
        logger.info(f"Loaded config from {config_path}")
    logger.debug(f"Logging configured: level={logging.getLevelName(log_level)}")

    state.config = cfg
    state.output_format = output
    state.verbose = verbose


# ====================================================================
# COVER COMMANDS
# ====================================================================


@app.command()
def resolve(
    artist: Annotated[str, typer.Option("--artist", "-a", help="Artist name")],
    title: Annotated[str, typer.Option("--title", "-t", help="Album title")],
    explain: Annotated[bool, typer.Option(help="Show per-provider resolution trace")] = False,
) -> None:
    """Resolve an artist/album pair to a cover image URL.

    Examples:
        covers resolve -a "Radiohead" -t "OK Computer"
        covers resolve -a "Sigur Rós" -t "( )" --explain
    """
    resolver = build_resolver(state.config)
    try:
        with status(f"Resolving cover for {artist} - {title}..."):
            result, trace = resolver.resolve_with_trace(artist, title)
    finally:
        for provider in resolver.providers:
            provider.close()

    if state.output_format == OutputFormat.JSON:
        output_dict: dict[str, Any] = {
            "artist": artist,
            "title": title,
            "url": result.url,
            "provider": result.provider,
            "score": result.score,
            "state": str(result.state),
        }
        if explain:
            output_dict["trace"] = trace.to_dict()
        _print_json(output_dict)
    else:
        if result.is_default:
            cprint(f"[yellow]⚠ No cover found: {artist} - {title}[/yellow]")
        else:
            cprint(f"[green]✓ Resolved: {artist} - {title}[/green]")
            cprint(f"  URL: {result.url}")
            cprint(f"  Provider: {result.provider} (score {result.score}, {result.state})")

        if explain:
            table = make_table("Resolution Trace", ["Provider", "Query", "Candidates", "Best", "State"])
            for attempt in trace.attempts:
                table.add_row(
                    attempt.provider,
                    "ascii-folded" if attempt.used_fallback_query else "primary",
                    str(attempt.candidates),
                    "-" if attempt.best_score is None else str(attempt.best_score),
                    attempt.error or str(attempt.state),
                )
            cprint(table)
            cprint(f"States: {' → '.join(str(s) for s in trace.states)}")

    raise typer.Exit(code=ExitCode.NO_RESULTS if result.is_default else ExitCode.SUCCESS)


@app.command()
def sweep() -> None:
    """Resolve covers for every album without a usable one.

    Albums are processed one at a time; a failing album is reported and the
    sweep continues.
    """
    catalog = _open_catalog()
    with _open_pipeline(catalog) as pipeline:
        if state.output_format == OutputFormat.JSON:
            result = pipeline.resolve_missing_covers()
        else:
            with sweep_progress() as advance:
                result = pipeline.resolve_missing_covers(progress_callback=advance)

    if state.output_format == OutputFormat.JSON:
        _print_json(result.to_dict())
    else:
        if result.total == 0:
            print_success("All albums already have covers")
        else:
            cprint(
                f"Processed {result.processed}/{result.total}: "
                f"[green]{result.found} found[/green], "
                f"[yellow]{result.defaulted} default[/yellow], "
                f"[red]{result.failed} failed[/red]"
            )
            for album_id, error in result.errors:
                print_warning(f"album {album_id}: {error}")

    raise typer.Exit(code=ExitCode.ERROR if result.failed else ExitCode.SUCCESS)


@app.command()
def fetch(
    url: Annotated[str, typer.Argument(help="Cover image URL")],
    output_file: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Write the normalized JPEG to this file"),
    ] = None,
    etag: Annotated[
        str | None,
        typer.Option("--etag", help="Validator to send as If-None-Match"),
    ] = None,
) -> None:
    """Fetch, normalize and serve a cover image the way the image proxy does."""
    catalog = _open_catalog()
    with _open_pipeline(catalog) as pipeline:
        response = pipeline.serve_cover_proxy(url, if_none_match=etag)

    if response.body is not None and output_file is not None:
        output_file.write_bytes(response.body)

    if state.output_format == OutputFormat.JSON:
        _print_json(
            {
                "url": url,
                "status": int(response.status),
                "headers": response.headers,
                "size": len(response.body) if response.body is not None else None,
                "written_to": str(output_file) if output_file and response.body else None,
            }
        )
    else:
        cprint(status_label(response.status))
        for name, value in response.headers.items():
            cprint(f"  {name}: {value}", markup=False)
        if response.body is not None:
            cprint(f"  {len(response.body)} bytes")
            if output_file is not None:
                print_success(f"Wrote {output_file}")

    raise typer.Exit(
        code=ExitCode.NO_RESULTS if response.status == ProxyStatus.NOT_FOUND else ExitCode.SUCCESS
    )


@app.command()
def limits() -> None:
    """Show configured per-provider rate limits and credential status."""
    intervals = dict(state.config.limits.intervals)
    credentials = redact_credentials(
        state.config.providers.model_dump(
            include={"discogs_token", "spotify_client_id", "spotify_client_secret"}
        )
    )

    if state.output_format == OutputFormat.JSON:
        _print_json(
            {
                "intervals": intervals,
                "default_interval": state.config.limits.default_interval,
                "cooldown_seconds": state.config.scoring.cooldown_seconds,
                "provider_order": state.config.providers.order,
                "credentials": credentials,
            }
        )
    else:
        table = make_table("Rate Limits", ["Provider", "Min interval (s)", "Enabled"])
        enabled = set(state.config.providers.order)
        for provider_id, interval in sorted(intervals.items()):
            table.add_row(provider_id, f"{interval:.2f}", "yes" if provider_id in enabled else "")
        cprint(table)
        cprint(f"Default interval: {state.config.limits.default_interval:.2f}s")
        cprint(f"Cooldown after each resolution: {state.config.scoring.cooldown_seconds:.2f}s")
        for key, masked in credentials.items():
            cprint(f"{key}: {masked}")

    raise typer.Exit(code=ExitCode.SUCCESS)


# ====================================================================
# ALBUM COMMANDS
# ====================================================================


def _print_albums(albums: list[Album], title: str) -> None:
    if state.output_format == OutputFormat.JSON:
        _print_json([album.to_dict() for album in albums])
        return

    table = make_table(title, ["ID", "Artist", "Title", "Year", "Genre", "Rating", "Cover"])
    for album in albums:
        table.add_row(
            str(album.id),
            album.artist.name,
            album.title,
            str(album.release_year or ""),
            album.genre or "",
            "" if album.rating is None else f"{album.rating:g}",
            cover_label(album.cover_url),
        )
    cprint(table)


@album_app.command("add")
def album_add(
    artist: Annotated[str, typer.Option("--artist", "-a", help="Artist name")],
    title: Annotated[str, typer.Option("--title", "-t", help="Album title")],
    year: Annotated[int | None, typer.Option(help="Release year")] = None,
    genre: Annotated[str | None, typer.Option(help="Genre")] = None,
    rating: Annotated[float | None, typer.Option(help="Rating")] = None,
    no_resolve: Annotated[
        bool, typer.Option("--no-resolve", help="Skip cover resolution")
    ] = False,
) -> None:
    """Add an album to the catalog and resolve its cover."""
    catalog = _open_catalog()
    album = catalog.save(
        Album(
            title=title,
            artist=Artist(name=artist),
            release_year=year,
            genre=genre,
            rating=rating,
        )
    )

    if not no_resolve:
        with _open_pipeline(catalog) as pipeline:
            with status(f"Resolving cover for {artist} - {title}..."):
                pipeline.resolve_and_persist_cover(album)

    if state.output_format == OutputFormat.JSON:
        _print_json(album.to_dict())
    else:
        print_success(f"Added album {album.id}: {artist} - {title}")
        if album.cover_url:
            cprint(f"  Cover: {album.cover_url}", markup=False)

    raise typer.Exit(code=ExitCode.SUCCESS)


@album_app.command("list")
def album_list(
    missing: Annotated[bool, typer.Option(help="Only albums without a usable cover")] = False,
    artist: Annotated[str | None, typer.Option("--artist", "-a", help="Filter by artist name")] = None,
    genre: Annotated[str | None, typer.Option(help="Filter by genre (case-insensitive)")] = None,
    year: Annotated[int | None, typer.Option(help="Filter by release year")] = None,
    min_rating: Annotated[float | None, typer.Option(help="Minimum rating")] = None,
) -> None:
    """List catalog albums."""
    catalog = _open_catalog()

    if missing:
        albums = catalog.find_records_missing_cover()
    elif artist:
        albums = catalog.find_by_artist(Artist(name=artist))
    elif genre:
        albums = catalog.find_by_genre(genre)
    elif year is not None:
        albums = catalog.find_by_year(year)
    elif min_rating is not None:
        albums = catalog.find_by_min_rating(min_rating)
    else:
        albums = catalog.find_all()

    _print_albums(albums, "Albums missing covers" if missing else "Albums")
    raise typer.Exit(code=ExitCode.SUCCESS if albums else ExitCode.NO_RESULTS)


@album_app.command("delete")
def album_delete(
    album_id: Annotated[int, typer.Argument(help="Album ID")],
) -> None:
    """Delete an album from the catalog."""
    catalog = _open_catalog()
    if not catalog.delete_by_id(album_id):
        print_error(f"Album {album_id} not found")
        raise typer.Exit(code=ExitCode.NO_RESULTS)

    print_success(f"Deleted album {album_id}")
    raise typer.Exit(code=ExitCode.SUCCESS)


# ====================================================================
# ENTRY POINT
# ====================================================================


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
