"""CLI for scrobble-years using Typer and Rich.

Import Last.fm listening history, resolve original release years against a
MusicBrainz mirror, and inspect the results.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape

from scrobble_years.catalog import CatalogBackend, CatalogError, DBCatalog
from scrobble_years.config import Config
from scrobble_years.console import (
    print_error,
    print_success,
    print_warning,
    resolution_progress,
    set_console,
    year_histogram_table,
)
from scrobble_years.console import (
    print as cprint,
)
from scrobble_years.fuzzy_lookup import FuzzyLookup
from scrobble_years.identifier_lookup import IdentifierKind, IdentifierLookup
from scrobble_years.ingest import ImportResult, LastFmError, import_recent_tracks, load_payload
from scrobble_years.normalize import first_credited_artist, normalize_artist, normalize_track
from scrobble_years.safe_logging import configure_rich_logging, redact_dict
from scrobble_years.scrobbles_db import ReleaseYearStatus, ScrobblesDB, ScrobbleStoreError
from scrobble_years.service import (
    FindReleaseYearsRequest,
    FindReleaseYearsResponse,
    ReleaseYearService,
)


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
    name="scrobble-years",
    help="Scrobble-years: original release years for your Last.fm listening history",
    no_args_is_help=True,
    add_completion=False,
)


# Global state (set by callback)
class AppState:
    """Global application state passed between commands."""

    config: Config
    output_format: OutputFormat
    verbose: int


state = AppState()


def _open_catalog(cfg: Config) -> CatalogBackend:
    """Create the catalog from config (patched in tests)."""
    return DBCatalog.from_config(cfg.catalog)


def _open_store(cfg: Config) -> ScrobblesDB:
    try:
        return ScrobblesDB(cfg.store.path)
    except ScrobbleStoreError as e:
        print_error(escape(str(e)))
        raise typer.Exit(code=ExitCode.ERROR) from e


def _emit_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def _resolve_username(username: str | None) -> str:
    resolved = username or state.config.service.default_username
    if not resolved:
        print_error("No username given. Pass --username or set service.default_username")
        raise typer.Exit(code=ExitCode.ERROR)
    return resolved


def _catalog_or_exit() -> CatalogBackend:
    try:
        return _open_catalog(state.config)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR) from e


@app.callback()
def main(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to configuration TOML file", exists=True),
    ] = None,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", help="Output format"),
    ] = OutputFormat.TEXT,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    store_path: Annotated[
        Path | None,
        typer.Option(help="Scrobble store database path"),
    ] = None,
    db_url: Annotated[
        str | None,
        typer.Option(help="MusicBrainz catalog database URL"),
    ] = None,
) -> None:
    """Scrobble-years: original release years for your Last.fm listening history."""
    logger = logging.getLogger(__name__)

    # Load config (TOML + env vars)
    cfg = Config.load(config_path)

    # CLI > Env > Config File > Defaults
    if store_path:
        cfg.store.path = store_path
    if db_url:
        cfg.catalog.db_url = db_url

    if verbose > 0:
        log_level = logging.DEBUG if verbose >= 2 else logging.INFO
    else:
        level_str = cfg.logging.level.upper()
        log_level = getattr(logging, level_str, logging.WARNING)

    configure_rich_logging(
        level=log_level,
        format_string=cfg.logging.format,
        redact_secrets=cfg.logging.redact_secrets,
        show_time=True,
        show_path=False,
    )
    set_console(Console(soft_wrap=True))

    # SQL echo only at -vvv
    if verbose < 3:
        logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    if config_path:
        logger.info(f"Loaded config from {config_path}")
    logger.debug(f"Effective config: {redact_dict(cfg.model_dump(mode='json'))}")

    state.config = cfg
    state.output_format = output
    state.verbose = verbose


@app.command("import")
def import_(
    payloads: Annotated[
        list[Path],
        typer.Argument(help="Saved user.getRecentTracks JSON responses", exists=True, dir_okay=False),
    ],
    username: Annotated[str | None, typer.Option("--username", "-u", help="Last.fm username")] = None,
    year: Annotated[
        int | None, typer.Option("--year", "-y", help="Only import scrobbles from this year")
    ] = None,
) -> None:
    """Import scrobbles from saved Last.fm recent-tracks responses.

    Examples:
        scrobble-years import -u listener page1.json page2.json
    """
    user = _resolve_username(username)
    store = _open_store(state.config)

    total = ImportResult()
    for payload_path in payloads:
        try:
            result = import_recent_tracks(store, user, load_payload(payload_path), year=year)
        except (LastFmError, ScrobbleStoreError) as e:
            print_error(escape(f"{payload_path.name}: {e}"))
            raise typer.Exit(code=ExitCode.ERROR) from e
        total.inserted += result.inserted
        total.duplicates += result.duplicates
        total.skipped += result.skipped

    if state.output_format == OutputFormat.JSON:
        _emit_json(
            {
                "username": user,
                "inserted": total.inserted,
                "duplicates": total.duplicates,
                "skipped": total.skipped,
            }
        )
    else:
        print_success(f"Imported {total.inserted} scrobbles for {escape(user)}")
        if total.duplicates:
            cprint(f"  Already stored: {total.duplicates}")
        if total.skipped:
            cprint(f"  Skipped: {total.skipped}")


async def _run_resolution(
    service: ReleaseYearService,
    catalog: CatalogBackend,
    request: FindReleaseYearsRequest,
) -> FindReleaseYearsResponse:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Ctrl-C finishes in-flight lookups and reports what was done
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    try:
        async with catalog:
            return await service.find_release_years(request, cancel=cancel)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.remove_signal_handler(signal.SIGINT)


@app.command()
def resolve(
    username: Annotated[str | None, typer.Option("--username", "-u", help="Last.fm username")] = None,
    year: Annotated[
        int | None, typer.Option("--year", "-y", help="Listening year (default: current year)")
    ] = None,
    workers: Annotated[
        int | None, typer.Option("--workers", "-w", min=1, help="Scrobbles resolved concurrently")
    ] = None,
    retry_not_found: Annotated[
        bool, typer.Option(help="Re-check scrobbles previously marked not found")
    ] = False,
) -> None:
    """Resolve original release years for a listener's scrobbles.

    Pass 1 uses album and track MBIDs; Pass 2 searches by artist and title.

    Examples:
        scrobble-years resolve -u listener -y 2023
        scrobble-years -o json resolve -u listener --workers 4 --retry-not-found
    """
    cfg = state.config
    if workers is not None:
        cfg.resolution.workers = workers

    request = FindReleaseYearsRequest(
        username=username, year=year, retry_not_found=retry_not_found
    )
    store = _open_store(cfg)
    catalog = _catalog_or_exit()

    if state.output_format == OutputFormat.JSON:
        service = ReleaseYearService(catalog, store, cfg.service, cfg.resolution)
        response = asyncio.run(_run_resolution(service, catalog, request))
        _emit_json(response.model_dump())
    else:
        with resolution_progress() as on_progress:
            service = ReleaseYearService(
                catalog, store, cfg.service, cfg.resolution, progress_callback=on_progress
            )
            response = asyncio.run(_run_resolution(service, catalog, request))

        if response.success:
            print_success(escape(response.message))
            if response.failed_writes:
                print_warning(f"{response.failed_writes} scrobbles could not be updated")
        else:
            print_error(escape(response.error or "resolution failed"))

    if not response.success:
        raise typer.Exit(code=ExitCode.ERROR)
    raise typer.Exit(code=ExitCode.SUCCESS)


@app.command()
def status(
    username: Annotated[str | None, typer.Option("--username", "-u", help="Last.fm username")] = None,
    year: Annotated[
        int | None, typer.Option("--year", "-y", help="Listening year (default: current year)")
    ] = None,
) -> None:
    """Show resolution progress and plays per release year."""
    user = _resolve_username(username)
    listen_year = year if year is not None else datetime.now(UTC).year
    store = _open_store(state.config)

    try:
        counts = store.count_by_status(user, listen_year)
        histogram = store.release_year_histogram(user, listen_year)
    except ScrobbleStoreError as e:
        print_error(escape(str(e)))
        raise typer.Exit(code=ExitCode.ERROR) from e
    total = sum(counts.values())

    if state.output_format == OutputFormat.JSON:
        _emit_json(
            {
                "username": user,
                "year": listen_year,
                "total": total,
                "counts": {bucket.value: count for bucket, count in counts.items()},
                "release_years": histogram,
            }
        )
    else:
        if total == 0:
            print_warning(f"No scrobbles stored for {escape(user)} in {listen_year}")
        else:
            cprint(f"[bold]{escape(user)} in {listen_year}[/bold]: {total} scrobbles")
            cprint(f"  Found: {counts[ReleaseYearStatus.FOUND]}")
            cprint(f"  Not found: {counts[ReleaseYearStatus.NOT_FOUND]}")
            cprint(f"  Pending: {counts[ReleaseYearStatus.PENDING]}")

            if histogram:
                cprint(year_histogram_table(histogram))

    sys.exit(ExitCode.SUCCESS if total else ExitCode.NO_RESULTS)


async def _lookup_year(
    catalog: CatalogBackend,
    artist: str | None,
    track: str | None,
    album_mbid: str | None,
    track_mbid: str | None,
) -> tuple[int | None, str]:
    async with catalog:
        if album_mbid or track_mbid:
            lookup = IdentifierLookup(catalog)
            if album_mbid:
                year = await lookup.find_year(album_mbid, IdentifierKind.ALBUM)
                if year is not None:
                    return year, "identifier"
            if track_mbid:
                year = await lookup.find_year(track_mbid, IdentifierKind.TRACK)
                if year is not None:
                    return year, "identifier"
            return None, "identifier"

        return await FuzzyLookup(catalog).find_year(artist or "", track or ""), "fuzzy"


@app.command()
def lookup(
    artist: Annotated[str | None, typer.Argument(help="Artist name")] = None,
    track: Annotated[str | None, typer.Argument(help="Track title")] = None,
    album_mbid: Annotated[str | None, typer.Option(help="Release MBID")] = None,
    track_mbid: Annotated[str | None, typer.Option(help="Recording MBID")] = None,
) -> None:
    """Look up the original release year of a single track.

    Examples:
        scrobble-years lookup "Sigma ft. Shakka" "Nobody To Love - Radio Edit"
        scrobble-years lookup --album-mbid 8a2a2fbc-3b4c-4d2e-9a7a-0c7d1e9b5f11
    """
    if not (album_mbid or track_mbid) and not (artist and track):
        print_error("Give an artist and track, or --album-mbid/--track-mbid")
        raise typer.Exit(code=ExitCode.ERROR)

    catalog = _catalog_or_exit()
    try:
        year, method = asyncio.run(_lookup_year(catalog, artist, track, album_mbid, track_mbid))
    except CatalogError as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR) from e

    if state.output_format == OutputFormat.JSON:
        _emit_json(
            {
                "artist": artist,
                "track": track,
                "album_mbid": album_mbid,
                "track_mbid": track_mbid,
                "release_year": year,
                "method": method,
            }
        )
    elif year is not None:
        cprint(f"[green]✓ {year}[/green] (via {method})")
    else:
        cprint("[yellow]⚠ No release year found[/yellow]")

    sys.exit(ExitCode.SUCCESS if year is not None else ExitCode.NO_RESULTS)


@app.command()
def normalize(
    artist: Annotated[str, typer.Argument(help="Artist name")],
    track: Annotated[str | None, typer.Argument(help="Track title")] = None,
) -> None:
    """Show how artist and track names are normalized before fuzzy search."""
    normalized_artist = normalize_artist(artist)
    result: dict[str, str | None] = {
        "artist": normalized_artist,
        "first_artist": first_credited_artist(normalized_artist),
        "track": normalize_track(track) if track is not None else None,
    }

    if state.output_format == OutputFormat.JSON:
        _emit_json(result)
    else:
        cprint(escape(f"Artist:       {artist!r} -> {result['artist']!r}"))
        if result["first_artist"] != result["artist"]:
            cprint(escape(f"First artist: {result['first_artist']!r}"))
        if track is not None:
            cprint(escape(f"Track:        {track!r} -> {result['track']!r}"))


if __name__ == "__main__":
    app()
