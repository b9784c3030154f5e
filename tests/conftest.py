"""Pytest configuration and shared fixtures for scrobble-years tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import pytest

from scrobble_years.catalog.base import CatalogArtist, CatalogBackend, validate_mbid
from scrobble_years.scrobbles_db import Scrobble, ScrobblesDB, ScrobbleStoreError

# =============================================================================
# Identifiers
# =============================================================================

SALTY_DOG_RELEASE = "3c1b3e6a-61d1-4f4e-9a5b-6a1a0b5d2c11"
SALTY_DOG_RECORDING = "9a1e3d7c-2f44-4e6b-8c0d-5b7f1e2a3c44"
UNKNOWN_RELEASE = "00000000-0000-4000-8000-000000000001"
UNKNOWN_RECORDING = "00000000-0000-4000-8000-000000000002"

PLAYED_2023 = datetime(2023, 12, 30, 15, 44, tzinfo=UTC)


# =============================================================================
# Fake Catalog
# =============================================================================


class FakeCatalog(CatalogBackend):
    """
    In-memory catalog with the same matching rules as the SQL backend.

    Artists and recordings keep insertion order so "first match" is
    deterministic. ``errors`` maps a query argument (MBID, artist or title
    substring) to the exception raised when it is queried.
    """

    def __init__(
        self,
        *,
        albums: dict[str, int] | None = None,
        tracks: dict[str, int] | None = None,
        artists: list[tuple[int, str]] | None = None,
        recordings: list[tuple[int, str, int]] | None = None,
        errors: dict[str, Exception] | None = None,
        ping_error: Exception | None = None,
        max_concurrency: int = 1,
        delay: float = 0.0,
    ):
        self.albums = albums or {}
        self.tracks = tracks or {}
        self.artists = artists or []
        self.recordings = recordings or []
        self.errors = errors or {}
        self.ping_error = ping_error
        self.max_concurrency = max_concurrency
        self.delay = delay

        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False

    async def _query(self, kind: str, argument: str) -> None:
        self.calls.append((kind, argument))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if argument in self.errors:
            raise self.errors[argument]

    def queries(self, kind: str) -> list[str]:
        return [argument for call_kind, argument in self.calls if call_kind == kind]

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def lookup_by_album_identifier(self, mbid: str) -> int | None:
        gid = validate_mbid(mbid)
        await self._query("album", gid)
        return self.albums.get(gid)

    async def lookup_by_track_identifier(self, mbid: str) -> int | None:
        gid = validate_mbid(mbid)
        await self._query("track", gid)
        return self.tracks.get(gid)

    async def find_artist(self, name_substring: str) -> CatalogArtist | None:
        await self._query("artist", name_substring)
        for artist_id, name in self.artists:
            if name_substring.lower() in name.lower():
                return CatalogArtist(id=artist_id, name=name)
        return None

    async def find_recording_year(
        self,
        artist: CatalogArtist,
        title_substring: str,
    ) -> int | None:
        await self._query("recording", title_substring)
        for artist_id, title, year in self.recordings:
            if artist_id == artist.id and title_substring.lower() in title.lower():
                return year
        return None

    async def close(self) -> None:
        self.closed = True


class FailingStore:
    """Scrobble store wrapper whose writes fail for selected scrobble IDs."""

    def __init__(self, store: ScrobblesDB, failing_ids: set[str]):
        self.store = store
        self.failing_ids = failing_ids
        self.writes: list[tuple[str, int | None]] = []

    def set_release_year(self, scrobble_id: str, release_year: int | None) -> None:
        if scrobble_id in self.failing_ids:
            raise ScrobbleStoreError(f"disk full while updating {scrobble_id}")
        self.writes.append((scrobble_id, release_year))
        self.store.set_release_year(scrobble_id, release_year)


# =============================================================================
# Store Fixtures
# =============================================================================


def add_scrobble(
    store: ScrobblesDB,
    artist: str,
    track: str,
    *,
    album_mbid: str | None = None,
    track_mbid: str | None = None,
    username: str = "listener",
    minute: int = 0,
) -> Scrobble:
    """Insert a 2023 scrobble and return it as stored."""
    scrobble_id = store.insert_scrobble(
        username=username,
        artist_name=artist,
        track_name=track,
        scrobbled_at=PLAYED_2023.replace(minute=minute),
        album_mbid=album_mbid,
        track_mbid=track_mbid,
    )
    assert scrobble_id is not None
    scrobble = store.get_scrobble(scrobble_id)
    assert scrobble is not None
    return scrobble


@pytest.fixture
def store(tmp_path: Path) -> ScrobblesDB:
    """Provide an empty scrobble store."""
    return ScrobblesDB(tmp_path / "scrobbles.sqlite")


@pytest.fixture
def catalog() -> FakeCatalog:
    """Catalog with one identifier-resolvable album and the Sigma collaboration."""
    return FakeCatalog(
        albums={SALTY_DOG_RELEASE: 1969},
        tracks={SALTY_DOG_RECORDING: 1969},
        artists=[(1, "Procol Harum"), (2, "Sigma")],
        recordings=[(1, "A Salty Dog", 1969), (2, "Nobody To Love", 2014)],
    )
