"""
Release year lookup by free-text artist and track names.

Two catalog queries per attempt: find an artist whose name or alias contains
the normalized artist string, then find a recording credited to that artist
whose title contains the normalized track string. When a collaboration
credit finds nothing, the lookup is retried with only the lead artist, since
catalogs often file collaborations under a single artist.

Matching is case-insensitive substring containment and takes the first
candidate returned. Same-named artists or longer titles that contain the
search term can therefore produce false positives; nothing here ranks or
disambiguates candidates.
"""

from __future__ import annotations

import asyncio
import logging
import time

from scrobble_years.catalog.base import CatalogArtist, CatalogBackend, CatalogError
from scrobble_years.normalize import first_credited_artist, normalize_artist, normalize_track

log = logging.getLogger(__name__)


class FuzzyLookup:
    """Resolve (artist, track) text to a release group year."""

    def __init__(self, catalog: CatalogBackend):
        self._catalog = catalog

    async def find_year(self, artist_name: str, track_name: str) -> int | None:
        """
        Find the release year for a free-text artist/track pair.

        Returns:
            Release group year, or None if neither attempt matched

        Raises:
            CatalogError: If the only attempt fails, or the first-artist retry fails
        """
        start = time.monotonic()
        artist = normalize_artist(artist_name)
        track = normalize_track(track_name)

        if artist != artist_name or track != track_name:
            log.debug(
                f"Preprocessed: artist='{artist_name}' -> '{artist}', "
                f"track='{track_name}' -> '{track}'"
            )

        if not artist or not track:
            log.debug(f"Nothing to search for '{artist_name} - {track_name}'")
            return None

        # A failed query counts as no match until the fallback has had its turn
        first_error: CatalogError | None = None
        try:
            year = await self._attempt(artist, track)
        except CatalogError as e:
            log.warning(f"Fuzzy search for '{artist} - {track}' failed: {e}")
            first_error = e
            year = None

        if year is not None:
            log.debug(
                f"Fuzzy search found {year} for '{artist_name} - {track_name}' "
                f"(took {time.monotonic() - start:.3f}s)"
            )
            return year

        lead = first_credited_artist(artist)
        if not lead or lead == artist:
            if first_error is not None:
                raise first_error
        else:
            log.debug(f"Fallback: trying first artist only: '{lead}'")
            year = await self._attempt(lead, track)
            if year is not None:
                log.debug(
                    f"Fuzzy search found {year} via first artist fallback "
                    f"(took {time.monotonic() - start:.3f}s)"
                )
                return year

        log.debug(
            f"Fuzzy search found no release year for '{artist_name} - {track_name}' "
            f"(took {time.monotonic() - start:.3f}s)"
        )
        return None

    async def _attempt(self, artist_name: str, track_name: str) -> int | None:
        artist = await self._catalog.find_artist(artist_name)
        if artist is None:
            return None
        return await self._catalog.find_recording_year(artist, track_name)


## Tests


class _StubCatalog:
    """In-memory substring matching over artist names and (artist id, title) pairs."""

    def __init__(
        self,
        artists: dict[str, int],
        recordings: dict[tuple[int, str], int],
        failing: frozenset[str] = frozenset(),
    ):
        self.artists = artists
        self.recordings = recordings
        self.failing = failing
        self.artist_queries: list[str] = []

    async def find_artist(self, name_substring: str) -> CatalogArtist | None:
        self.artist_queries.append(name_substring)
        if name_substring in self.failing:
            raise CatalogError(f"statement timeout searching {name_substring}")
        for name, artist_id in self.artists.items():
            if name_substring.lower() in name.lower():
                return CatalogArtist(id=artist_id, name=name)
        return None

    async def find_recording_year(self, artist: CatalogArtist, title_substring: str) -> int | None:
        for (artist_id, title), year in self.recordings.items():
            if artist_id == artist.id and title_substring.lower() in title.lower():
                return year
        return None


def test_fuzzy_direct_match():
    catalog = _StubCatalog({"Slowdive": 1}, {(1, "Chained to a Cloud"): 2023})
    lookup = FuzzyLookup(catalog)  # pyright: ignore[reportArgumentType]
    assert asyncio.run(lookup.find_year("Slowdive", "chained to a cloud")) == 2023
    assert catalog.artist_queries == ["Slowdive"]


def test_fuzzy_first_artist_fallback():
    catalog = _StubCatalog({"Sigma": 1}, {(1, "Nobody To Love"): 2014})
    lookup = FuzzyLookup(catalog)  # pyright: ignore[reportArgumentType]
    year = asyncio.run(lookup.find_year("Sigma ft. Shakka", "Nobody To Love - Radio Edit"))
    assert year == 2014
    assert catalog.artist_queries == ["Sigma feat. Shakka", "Sigma"]


def test_fuzzy_no_fallback_for_solo_artist():
    catalog = _StubCatalog({}, {})
    lookup = FuzzyLookup(catalog)  # pyright: ignore[reportArgumentType]
    assert asyncio.run(lookup.find_year("Nobody", "Nothing")) is None
    assert catalog.artist_queries == ["Nobody"]


def test_fuzzy_blank_input_skips_catalog():
    catalog = _StubCatalog({"Anyone": 1}, {})
    lookup = FuzzyLookup(catalog)  # pyright: ignore[reportArgumentType]
    assert asyncio.run(lookup.find_year("   ", "Song")) is None
    assert catalog.artist_queries == []


def test_fuzzy_failed_credit_search_still_tries_first_artist():
    catalog = _StubCatalog(
        {"Sigma": 1}, {(1, "Nobody To Love"): 2014}, failing=frozenset({"Sigma feat. Shakka"})
    )
    lookup = FuzzyLookup(catalog)  # pyright: ignore[reportArgumentType]
    year = asyncio.run(lookup.find_year("Sigma ft. Shakka", "Nobody To Love"))
    assert year == 2014
    assert catalog.artist_queries == ["Sigma feat. Shakka", "Sigma"]


def test_fuzzy_failure_without_fallback_propagates():
    catalog = _StubCatalog({}, {}, failing=frozenset({"Nobody"}))
    lookup = FuzzyLookup(catalog)  # pyright: ignore[reportArgumentType]
    try:
        asyncio.run(lookup.find_year("Nobody", "Nothing"))
        raise AssertionError("Should have raised CatalogError")
    except CatalogError as e:
        assert "statement timeout" in str(e)


def test_fuzzy_fallback_failure_propagates():
    catalog = _StubCatalog({}, {}, failing=frozenset({"Sigma feat. Shakka", "Sigma"}))
    lookup = FuzzyLookup(catalog)  # pyright: ignore[reportArgumentType]
    try:
        asyncio.run(lookup.find_year("Sigma ft. Shakka", "Nobody To Love"))
        raise AssertionError("Should have raised CatalogError")
    except CatalogError as e:
        assert "Sigma" in str(e)
    assert catalog.artist_queries == ["Sigma feat. Shakka", "Sigma"]
