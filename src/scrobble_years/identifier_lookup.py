"""Release year lookup by MusicBrainz identifier (no text matching)."""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum

from scrobble_years.catalog.base import CatalogBackend

log = logging.getLogger(__name__)


class IdentifierKind(StrEnum):
    """Which kind of MBID a scrobble carries."""

    ALBUM = "album"
    TRACK = "track"


class IdentifierLookup:
    """
    Resolve an MBID to the earliest release year of its release group.

    Album identifiers are release MBIDs; track identifiers are recording
    MBIDs. Both return None when the identifier is valid but unknown, and
    raise ``InvalidIdentifierError`` / ``CatalogUnavailableError`` otherwise.
    """

    def __init__(self, catalog: CatalogBackend):
        self._catalog = catalog

    async def find_year(self, identifier: str, kind: IdentifierKind) -> int | None:
        log.debug(f"Looking up release year by {kind} MBID: {identifier}")
        if kind == IdentifierKind.ALBUM:
            return await self._catalog.lookup_by_album_identifier(identifier)
        elif kind == IdentifierKind.TRACK:
            return await self._catalog.lookup_by_track_identifier(identifier)
        else:
            raise ValueError(f"Unknown identifier kind: {kind}")


## Tests


class _RecordingCatalog:
    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    async def lookup_by_album_identifier(self, mbid: str) -> int | None:
        self.calls.append(("album", mbid))
        return 1969

    async def lookup_by_track_identifier(self, mbid: str) -> int | None:
        self.calls.append(("track", mbid))
        return None


def test_find_year_dispatches_by_kind():
    catalog = _RecordingCatalog()
    lookup = IdentifierLookup(catalog)  # pyright: ignore[reportArgumentType]

    assert asyncio.run(lookup.find_year("a", IdentifierKind.ALBUM)) == 1969
    assert asyncio.run(lookup.find_year("t", IdentifierKind.TRACK)) is None
    assert catalog.calls == [("album", "a"), ("track", "t")]


def test_identifier_kind_values():
    assert IdentifierKind.ALBUM == "album"
    assert IdentifierKind("track") is IdentifierKind.TRACK
