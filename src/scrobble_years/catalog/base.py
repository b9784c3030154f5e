"""
Abstract base class for the release-year catalog.

The catalog is the read-only side of resolution: a MusicBrainz-shaped store
that can answer "what is the earliest release year of the release group
behind this identifier / artist + title". Implementations must return
``None`` for "no match" and raise a ``CatalogError`` subclass for anything
that went wrong, so callers can tell the two apart.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass


class CatalogError(Exception):
    """A catalog query failed (distinct from "no match")."""


class InvalidIdentifierError(CatalogError, ValueError):
    """An identifier is not a syntactically valid MBID."""


class CatalogUnavailableError(CatalogError):
    """The catalog could not be reached."""


@dataclass(frozen=True)
class CatalogArtist:
    """Artist handle returned by an artist search."""

    id: int
    name: str


def validate_mbid(identifier: str) -> str:
    """
    Check that an identifier is a UUID and return its canonical form.

    Raises:
        InvalidIdentifierError: If the identifier is not a UUID
    """
    try:
        return str(uuid.UUID(identifier.strip()))
    except (ValueError, AttributeError) as e:
        raise InvalidIdentifierError(f"Malformed identifier: {identifier!r}") from e


class CatalogBackend(ABC):
    """
    Read-only query interface over the music catalog.

    All years returned are release group ``first_release_date_year`` values,
    never the year of an individual reissue.
    """

    # Upper bound on concurrent queries the backend can serve.
    max_concurrency: int = 1

    @abstractmethod
    async def ping(self) -> None:
        """
        Check that the catalog is reachable.

        Raises:
            CatalogUnavailableError: If the catalog cannot be reached
        """
        ...

    @abstractmethod
    async def lookup_by_album_identifier(self, mbid: str) -> int | None:
        """
        Get the release group year for a release MBID.

        Args:
            mbid: MusicBrainz release ID

        Returns:
            Earliest release year of the owning release group, or None
        """
        ...

    @abstractmethod
    async def lookup_by_track_identifier(self, mbid: str) -> int | None:
        """
        Get the release group year for a recording MBID.

        Args:
            mbid: MusicBrainz recording ID

        Returns:
            Earliest release year of the first release group found, or None
        """
        ...

    @abstractmethod
    async def find_artist(self, name_substring: str) -> CatalogArtist | None:
        """
        Find the first artist whose name or any alias contains a substring.

        Matching is case-insensitive.

        Args:
            name_substring: Normalized artist name

        Returns:
            First matching artist, or None
        """
        ...

    @abstractmethod
    async def find_recording_year(
        self,
        artist: CatalogArtist,
        title_substring: str,
    ) -> int | None:
        """
        Find the first recording credited to an artist whose title contains a substring.

        Args:
            artist: Artist returned by find_artist()
            title_substring: Normalized track title

        Returns:
            Release group year of the first matching recording, or None
        """
        ...

    # --- Lifecycle ---

    @abstractmethod
    async def close(self) -> None:
        """Close catalog connections."""
        ...

    async def __aenter__(self) -> CatalogBackend:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


## Tests


def test_validate_mbid_canonicalizes():
    mbid = validate_mbid(" 4ACDAA51-AA44-4A9B-954F-3C6EAAB65590 ")
    assert mbid == "4acdaa51-aa44-4a9b-954f-3c6eaab65590"


def test_validate_mbid_rejects_garbage():
    try:
        validate_mbid("not-a-uuid")
        raise AssertionError("Should have raised InvalidIdentifierError")
    except InvalidIdentifierError as e:
        assert "not-a-uuid" in str(e)


def test_invalid_identifier_is_value_error():
    assert issubclass(InvalidIdentifierError, ValueError)
    assert issubclass(InvalidIdentifierError, CatalogError)
    assert not issubclass(CatalogUnavailableError, InvalidIdentifierError)
