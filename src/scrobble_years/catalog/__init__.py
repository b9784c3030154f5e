"""
Catalog access layer for release-year lookups.

The catalog is a read-only MusicBrainz mirror queried through
``CatalogBackend``; ``DBCatalog`` is the PostgreSQL implementation.
"""

from __future__ import annotations

from scrobble_years.catalog.base import (
    CatalogArtist,
    CatalogBackend,
    CatalogError,
    CatalogUnavailableError,
    InvalidIdentifierError,
    validate_mbid,
)
from scrobble_years.catalog.db_backend import DBCatalog

__all__ = [
    "CatalogBackend",
    "CatalogArtist",
    "CatalogError",
    "CatalogUnavailableError",
    "InvalidIdentifierError",
    "DBCatalog",
    "validate_mbid",
]
