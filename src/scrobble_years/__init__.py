__all__ = (
    "app",
    "Config",
    # Catalog
    "CatalogBackend",
    "CatalogArtist",
    "CatalogError",
    "CatalogUnavailableError",
    "InvalidIdentifierError",
    "DBCatalog",
    # Resolution
    "IdentifierKind",
    "IdentifierLookup",
    "FuzzyLookup",
    "ReleaseYearResolver",
    "ResolutionMethod",
    "ResolutionOutcome",
    # Scrobble store
    "Scrobble",
    "ScrobblesDB",
    "ScrobbleStoreError",
    "ReleaseYearStatus",
    # Import and service boundary
    "ImportResult",
    "LastFmError",
    "import_recent_tracks",
    "FindReleaseYearsRequest",
    "FindReleaseYearsResponse",
    "InvalidYearError",
    "ReleaseYearService",
)

from scrobble_years.catalog import (
    CatalogArtist,
    CatalogBackend,
    CatalogError,
    CatalogUnavailableError,
    DBCatalog,
    InvalidIdentifierError,
)
from scrobble_years.cli import app
from scrobble_years.config import Config
from scrobble_years.fuzzy_lookup import FuzzyLookup
from scrobble_years.identifier_lookup import IdentifierKind, IdentifierLookup
from scrobble_years.ingest import ImportResult, LastFmError, import_recent_tracks
from scrobble_years.resolution import ReleaseYearResolver, ResolutionMethod, ResolutionOutcome
from scrobble_years.scrobbles_db import ReleaseYearStatus, Scrobble, ScrobblesDB, ScrobbleStoreError
from scrobble_years.service import (
    FindReleaseYearsRequest,
    FindReleaseYearsResponse,
    InvalidYearError,
    ReleaseYearService,
)
