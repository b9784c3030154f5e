"""
Service boundary for release year resolution.

One request names a listener and a listening year; both are optional and
default from configuration (listener) and the current date (year). The
response is a flat model whose ``model_dump()`` is the JSON the CLI prints.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from scrobble_years.catalog.base import CatalogBackend, CatalogError
from scrobble_years.config import ResolutionConfig, ServiceConfig
from scrobble_years.resolution import ReleaseYearResolver
from scrobble_years.scrobbles_db import ScrobblesDB, ScrobbleStoreError

log = logging.getLogger(__name__)

# Last.fm started recording scrobbles in 2002
EARLIEST_SCROBBLE_YEAR = 2002


class InvalidYearError(ValueError):
    """Requested listening year is outside the supported range."""


def validate_year(
    year: int,
    earliest: int = EARLIEST_SCROBBLE_YEAR,
    today: datetime | None = None,
) -> int:
    """
    Check that ``year`` lies between ``earliest`` and the current year.

    Raises:
        InvalidYearError: If the year is out of range
    """
    latest = (today or datetime.now(UTC)).year
    if year < earliest or year > latest:
        raise InvalidYearError(f"Invalid year. Must be between {earliest} and {latest}")
    return year


class FindReleaseYearsRequest(BaseModel):
    """Resolve release years for one listener's scrobbles in one year."""

    username: str | None = Field(default=None)
    year: int | None = Field(default=None)
    retry_not_found: bool = Field(default=False)  # re-check scrobbles previously marked not found


class FindReleaseYearsResponse(BaseModel):
    success: bool
    message: str = Field(default="")
    processed: int = Field(default=0)
    found: int = Field(default=0)
    mbid_found: int = Field(default=0)
    fuzzy_found: int = Field(default=0)
    not_found: int = Field(default=0)
    failed_writes: int = Field(default=0)
    cancelled: bool = Field(default=False)
    error: str | None = Field(default=None)


class ReleaseYearService:
    """
    Validate requests, load pending scrobbles and run the resolver.

    Validation failures and catalog outages come back as failed responses
    rather than exceptions; nothing is read or written for a rejected request.
    """

    def __init__(
        self,
        catalog: CatalogBackend,
        store: ScrobblesDB,
        service_config: ServiceConfig | None = None,
        resolution_config: ResolutionConfig | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ):
        self._catalog = catalog
        self._store = store
        self._service_config = service_config or ServiceConfig()
        resolution_config = resolution_config or ResolutionConfig()
        self._resolver = ReleaseYearResolver(
            catalog,
            store,
            workers=resolution_config.workers,
            progress_every=resolution_config.progress_every,
            progress_callback=progress_callback,
        )

    async def find_release_years(
        self,
        request: FindReleaseYearsRequest,
        cancel: asyncio.Event | None = None,
    ) -> FindReleaseYearsResponse:
        username = request.username or self._service_config.default_username
        if not username:
            return FindReleaseYearsResponse(success=False, error="username is required")

        year = request.year if request.year is not None else datetime.now(UTC).year
        try:
            validate_year(year, self._service_config.earliest_year)
        except InvalidYearError as e:
            return FindReleaseYearsResponse(success=False, error=str(e))

        log.info(f"Starting release year lookup for user '{username}', year {year}")

        try:
            if request.retry_not_found:
                requeued = self._store.requeue_not_found(username, year)
                log.info(f"Re-queued {requeued} scrobbles previously marked not found")
            scrobbles = self._store.list_scrobbles_needing_year(username, year)
        except (ScrobbleStoreError, OSError) as e:
            log.error(f"Failed to get scrobbles for user {username}, year {year}: {e}")
            return FindReleaseYearsResponse(success=False, error=f"failed to get scrobbles: {e}")

        log.info(f"Found {len(scrobbles)} scrobbles needing release year lookup")

        try:
            outcome = await self._resolver.resolve(scrobbles, cancel=cancel)
        except CatalogError as e:
            log.error(f"Find release years error for user {username}, year {year}: {e}")
            return FindReleaseYearsResponse(success=False, error=str(e))

        message = (
            f"Processed {outcome.processed} scrobbles for {username} in {year}: "
            f"{outcome.resolved_via_identifier} via MBID, {outcome.resolved_via_fuzzy} via fuzzy, "
            f"{outcome.unresolved} not found"
        )
        if outcome.cancelled:
            message = f"Cancelled. {message}"

        return FindReleaseYearsResponse(
            success=True,
            message=message,
            processed=outcome.processed,
            found=outcome.found,
            mbid_found=outcome.resolved_via_identifier,
            fuzzy_found=outcome.resolved_via_fuzzy,
            not_found=outcome.unresolved,
            failed_writes=outcome.failed_writes,
            cancelled=outcome.cancelled,
        )


## Tests


def test_validate_year_bounds():
    today = datetime(2025, 6, 1, tzinfo=UTC)
    assert validate_year(2002, today=today) == 2002
    assert validate_year(2025, today=today) == 2025

    for year in (2001, 2026):
        try:
            validate_year(year, today=today)
            raise AssertionError("Should have raised InvalidYearError")
        except InvalidYearError as e:
            assert "between 2002 and 2025" in str(e)


def test_invalid_year_is_value_error():
    assert issubclass(InvalidYearError, ValueError)


def test_response_defaults():
    response = FindReleaseYearsResponse(success=False, error="boom")
    assert response.model_dump()["processed"] == 0
    assert response.message == ""
