"""
Two-pass release year resolution for a batch of scrobbles.

Pass 1 resolves every scrobble that carries an album or track MBID through
direct identifier lookups. Pass 2 runs the heavier fuzzy text search over
whatever Pass 1 left unresolved. Every scrobble that reaches Pass 2 gets a
write, so "checked, no match" is recorded explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from scrobble_years.catalog.base import CatalogBackend, CatalogError
from scrobble_years.fuzzy_lookup import FuzzyLookup
from scrobble_years.identifier_lookup import IdentifierKind, IdentifierLookup
from scrobble_years.scrobbles_db import Scrobble, ScrobbleStoreError

log = logging.getLogger(__name__)


class ResolutionMethod(StrEnum):
    """Outcome bucket for a processed scrobble."""

    IDENTIFIER = "identifier"
    FUZZY = "fuzzy"
    UNRESOLVED = "unresolved"


class ScrobbleStore(Protocol):
    """Write side of the scrobble store used during resolution."""

    def set_release_year(self, scrobble_id: str, release_year: int | None) -> None: ...


@dataclass
class ResolutionOutcome:
    """Counts and per-scrobble buckets for one resolution batch."""

    total: int = 0
    processed: int = 0
    resolved_via_identifier: int = 0
    resolved_via_fuzzy: int = 0
    unresolved: int = 0
    failed_writes: int = 0
    cancelled: bool = False
    methods: dict[str, ResolutionMethod] = field(default_factory=dict)

    @property
    def found(self) -> int:
        return self.resolved_via_identifier + self.resolved_via_fuzzy

    def record(self, scrobble_id: str, method: ResolutionMethod) -> None:
        """Place a scrobble in exactly one bucket."""
        if scrobble_id in self.methods:
            raise ValueError(f"Scrobble {scrobble_id} already resolved as {self.methods[scrobble_id]}")
        self.methods[scrobble_id] = method
        self.processed += 1
        if method == ResolutionMethod.IDENTIFIER:
            self.resolved_via_identifier += 1
        elif method == ResolutionMethod.FUZZY:
            self.resolved_via_fuzzy += 1
        else:
            self.unresolved += 1

    def is_consistent(self) -> bool:
        return (
            self.processed == self.found + self.unresolved
            and self.processed == len(self.methods)
        )


class ReleaseYearResolver:
    """
    Resolve release years for scrobbles and write them through the store.

    The catalog (and optionally the lookups built on it) is injected at
    construction; one resolver can run many batches.
    """

    def __init__(
        self,
        catalog: CatalogBackend,
        store: ScrobbleStore,
        *,
        identifier_lookup: IdentifierLookup | None = None,
        fuzzy_lookup: FuzzyLookup | None = None,
        workers: int = 1,
        progress_every: int = 100,
        progress_callback: Callable[[int, int], None] | None = None,
    ):
        self._catalog = catalog
        self._store = store
        self._identifier_lookup = identifier_lookup or IdentifierLookup(catalog)
        self._fuzzy_lookup = fuzzy_lookup or FuzzyLookup(catalog)
        self._workers = max(1, min(workers, catalog.max_concurrency))
        self._progress_every = progress_every
        self._progress_callback = progress_callback

    async def resolve(
        self,
        scrobbles: Sequence[Scrobble],
        *,
        cancel: asyncio.Event | None = None,
    ) -> ResolutionOutcome:
        """
        Resolve a batch of scrobbles.

        Args:
            scrobbles: Scrobbles needing a release year
            cancel: When set, no further catalog queries are issued and the
                    partial outcome is returned

        Returns:
            Outcome counts for the batch

        Raises:
            CatalogUnavailableError: If the catalog cannot be reached at batch start
        """
        outcome = ResolutionOutcome(total=len(scrobbles))
        await self._catalog.ping()

        log.info(f"Pass 1: Processing {len(scrobbles)} scrobbles with MBIDs (album or track)...")
        start = time.monotonic()
        remaining = await self._run_pass(scrobbles, self._resolve_by_identifier, outcome, cancel)
        log.info(
            f"Pass 1 complete: {outcome.resolved_via_identifier} found via MBID "
            f"(took {time.monotonic() - start:.2f}s)"
        )

        if not outcome.cancelled:
            log.info(f"Pass 2: Processing {len(remaining)} scrobbles with fuzzy search...")
            start = time.monotonic()
            await self._run_pass(remaining, self._resolve_by_text, outcome, cancel)
            log.info(
                f"Pass 2 complete: {outcome.resolved_via_fuzzy} found via fuzzy, "
                f"{outcome.unresolved} not found (took {time.monotonic() - start:.2f}s)"
            )

        if outcome.cancelled:
            log.warning(
                f"Resolution cancelled after {outcome.processed}/{outcome.total} scrobbles"
            )
        log.info(
            f"Release year lookup complete: processed={outcome.processed}, "
            f"mbid_found={outcome.resolved_via_identifier}, "
            f"fuzzy_found={outcome.resolved_via_fuzzy}, not_found={outcome.unresolved}, "
            f"failed_writes={outcome.failed_writes}"
        )
        return outcome

    async def _run_pass(
        self,
        scrobbles: Sequence[Scrobble],
        handler: Callable[[Scrobble, ResolutionOutcome], Awaitable[bool]],
        outcome: ResolutionOutcome,
        cancel: asyncio.Event | None,
    ) -> list[Scrobble]:
        """
        Run ``handler`` over scrobbles with at most ``workers`` in flight.

        Returns:
            Scrobbles the handler left unresolved, in input order
        """
        semaphore = asyncio.Semaphore(self._workers)
        unresolved: dict[str, bool] = {}

        async def _guarded(scrobble: Scrobble) -> None:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    outcome.cancelled = True
                    return
                done = await handler(scrobble, outcome)
                unresolved[scrobble.id] = not done
                if done:
                    self._report_progress(outcome)

        await asyncio.gather(*(_guarded(scrobble) for scrobble in scrobbles))
        return [scrobble for scrobble in scrobbles if unresolved.get(scrobble.id)]

    def _report_progress(self, outcome: ResolutionOutcome) -> None:
        done = outcome.processed + outcome.failed_writes
        if self._progress_callback:
            self._progress_callback(done, outcome.total)
        if self._progress_every and done % self._progress_every == 0:
            log.info(f"Progress: {done}/{outcome.total} scrobbles processed")

    async def _resolve_by_identifier(self, scrobble: Scrobble, outcome: ResolutionOutcome) -> bool:
        """
        Pass 1 handler.

        Returns:
            True if the scrobble needs no Pass 2 (resolved, or its write failed)
        """
        year = await self._lookup_identifier(scrobble.album_mbid, IdentifierKind.ALBUM)
        if year is None:
            year = await self._lookup_identifier(scrobble.track_mbid, IdentifierKind.TRACK)
        if year is None:
            return False

        if await self._write(scrobble, year, outcome):
            outcome.record(scrobble.id, ResolutionMethod.IDENTIFIER)
        return True

    async def _lookup_identifier(self, identifier: str | None, kind: IdentifierKind) -> int | None:
        if not identifier:
            return None
        try:
            return await self._identifier_lookup.find_year(identifier, kind)
        except CatalogError as e:
            log.warning(f"{kind.capitalize()} MBID lookup failed for {identifier}: {e}")
            return None

    async def _resolve_by_text(self, scrobble: Scrobble, outcome: ResolutionOutcome) -> bool:
        """Pass 2 handler; always writes, using None for "no year found"."""
        log.debug(f"Processing scrobble: {scrobble.id}")
        try:
            year = await self._fuzzy_lookup.find_year(scrobble.artist_name, scrobble.track_name)
        except CatalogError as e:
            log.warning(
                f"Fuzzy lookup failed for '{scrobble.artist_name} - {scrobble.track_name}': {e}"
            )
            year = None

        if await self._write(scrobble, year, outcome):
            method = ResolutionMethod.FUZZY if year is not None else ResolutionMethod.UNRESOLVED
            outcome.record(scrobble.id, method)
        return True

    async def _write(self, scrobble: Scrobble, year: int | None, outcome: ResolutionOutcome) -> bool:
        # sqlite3 blocks; counters are only touched back on the loop
        try:
            await asyncio.to_thread(self._store.set_release_year, scrobble.id, year)
        except ScrobbleStoreError as e:
            log.error(f"Failed to update scrobble {scrobble.id}: {e}")
            outcome.failed_writes += 1
            return False
        return True


## Tests


def test_outcome_record_buckets():
    outcome = ResolutionOutcome(total=3)
    outcome.record("a", ResolutionMethod.IDENTIFIER)
    outcome.record("b", ResolutionMethod.FUZZY)
    outcome.record("c", ResolutionMethod.UNRESOLVED)

    assert outcome.processed == 3
    assert outcome.found == 2
    assert outcome.is_consistent()


def test_outcome_rejects_second_bucket():
    outcome = ResolutionOutcome()
    outcome.record("a", ResolutionMethod.IDENTIFIER)
    try:
        outcome.record("a", ResolutionMethod.FUZZY)
        raise AssertionError("Should have raised ValueError")
    except ValueError as e:
        assert "already resolved" in str(e)
    assert outcome.processed == 1
