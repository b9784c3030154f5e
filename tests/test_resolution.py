"""Tests for two-pass release year resolution."""

from __future__ import annotations

import asyncio
import threading

import pytest
from conftest import (
    SALTY_DOG_RECORDING,
    SALTY_DOG_RELEASE,
    UNKNOWN_RELEASE,
    FailingStore,
    FakeCatalog,
    add_scrobble,
)

from scrobble_years.catalog.base import CatalogError, CatalogUnavailableError
from scrobble_years.resolution import ReleaseYearResolver, ResolutionMethod, ResolutionOutcome
from scrobble_years.scrobbles_db import ReleaseYearStatus, ScrobblesDB


def _resolve(resolver: ReleaseYearResolver, store: ScrobblesDB, **kwargs) -> ResolutionOutcome:  # pyright: ignore[reportMissingParameterType]
    scrobbles = store.list_scrobbles_needing_year("listener", 2023)
    return asyncio.run(resolver.resolve(scrobbles, **kwargs))


def _status(store: ScrobblesDB, scrobble_id: str) -> ReleaseYearStatus:
    scrobble = store.get_scrobble(scrobble_id)
    assert scrobble is not None
    return scrobble.release_year_status


# =============================================================================
# Pass 1 / Pass 2 routing
# =============================================================================


def test_identifier_resolution_skips_fuzzy_pass(store: ScrobblesDB, catalog: FakeCatalog):
    scrobble = add_scrobble(
        store, "Procol Harum", "A Salty Dog - 2009 Remaster", album_mbid=SALTY_DOG_RELEASE
    )

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.resolved_via_identifier == 1
    assert outcome.methods == {scrobble.id: ResolutionMethod.IDENTIFIER}
    assert catalog.queries("artist") == []
    stored = store.get_scrobble(scrobble.id)
    assert stored is not None and stored.release_year == 1969


def test_album_identifier_preferred_over_track(store: ScrobblesDB, catalog: FakeCatalog):
    add_scrobble(
        store,
        "Procol Harum",
        "A Salty Dog",
        album_mbid=SALTY_DOG_RELEASE,
        track_mbid=SALTY_DOG_RECORDING,
    )

    _resolve(ReleaseYearResolver(catalog, store), store)

    assert catalog.queries("album") == [SALTY_DOG_RELEASE]
    assert catalog.queries("track") == []


def test_unknown_album_falls_back_to_track(store: ScrobblesDB, catalog: FakeCatalog):
    add_scrobble(
        store,
        "Procol Harum",
        "A Salty Dog",
        album_mbid=UNKNOWN_RELEASE,
        track_mbid=SALTY_DOG_RECORDING,
    )

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.resolved_via_identifier == 1
    assert catalog.queries("album") == [UNKNOWN_RELEASE]
    assert catalog.queries("track") == [SALTY_DOG_RECORDING]


def test_failed_album_lookup_falls_back_to_track(store: ScrobblesDB, catalog: FakeCatalog):
    catalog.errors[SALTY_DOG_RELEASE] = CatalogUnavailableError("connection reset")
    add_scrobble(
        store,
        "Procol Harum",
        "A Salty Dog",
        album_mbid=SALTY_DOG_RELEASE,
        track_mbid=SALTY_DOG_RECORDING,
    )

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.resolved_via_identifier == 1
    assert outcome.unresolved == 0


def test_malformed_identifier_goes_to_fuzzy_pass(store: ScrobblesDB, catalog: FakeCatalog):
    scrobble = add_scrobble(store, "Procol Harum", "A Salty Dog", album_mbid="not-an-mbid")

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    # Rejected before any query was issued
    assert catalog.queries("album") == []
    assert outcome.methods == {scrobble.id: ResolutionMethod.FUZZY}


def test_sigma_collaboration_resolves_via_fuzzy(store: ScrobblesDB, catalog: FakeCatalog):
    scrobble = add_scrobble(store, "Sigma ft. Shakka", "Nobody To Love - Radio Edit")

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.resolved_via_fuzzy == 1
    assert outcome.methods[scrobble.id] == ResolutionMethod.FUZZY
    assert catalog.queries("artist") == ["Sigma feat. Shakka", "Sigma"]
    assert catalog.queries("recording") == ["Nobody To Love"]
    stored = store.get_scrobble(scrobble.id)
    assert stored is not None and stored.release_year == 2014


def test_no_match_records_not_found(store: ScrobblesDB, catalog: FakeCatalog):
    scrobble = add_scrobble(store, "Obscure Bedroom Act", "Untitled Demo 4")

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.unresolved == 1
    assert outcome.processed == 1
    assert _status(store, scrobble.id) == ReleaseYearStatus.NOT_FOUND
    # Checked scrobbles are not offered again
    assert store.list_scrobbles_needing_year("listener", 2023) == []


def test_fuzzy_query_failure_counts_as_not_found(store: ScrobblesDB, catalog: FakeCatalog):
    catalog.errors["Procol Harum"] = CatalogError("statement timeout")
    scrobble = add_scrobble(store, "Procol Harum", "A Salty Dog")

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.unresolved == 1
    assert _status(store, scrobble.id) == ReleaseYearStatus.NOT_FOUND


def test_failed_credit_search_retries_first_artist(store: ScrobblesDB, catalog: FakeCatalog):
    catalog.errors["Sigma feat. Shakka"] = CatalogError("statement timeout")
    scrobble = add_scrobble(store, "Sigma ft. Shakka", "Nobody To Love")

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.resolved_via_fuzzy == 1
    assert outcome.unresolved == 0
    assert catalog.queries("artist") == ["Sigma feat. Shakka", "Sigma"]
    stored = store.get_scrobble(scrobble.id)
    assert stored is not None and stored.release_year == 2014


def test_mixed_batch_outcome(store: ScrobblesDB, catalog: FakeCatalog):
    add_scrobble(store, "Procol Harum", "A Salty Dog", album_mbid=SALTY_DOG_RELEASE, minute=1)
    add_scrobble(store, "Sigma ft. Shakka", "Nobody To Love", minute=2)
    add_scrobble(store, "Nobody", "Nothing", minute=3)
    add_scrobble(store, "Procol Harum", "A Salty Dog (Live)", minute=4)

    outcome = _resolve(ReleaseYearResolver(catalog, store), store)

    assert outcome.total == 4
    assert outcome.processed == 4
    assert outcome.resolved_via_identifier == 1
    assert outcome.resolved_via_fuzzy == 2
    assert outcome.unresolved == 1
    assert outcome.found == 3
    assert outcome.is_consistent()
    assert not outcome.cancelled


def test_empty_batch(catalog: FakeCatalog, store: ScrobblesDB):
    outcome = asyncio.run(ReleaseYearResolver(catalog, store).resolve([]))
    assert outcome.processed == 0
    assert outcome.is_consistent()


# =============================================================================
# Failures
# =============================================================================


def test_unreachable_catalog_fails_batch(store: ScrobblesDB):
    catalog = FakeCatalog(ping_error=CatalogUnavailableError("connection refused"))
    scrobble = add_scrobble(store, "Sigma", "Nobody To Love")

    with pytest.raises(CatalogUnavailableError):
        _resolve(ReleaseYearResolver(catalog, store), store)

    assert catalog.calls == []
    assert _status(store, scrobble.id) == ReleaseYearStatus.PENDING


def test_write_failure_in_identifier_pass(store: ScrobblesDB, catalog: FakeCatalog):
    failing = add_scrobble(store, "Procol Harum", "A Salty Dog", album_mbid=SALTY_DOG_RELEASE, minute=1)
    ok = add_scrobble(store, "Sigma", "Nobody To Love", minute=2)
    writer = FailingStore(store, {failing.id})

    outcome = _resolve(ReleaseYearResolver(catalog, writer), store)

    assert outcome.failed_writes == 1
    assert outcome.processed == 1
    assert failing.id not in outcome.methods
    assert outcome.is_consistent()
    # Not retried through the fuzzy pass in the same batch
    assert catalog.queries("artist") == ["Sigma"]
    assert _status(store, failing.id) == ReleaseYearStatus.PENDING
    assert _status(store, ok.id) == ReleaseYearStatus.FOUND


def test_write_failure_in_fuzzy_pass(store: ScrobblesDB, catalog: FakeCatalog):
    failing = add_scrobble(store, "Sigma", "Nobody To Love")
    writer = FailingStore(store, {failing.id})

    outcome = _resolve(ReleaseYearResolver(catalog, writer), store)

    assert outcome.failed_writes == 1
    assert outcome.processed == 0
    assert [s.id for s in store.list_scrobbles_needing_year("listener", 2023)] == [failing.id]


def test_each_scrobble_written_once(store: ScrobblesDB, catalog: FakeCatalog):
    for minute in range(5):
        add_scrobble(store, "Sigma", "Nobody To Love", album_mbid=UNKNOWN_RELEASE, minute=minute)
    writer = FailingStore(store, set())

    _resolve(ReleaseYearResolver(catalog, writer, workers=3), store)

    written = [scrobble_id for scrobble_id, _ in writer.writes]
    assert len(written) == 5
    assert len(set(written)) == 5


class _ThreadRecordingStore:
    def __init__(self, store: ScrobblesDB):
        self.store = store
        self.threads: set[int] = set()

    def set_release_year(self, scrobble_id: str, release_year: int | None) -> None:
        self.threads.add(threading.get_ident())
        self.store.set_release_year(scrobble_id, release_year)


def test_writes_run_off_the_event_loop_thread(store: ScrobblesDB, catalog: FakeCatalog):
    add_scrobble(store, "Procol Harum", "A Salty Dog", album_mbid=SALTY_DOG_RELEASE, minute=1)
    add_scrobble(store, "Sigma", "Nobody To Love", minute=2)
    writer = _ThreadRecordingStore(store)

    outcome = _resolve(ReleaseYearResolver(catalog, writer), store)

    assert outcome.found == 2
    assert writer.threads
    assert threading.get_ident() not in writer.threads


# =============================================================================
# Concurrency and cancellation
# =============================================================================


def test_workers_bounded_by_catalog_capacity(store: ScrobblesDB):
    catalog = FakeCatalog(max_concurrency=3, delay=0.01)
    for minute in range(8):
        add_scrobble(store, f"Unknown {minute}", "Song", minute=minute)

    outcome = _resolve(ReleaseYearResolver(catalog, store, workers=10), store)

    assert catalog.peak_in_flight == 3
    assert outcome.unresolved == 8
    assert outcome.is_consistent()


def test_single_worker_is_sequential(store: ScrobblesDB):
    catalog = FakeCatalog(max_concurrency=8, delay=0.005)
    for minute in range(4):
        add_scrobble(store, f"Unknown {minute}", "Song", minute=minute)

    _resolve(ReleaseYearResolver(catalog, store, workers=1), store)

    assert catalog.peak_in_flight == 1
    assert catalog.queries("artist") == [f"Unknown {minute}" for minute in range(4)]


def test_cancel_before_start_leaves_everything_pending(store: ScrobblesDB, catalog: FakeCatalog):
    add_scrobble(store, "Sigma", "Nobody To Love")
    cancel = asyncio.Event()
    cancel.set()

    outcome = _resolve(ReleaseYearResolver(catalog, store), store, cancel=cancel)

    assert outcome.cancelled
    assert outcome.processed == 0
    assert catalog.calls == []
    assert len(store.list_scrobbles_needing_year("listener", 2023)) == 1


def test_cancel_mid_batch_returns_partial_outcome(store: ScrobblesDB, catalog: FakeCatalog):
    for minute in range(3):
        add_scrobble(store, "Procol Harum", "A Salty Dog", album_mbid=SALTY_DOG_RELEASE, minute=minute)
    cancel = asyncio.Event()

    resolver = ReleaseYearResolver(
        catalog, store, workers=1, progress_callback=lambda done, total: cancel.set()
    )
    outcome = _resolve(resolver, store, cancel=cancel)

    assert outcome.cancelled
    assert outcome.processed == 1
    assert outcome.resolved_via_identifier == 1
    assert outcome.is_consistent()
    # Pass 2 never started
    assert catalog.queries("artist") == []
    assert len(store.list_scrobbles_needing_year("listener", 2023)) == 2


def test_progress_callback_reports_each_scrobble(store: ScrobblesDB, catalog: FakeCatalog):
    add_scrobble(store, "Procol Harum", "A Salty Dog", album_mbid=SALTY_DOG_RELEASE, minute=1)
    add_scrobble(store, "Sigma", "Nobody To Love", minute=2)
    progress: list[tuple[int, int]] = []

    resolver = ReleaseYearResolver(
        catalog, store, progress_callback=lambda done, total: progress.append((done, total))
    )
    _resolve(resolver, store)

    assert progress == [(1, 2), (2, 2)]
