"""
Scrobble store for listening history and resolved release years.

Each scrobble row carries a release-year status so that "checked, no match"
(``not_found``) is distinguishable from "never checked" (``pending``).
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any


class ReleaseYearStatus(StrEnum):
    """Resolution state of a scrobble's release year."""

    PENDING = "pending"
    FOUND = "found"
    NOT_FOUND = "not_found"


class ScrobbleStoreError(Exception):
    """A scrobble store read or write failed."""


@dataclass
class Scrobble:
    """One recorded play of a track."""

    id: str
    username: str
    artist_name: str
    track_name: str
    scrobbled_at: datetime
    year: int
    album_name: str | None = None
    track_mbid: str | None = None
    artist_mbid: str | None = None
    album_mbid: str | None = None
    release_year: int | None = None
    release_year_status: ReleaseYearStatus = ReleaseYearStatus.PENDING


class ScrobblesDB:
    """
    SQLite database for scrobbles.

    Provides schema creation and the read/write operations the resolver
    needs, plus insertion for the importer and status summaries.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection in WAL mode."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _db_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections.

        Automatically handles connection lifecycle and ensures cleanup.
        Any sqlite3 error inside the block is raised as ScrobbleStoreError.
        """
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise ScrobbleStoreError(f"Failed to open scrobble store {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise ScrobbleStoreError(f"Scrobble store error in {self.db_path}: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._db_connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS scrobble (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL,
                    artist_name TEXT NOT NULL,
                    track_name TEXT NOT NULL,
                    album_name TEXT,
                    track_mbid TEXT,
                    artist_mbid TEXT,
                    album_mbid TEXT,
                    scrobbled_at INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    release_year INTEGER,
                    release_year_status TEXT NOT NULL DEFAULT 'pending',
                    UNIQUE (username, scrobbled_at, artist_name, track_name)
                );

                CREATE INDEX IF NOT EXISTS idx_scrobble_user_year
                    ON scrobble(username, year);
                CREATE INDEX IF NOT EXISTS idx_scrobble_status
                    ON scrobble(release_year_status);

                CREATE TABLE IF NOT EXISTS schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                INSERT OR IGNORE INTO schema_meta (key, value)
                    VALUES ('db_version_scrobbles', '1');
                """
            )
            conn.commit()

    @staticmethod
    def _row_to_scrobble(row: sqlite3.Row) -> Scrobble:
        return Scrobble(
            id=row["id"],
            username=row["username"],
            artist_name=row["artist_name"],
            track_name=row["track_name"],
            album_name=row["album_name"],
            track_mbid=row["track_mbid"],
            artist_mbid=row["artist_mbid"],
            album_mbid=row["album_mbid"],
            scrobbled_at=datetime.fromtimestamp(row["scrobbled_at"], tz=UTC),
            year=row["year"],
            release_year=row["release_year"],
            release_year_status=ReleaseYearStatus(row["release_year_status"]),
        )

    def insert_scrobble(
        self,
        username: str,
        artist_name: str,
        track_name: str,
        scrobbled_at: datetime,
        album_name: str | None = None,
        track_mbid: str | None = None,
        artist_mbid: str | None = None,
        album_mbid: str | None = None,
    ) -> str | None:
        """
        Insert a scrobble.

        The listening year is taken from ``scrobbled_at`` in UTC.

        Returns:
            New scrobble ID, or None if the same play was already stored
        """
        if scrobbled_at.tzinfo is None:
            scrobbled_at = scrobbled_at.replace(tzinfo=UTC)
        scrobble_id = uuid.uuid4().hex

        with self._db_connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO scrobble
                    (id, username, artist_name, track_name, album_name, track_mbid,
                     artist_mbid, album_mbid, scrobbled_at, year)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    scrobble_id,
                    username,
                    artist_name,
                    track_name,
                    album_name or None,
                    track_mbid or None,
                    artist_mbid or None,
                    album_mbid or None,
                    int(scrobbled_at.timestamp()),
                    scrobbled_at.astimezone(UTC).year,
                ),
            )
            conn.commit()
            inserted = cursor.rowcount == 1
        return scrobble_id if inserted else None

    def get_scrobble(self, scrobble_id: str) -> Scrobble | None:
        """Get scrobble by ID."""
        with self._db_connection() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM scrobble WHERE id = ?", (scrobble_id,)).fetchone()
            return self._row_to_scrobble(row) if row else None

    def list_scrobbles_needing_year(self, username: str, year: int) -> list[Scrobble]:
        """List a listener's scrobbles from ``year`` that were never resolved, oldest first."""
        with self._db_connection() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT * FROM scrobble
                WHERE username = ? AND year = ? AND release_year_status = ?
                ORDER BY scrobbled_at, id
                """,
                (username, year, ReleaseYearStatus.PENDING.value),
            ).fetchall()
            return [self._row_to_scrobble(row) for row in rows]

    def set_release_year(self, scrobble_id: str, release_year: int | None) -> None:
        """
        Record the outcome of a release-year lookup.

        A year marks the scrobble ``found``; None marks it ``not_found``.

        Raises:
            ScrobbleStoreError: If the write fails or the scrobble does not exist
        """
        status = ReleaseYearStatus.FOUND if release_year is not None else ReleaseYearStatus.NOT_FOUND
        with self._db_connection() as conn:
            cursor = conn.execute(
                "UPDATE scrobble SET release_year = ?, release_year_status = ? WHERE id = ?",
                (release_year, status.value, scrobble_id),
            )
            conn.commit()
            updated = cursor.rowcount

        if updated == 0:
            raise ScrobbleStoreError(f"Scrobble {scrobble_id} does not exist")

    def count_by_status(self, username: str, year: int) -> dict[ReleaseYearStatus, int]:
        """Count a listener's scrobbles from ``year`` per release-year status."""
        counts = {status: 0 for status in ReleaseYearStatus}
        with self._db_connection() as conn:
            rows = conn.execute(
                """
                SELECT release_year_status, COUNT(*) FROM scrobble
                WHERE username = ? AND year = ?
                GROUP BY release_year_status
                """,
                (username, year),
            ).fetchall()
        for status, count in rows:
            counts[ReleaseYearStatus(status)] = count
        return counts

    def release_year_histogram(self, username: str, year: int) -> list[dict[str, Any]]:
        """Plays per resolved release year for a listener's ``year``, newest first."""
        with self._db_connection() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT release_year, COUNT(*) AS plays FROM scrobble
                WHERE username = ? AND year = ? AND release_year_status = ?
                GROUP BY release_year
                ORDER BY release_year DESC
                """,
                (username, year, ReleaseYearStatus.FOUND.value),
            ).fetchall()
            return [dict(row) for row in rows]

    def requeue_not_found(self, username: str, year: int) -> int:
        """
        Mark a listener's ``not_found`` scrobbles from ``year`` as pending again.

        Returns:
            Number of scrobbles re-queued
        """
        with self._db_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE scrobble SET release_year_status = ?, release_year = NULL
                WHERE username = ? AND year = ? AND release_year_status = ?
                """,
                (
                    ReleaseYearStatus.PENDING.value,
                    username,
                    year,
                    ReleaseYearStatus.NOT_FOUND.value,
                ),
            )
            conn.commit()
            return cursor.rowcount


## Tests


def _played(year: int = 2023) -> datetime:
    return datetime(year, 12, 30, 15, 44, tzinfo=UTC)


def test_scrobbles_db_schema(tmp_path):
    """Test database schema creation."""
    db = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    assert db.db_path.exists()

    conn = db._get_connection()
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()

    assert "scrobble" in tables
    assert "schema_meta" in tables


def test_insert_and_get_scrobble(tmp_path):
    db = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    scrobble_id = db.insert_scrobble(
        username="listener",
        artist_name="Slowdive",
        track_name="chained to a cloud",
        scrobbled_at=_played(),
        album_name="everything is alive",
        track_mbid="729400f2-60e8-4eda-b1e7-538cdaee7743",
        album_mbid="",
    )
    assert scrobble_id is not None

    scrobble = db.get_scrobble(scrobble_id)
    assert scrobble is not None
    assert scrobble.year == 2023
    assert scrobble.album_mbid is None
    assert scrobble.release_year_status == ReleaseYearStatus.PENDING
    assert scrobble.scrobbled_at == _played()


def test_insert_duplicate_is_ignored(tmp_path):
    db = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    assert db.insert_scrobble("listener", "A", "B", _played()) is not None
    assert db.insert_scrobble("listener", "A", "B", _played()) is None


def test_set_release_year_distinguishes_not_found(tmp_path):
    db = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    found_id = db.insert_scrobble("listener", "A", "Found", _played())
    missing_id = db.insert_scrobble("listener", "A", "Missing", _played())
    assert found_id and missing_id

    db.set_release_year(found_id, 1969)
    db.set_release_year(missing_id, None)

    found = db.get_scrobble(found_id)
    missing = db.get_scrobble(missing_id)
    assert found and found.release_year == 1969
    assert found.release_year_status == ReleaseYearStatus.FOUND
    assert missing and missing.release_year is None
    assert missing.release_year_status == ReleaseYearStatus.NOT_FOUND
    assert db.list_scrobbles_needing_year("listener", 2023) == []


def test_set_release_year_unknown_scrobble(tmp_path):
    db = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    try:
        db.set_release_year("nope", 2000)
        raise AssertionError("Should have raised ScrobbleStoreError")
    except ScrobbleStoreError as e:
        assert "nope" in str(e)


def test_requeue_not_found(tmp_path):
    db = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    scrobble_id = db.insert_scrobble("listener", "A", "B", _played())
    assert scrobble_id
    db.set_release_year(scrobble_id, None)

    assert db.requeue_not_found("listener", 2023) == 1
    assert [s.id for s in db.list_scrobbles_needing_year("listener", 2023)] == [scrobble_id]
    counts = db.count_by_status("listener", 2023)
    assert counts[ReleaseYearStatus.PENDING] == 1
    assert counts[ReleaseYearStatus.NOT_FOUND] == 0


def test_read_errors_raise_store_error(tmp_path):
    db = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    with db._db_connection() as conn:
        conn.execute("DROP TABLE scrobble")
        conn.commit()

    for read in (
        lambda: db.list_scrobbles_needing_year("listener", 2023),
        lambda: db.requeue_not_found("listener", 2023),
        lambda: db.count_by_status("listener", 2023),
    ):
        try:
            read()
            raise AssertionError("Should have raised ScrobbleStoreError")
        except ScrobbleStoreError as e:
            assert "no such table" in str(e)
