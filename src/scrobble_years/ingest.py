"""
Import scrobbles from Last.fm ``user.getRecentTracks`` JSON payloads.

Payloads are read from disk (one page per file, as saved from the API with
``format=json``). A track that is currently playing has no date yet and is
skipped, as is any entry whose timestamp cannot be parsed or whose text
cannot be stored. Empty MBID and album strings are stored as missing values.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from scrobble_years.scrobbles_db import ScrobblesDB

log = logging.getLogger(__name__)

# Last.fm API error codes with listener-facing explanations
LASTFM_ERROR_MESSAGES = {
    6: "user '{username}' not found or invalid parameters",
    10: "invalid Last.fm API key",
    17: "user '{username}' has a private profile",
    29: "rate limit exceeded. Please try again later",
}


class LastFmError(Exception):
    """Last.fm returned an error payload instead of recent tracks."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code


class LastFmEntity(BaseModel):
    """Artist or album reference: a name plus an optional MBID."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default="", alias="#text")
    mbid: str = Field(default="")


class LastFmDate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uts: str
    text: str = Field(default="", alias="#text")


class LastFmTrackAttr(BaseModel):
    nowplaying: str = Field(default="false")


class LastFmTrack(BaseModel):
    """One entry of ``recenttracks.track``."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    mbid: str = Field(default="")
    artist: LastFmEntity
    album: LastFmEntity = Field(default_factory=LastFmEntity)
    date: LastFmDate | None = Field(default=None)
    attr: LastFmTrackAttr | None = Field(default=None, alias="@attr")

    @property
    def now_playing(self) -> bool:
        return self.attr is not None and self.attr.nowplaying == "true"


class RecentTracksPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    track: list[LastFmTrack] = Field(default_factory=list)
    attr: dict[str, str] = Field(default_factory=dict, alias="@attr")

    @field_validator("track", mode="before")
    @classmethod
    def _wrap_single_track(cls, value: Any) -> Any:
        # Last.fm returns a bare object instead of a list for one track
        if isinstance(value, dict):
            return [value]
        return value


class RecentTracksResponse(BaseModel):
    recenttracks: RecentTracksPage | None = Field(default=None)


@dataclass
class ImportResult:
    """Counts for one payload import."""

    inserted: int = 0
    duplicates: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.duplicates + self.skipped


def parse_recent_tracks(payload: dict[str, Any], username: str = "") -> list[LastFmTrack]:
    """
    Parse a decoded ``user.getRecentTracks`` response.

    Args:
        payload: Decoded JSON body
        username: Listener, used in error messages

    Returns:
        Track entries in payload order (empty if the page has none)

    Raises:
        LastFmError: If the payload is a Last.fm error response or malformed
    """
    if code := payload.get("error"):
        template = LASTFM_ERROR_MESSAGES.get(int(code))
        if template:
            message = template.format(username=username)
        else:
            message = f"Last.fm API error {code}: {payload.get('message', '')}"
        raise LastFmError(int(code), message)

    try:
        response = RecentTracksResponse.model_validate(payload)
    except ValidationError as e:
        raise LastFmError(0, f"failed to parse Last.fm response: {e}") from e

    if response.recenttracks is None:
        return []
    return response.recenttracks.track


def load_payload(path: Path) -> dict[str, Any]:
    """Read a saved Last.fm response from disk."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise LastFmError(0, f"failed to parse Last.fm response {path.name}: {e}") from e
    if not isinstance(data, dict):
        raise LastFmError(0, f"unexpected Last.fm response in {path.name}")
    return data


def import_recent_tracks(
    store: ScrobblesDB,
    username: str,
    payload: dict[str, Any],
    year: int | None = None,
) -> ImportResult:
    """
    Store the scrobbles of one recent-tracks payload.

    Args:
        store: Scrobble store to insert into
        username: Listener the payload belongs to
        payload: Decoded JSON body
        year: When set, scrobbles from other (UTC) years are skipped

    Returns:
        Inserted, duplicate and skipped counts

    Raises:
        LastFmError: If the payload is a Last.fm error response
    """
    tracks = parse_recent_tracks(payload, username)
    result = ImportResult()

    if not tracks:
        log.info(f"No scrobbles found for user '{username}'")
        return result

    log.info(f"Importing {len(tracks)} tracks for user '{username}'")

    for track in tracks:
        if track.now_playing:
            log.debug(f"Skipping currently playing track: {track.artist.name} - {track.name}")
            result.skipped += 1
            continue

        if track.date is None:
            log.debug(f"Skipping track without date: {track.artist.name} - {track.name}")
            result.skipped += 1
            continue

        try:
            scrobbled_at = datetime.fromtimestamp(int(track.date.uts), tz=UTC)
        except (ValueError, OverflowError, OSError) as e:
            log.warning(f"Failed to parse timestamp {track.date.uts}: {e}")
            result.skipped += 1
            continue

        if year is not None and scrobbled_at.year != year:
            log.debug(f"Skipping scrobble from {scrobbled_at.year}: {track.artist.name} - {track.name}")
            result.skipped += 1
            continue

        try:
            scrobble_id = store.insert_scrobble(
                username=username,
                artist_name=track.artist.name,
                track_name=track.name,
                scrobbled_at=scrobbled_at,
                album_name=track.album.name,
                track_mbid=track.mbid,
                artist_mbid=track.artist.mbid,
                album_mbid=track.album.mbid,
            )
        except UnicodeEncodeError as e:
            # json.loads accepts lone surrogate escapes; sqlite3 cannot store them
            log.warning(
                f"Skipping track with unencodable text: {track.artist.name!r} - {track.name!r}: {e}"
            )
            result.skipped += 1
            continue
        if scrobble_id is None:
            result.duplicates += 1
        else:
            result.inserted += 1

    log.info(
        f"Import complete for user '{username}': inserted {result.inserted}/{len(tracks)} tracks "
        f"({result.duplicates} duplicates, {result.skipped} skipped)"
    )
    return result


## Tests


def _track(name: str, uts: str | None = "1703951089", **extra: Any) -> dict[str, Any]:
    track: dict[str, Any] = {
        "name": name,
        "mbid": "",
        "artist": {"mbid": "", "#text": "Slowdive"},
        "album": {"mbid": "", "#text": "everything is alive"},
        **extra,
    }
    if uts is not None:
        track["date"] = {"uts": uts, "#text": "30 Dec 2023, 15:44"}
    return track


def test_parse_single_track_object():
    payload = {"recenttracks": {"track": _track("kisses"), "@attr": {"user": "listener"}}}
    tracks = parse_recent_tracks(payload)
    assert len(tracks) == 1
    assert tracks[0].artist.name == "Slowdive"
    assert tracks[0].date is not None and tracks[0].date.uts == "1703951089"


def test_parse_error_codes():
    try:
        parse_recent_tracks({"error": 17, "message": "Login: User required"}, "listener")
        raise AssertionError("Should have raised LastFmError")
    except LastFmError as e:
        assert e.code == 17
        assert "private profile" in str(e)

    try:
        parse_recent_tracks({"error": 8, "message": "Operation failed"})
        raise AssertionError("Should have raised LastFmError")
    except LastFmError as e:
        assert str(e) == "Last.fm API error 8: Operation failed"


def test_import_skips_now_playing_and_undated(tmp_path):
    store = ScrobblesDB(tmp_path / "scrobbles.sqlite")
    payload = {
        "recenttracks": {
            "track": [
                _track("alife", uts=None, **{"@attr": {"nowplaying": "true"}}),
                _track("undated", uts=None),
                _track("bad", uts="not-a-number"),
                _track("kisses"),
            ]
        }
    }

    result = import_recent_tracks(store, "listener", payload)
    assert result.inserted == 1
    assert result.skipped == 3

    scrobbles = store.list_scrobbles_needing_year("listener", 2023)
    assert [s.track_name for s in scrobbles] == ["kisses"]
    assert scrobbles[0].track_mbid is None
