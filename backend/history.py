"""
Listening history events.

One ListeningEvent per playback. Events arrive from three places:
- polling /me/player/recently-played
- the JSON import endpoint (entries exported by the dashboard)
- raw GDPR "extended streaming history" files

All timestamps are normalised to UTC so that the same play imported twice
lands on the same de-duplication key.
"""
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Union

from config import MIN_PLAY_DURATION_MS, VALID_TRACK_ID_LENGTH
from errors import ValidationError


@dataclass(frozen=True)
class ListeningEvent:
    """A single playback record. Immutable once stored."""
    track_id: str
    track_name: str
    artist_name: str
    album_name: str
    duration_ms: int
    played_at: datetime
    album_image: str = ""
    external_url: str = ""

    @property
    def is_qualifying(self) -> bool:
        """Played long enough to count toward stats."""
        return self.duration_ms >= MIN_PLAY_DURATION_MS

    @property
    def has_valid_track_id(self) -> bool:
        return is_valid_track_id(self.track_id)

    @property
    def day(self) -> str:
        """UTC calendar day, YYYY-MM-DD."""
        return self.played_at.date().isoformat()

    def to_dict(self) -> dict:
        data = asdict(self)
        data["played_at"] = format_timestamp(self.played_at)
        return data


def is_valid_track_id(track_id: str) -> bool:
    return bool(track_id) and len(track_id) == VALID_TRACK_ID_LENGTH


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime (naive = UTC)."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Canonical storage form. Sorts lexically in time order."""
    return parse_timestamp(dt).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# =========================================================================
# PARSERS
# =========================================================================

def from_recently_played_item(item: dict) -> ListeningEvent:
    """Convert one /me/player/recently-played item."""
    track = item.get("track") or {}
    album = track.get("album") or {}
    images = album.get("images") or []
    return ListeningEvent(
        track_id=track.get("id") or "",
        track_name=track.get("name") or "",
        artist_name=", ".join(a.get("name", "") for a in track.get("artists") or []),
        album_name=album.get("name") or "",
        album_image=images[0].get("url", "") if images else "",
        duration_ms=int(track.get("duration_ms") or 0),
        played_at=parse_timestamp(item["played_at"]),
        external_url=(track.get("external_urls") or {}).get("spotify", ""),
    )


def _is_duration(value: Any) -> bool:
    """Finite, non-negative number. JSON true/false are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


def from_import_entry(entry: Any) -> ListeningEvent:
    """
    Convert one entry of the import payload.

    Expected keys: trackId, trackName, artistName, albumName, albumImage,
    duration_ms, played_at, spotifyUrl. Raises ValidationError when the entry
    is not an object, lacks played_at, or has a negative/non-integer duration.
    """
    if not isinstance(entry, dict):
        raise ValidationError("Each entry must be an object")
    if not entry.get("played_at"):
        raise ValidationError("Entry is missing played_at")

    duration = entry.get("duration_ms", 0)
    if not _is_duration(duration):
        raise ValidationError(f"Invalid duration_ms: {duration!r}")

    return ListeningEvent(
        track_id=str(entry.get("trackId") or ""),
        track_name=str(entry.get("trackName") or ""),
        artist_name=str(entry.get("artistName") or ""),
        album_name=str(entry.get("albumName") or ""),
        album_image=str(entry.get("albumImage") or ""),
        duration_ms=int(duration),
        played_at=parse_timestamp(entry["played_at"]),
        external_url=str(entry.get("spotifyUrl") or ""),
    )


def parse_import_payload(entries: Any) -> list[ListeningEvent]:
    if not isinstance(entries, list):
        raise ValidationError("Invalid entries")
    return [from_import_entry(entry) for entry in entries]


def parse_gdpr_records(records: Any) -> list[ListeningEvent]:
    """
    Convert Spotify "extended streaming history" records.

    Keeps only music plays of 30+ seconds with a track URI; podcast episodes
    and skipped plays are dropped.
    """
    if not isinstance(records, list):
        raise ValidationError("Expected a list of streaming history records")

    events = []
    for record in records:
        if not isinstance(record, dict):
            raise ValidationError("Each record must be an object")
        track_name = record.get("master_metadata_track_name")
        uri = record.get("spotify_track_uri")
        ms_played = record.get("ms_played") or 0
        if not _is_duration(ms_played):
            raise ValidationError(f"Invalid ms_played: {ms_played!r}")
        if uri is not None and not isinstance(uri, str):
            raise ValidationError(f"Invalid spotify_track_uri: {uri!r}")
        if not track_name or not uri or ms_played < MIN_PLAY_DURATION_MS:
            continue
        if not record.get("ts"):
            raise ValidationError("Record is missing ts")

        parts = uri.split(":")
        track_id = parts[2] if len(parts) > 2 else ""
        events.append(ListeningEvent(
            track_id=track_id,
            track_name=str(track_name),
            artist_name=record.get("master_metadata_album_artist_name") or "Unknown",
            album_name=record.get("master_metadata_album_album_name") or "Unknown",
            album_image="",
            duration_ms=int(ms_played),
            played_at=parse_timestamp(record["ts"]),
            external_url=f"https://open.spotify.com/track/{track_id}",
        ))
    return events
