"""
Listening statistics over the stored history.

Every function here is a pure single pass over a list of ListeningEvents:
period filtering, summary counters and top-N rankings. Only qualifying
plays (30+ seconds) count toward totals and rankings.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from config import MIN_PLAY_DURATION_MS
from history import ListeningEvent

PERIODS = ("today", "week", "month", "year", "2023", "2024", "2025", "all")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class ListeningStats:
    """Summary counters for a window of history."""
    total_qualifying_plays: int = 0
    total_listening_ms: int = 0
    unique_track_count: int = 0
    unique_artist_count: int = 0

    @property
    def total_minutes(self) -> int:
        return self.total_listening_ms // 60000

    def to_dict(self) -> dict:
        data = asdict(self)
        data["total_minutes"] = self.total_minutes
        return data


@dataclass
class TopTrack:
    track_id: str
    track_name: str
    artist_name: str
    album_image: str = ""
    play_count: int = 0
    total_duration_ms: int = 0


@dataclass
class TopArtist:
    artist_name: str
    artist_image: str = ""
    play_count: int = 0
    total_duration_ms: int = 0


# =========================================================================
# PERIOD WINDOWS
# =========================================================================

def get_date_range(period: str, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    Map a period selector to an inclusive [start, end] UTC window.

    Unknown selectors behave like "all".
    """
    now = now or datetime.now(timezone.utc)

    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0), now
    if period == "week":
        return now - timedelta(days=7), now
    if period == "month":
        return now - timedelta(days=30), now
    if period == "year":
        return datetime(now.year, 1, 1, tzinfo=timezone.utc), now
    if period in ("2023", "2024", "2025"):
        year = int(period)
        return (
            datetime(year, 1, 1, tzinfo=timezone.utc),
            datetime(year, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc),
        )
    return EPOCH, now


def in_window(start: datetime, end: datetime) -> Callable[[ListeningEvent], bool]:
    return lambda e: start <= e.played_at <= end


def filter_by_period(
    events: Iterable[ListeningEvent],
    period: str,
    now: Optional[datetime] = None
) -> list[ListeningEvent]:
    start, end = get_date_range(period, now)
    predicate = in_window(start, end)
    return [e for e in events if predicate(e)]


def qualifying(events: Iterable[ListeningEvent]) -> list[ListeningEvent]:
    """Plays of at least MIN_PLAY_DURATION_MS."""
    return [e for e in events if e.duration_ms >= MIN_PLAY_DURATION_MS]


# =========================================================================
# AGGREGATES
# =========================================================================

def compute_stats(events: Iterable[ListeningEvent]) -> ListeningStats:
    """Totals over qualifying plays. Empty input gives all zeros."""
    plays = qualifying(events)
    return ListeningStats(
        total_qualifying_plays=len(plays),
        total_listening_ms=sum(e.duration_ms for e in plays),
        unique_track_count=len({e.track_id for e in plays}),
        unique_artist_count=len({e.artist_name for e in plays}),
    )


def top_tracks(events: Iterable[ListeningEvent], limit: int = 10) -> list[TopTrack]:
    """
    Most played tracks, grouped by track_id.

    Ties keep first-encountered order (dicts preserve insertion order and
    sorted() is stable). The first non-empty album image seen is kept.
    """
    groups: dict[str, TopTrack] = {}
    for e in qualifying(events):
        entry = groups.get(e.track_id)
        if entry is None:
            groups[e.track_id] = TopTrack(
                track_id=e.track_id,
                track_name=e.track_name,
                artist_name=e.artist_name,
                album_image=e.album_image,
                play_count=1,
                total_duration_ms=e.duration_ms,
            )
            continue
        entry.play_count += 1
        entry.total_duration_ms += e.duration_ms
        if e.album_image and not entry.album_image:
            entry.album_image = e.album_image

    ranked = sorted(groups.values(), key=lambda t: t.play_count, reverse=True)
    return ranked[:max(limit, 0)]


def top_artists(events: Iterable[ListeningEvent], limit: int = 10) -> list[TopArtist]:
    """Most played artists, grouped by display name."""
    groups: dict[str, TopArtist] = {}
    for e in qualifying(events):
        entry = groups.setdefault(e.artist_name, TopArtist(artist_name=e.artist_name))
        entry.play_count += 1
        entry.total_duration_ms += e.duration_ms

    ranked = sorted(groups.values(), key=lambda a: a.play_count, reverse=True)
    return ranked[:max(limit, 0)]


def format_listening_time(ms: int) -> str:
    """Human-readable total, e.g. '12h 5min' or '42 min'."""
    hours = ms // 3_600_000
    minutes = (ms % 3_600_000) // 60_000
    if hours > 0:
        return f"{hours}h {minutes}min"
    return f"{minutes} min"
