"""
Mood detection from averaged Spotify audio features.

Takes the valid track ids of the recent window, fetches their audio
features in one batch, averages them and maps the average onto one of seven
fixed moods. When there is nothing to analyze the neutral default profile
is returned instead of an error.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from config import DEFAULT_MOOD_FEATURES, MOOD_MAX_TRACK_IDS, MOOD_MAX_UNIQUE_IDS
from errors import TokenExpired, UpstreamError
from history import ListeningEvent, is_valid_track_id
from spotify_client import SpotifyClient

FEATURE_KEYS = ("energy", "danceability", "valence", "acousticness", "instrumentalness", "tempo")

PERIOD_DAYS = {"week": 7, "month": 30}

# Outcome of an analysis, exposed so callers can tell "no data" cases apart
SOURCE_COMPUTED = "computed"
SOURCE_NO_TRACKS = "no_tracks"
SOURCE_NO_FEATURES = "no_features"


@dataclass(frozen=True)
class Mood:
    key: str
    label: str
    emoji: str


EUPHORIC = Mood("euphoric", "Euphorique", "🔥")
INTENSE = Mood("intense", "Intense", "⚡")
PEACEFUL = Mood("peaceful", "Peaceful", "☀️")
MELANCHOLIC = Mood("melancholic", "Mélancolique", "🌙")
GROOVY = Mood("groovy", "Groovy", "💃")
ACOUSTIC = Mood("acoustic", "Acoustique", "🎸")
BALANCED = Mood("balanced", "Équilibré", "✨")

MOODS = (EUPHORIC, INTENSE, PEACEFUL, MELANCHOLIC, GROOVY, ACOUSTIC, BALANCED)


@dataclass
class MoodResult:
    features: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_MOOD_FEATURES))
    mood: Mood = BALANCED
    source: str = SOURCE_COMPUTED
    tracks_analyzed: int = 0

    def to_dict(self) -> dict:
        return {
            **self.features,
            "mood": self.mood.label,
            "mood_emoji": self.mood.emoji,
            "mood_key": self.mood.key,
            "source": self.source,
            "tracks_analyzed": self.tracks_analyzed,
        }


def classify_mood(features: dict[str, float]) -> Mood:
    """
    Decision tree over averaged features. First match wins:
    energy/valence quadrants, then danceability, then acousticness.
    """
    energy = features["energy"]
    valence = features["valence"]

    if energy > 0.7 and valence > 0.6:
        return EUPHORIC
    if energy > 0.7 and valence < 0.4:
        return INTENSE
    if energy < 0.4 and valence > 0.6:
        return PEACEFUL
    if energy < 0.4 and valence < 0.4:
        return MELANCHOLIC
    if features["danceability"] > 0.7:
        return GROOVY
    if features["acousticness"] > 0.6:
        return ACOUSTIC
    return BALANCED


def default_mood(source: str) -> MoodResult:
    return MoodResult(features=dict(DEFAULT_MOOD_FEATURES), mood=BALANCED, source=source)


def filter_mood_window(
    events: Iterable[ListeningEvent],
    period: str = "week",
    now: Optional[datetime] = None
) -> list[ListeningEvent]:
    """Events of the last 7 days ("week", default) or 30 days ("month")."""
    now = now or datetime.now(timezone.utc)
    start = now - timedelta(days=PERIOD_DAYS.get(period, 7))
    return [e for e in events if e.played_at >= start]


def select_track_ids(events: Iterable[ListeningEvent]) -> list[str]:
    """
    First MOOD_MAX_TRACK_IDS valid ids, de-duplicated in order, capped at
    MOOD_MAX_UNIQUE_IDS for the audio-features batch.
    """
    valid = [e.track_id for e in events if is_valid_track_id(e.track_id)][:MOOD_MAX_TRACK_IDS]
    return list(dict.fromkeys(valid))[:MOOD_MAX_UNIQUE_IDS]


def average_features(vectors: list[dict]) -> dict[str, float]:
    count = len(vectors)
    return {
        key: sum(float(v.get(key) or 0) for v in vectors) / count
        for key in FEATURE_KEYS
    }


def mood_from_vectors(vectors: Iterable[Optional[dict]]) -> MoodResult:
    """Average non-null feature vectors; default profile when none remain."""
    usable = [v for v in vectors if v]
    if not usable:
        return default_mood(SOURCE_NO_FEATURES)
    features = average_features(usable)
    return MoodResult(
        features=features,
        mood=classify_mood(features),
        source=SOURCE_COMPUTED,
        tracks_analyzed=len(usable),
    )


async def analyze_mood(
    client: SpotifyClient,
    events: list[ListeningEvent],
    period: str = "week",
    now: Optional[datetime] = None
) -> MoodResult:
    """
    Full pipeline: window -> ids -> audio features -> average -> mood.

    TokenExpired propagates so the caller can refresh and retry; any other
    upstream failure counts as "no features".
    """
    window = filter_mood_window(events, period, now)
    track_ids = select_track_ids(window)
    print(f"[mood] {len(window)} plays this {period}, {len(track_ids)} unique valid ids")

    if not track_ids:
        return default_mood(SOURCE_NO_TRACKS)

    try:
        data = await client.get_audio_features(track_ids)
    except TokenExpired:
        raise
    except UpstreamError as e:
        print(f"[mood] Audio features unavailable: {e}")
        data = None

    vectors = (data or {}).get("audio_features") or []
    result = mood_from_vectors(vectors)
    print(f"[mood] Got {result.tracks_analyzed} audio feature vectors")
    return result
