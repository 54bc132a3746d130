"""
Achievement catalog and scoring.

Unlocked state is never stored: every read recomputes progress from the
current history and streak, so the result is a pure function of its inputs.
"""
from dataclasses import dataclass, asdict
from typing import Iterable

from history import ListeningEvent
from listening_stats import compute_stats
from streak_tracker import StreakRecord, best_streak


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    description: str
    icon: str
    target: int
    category: str
    metric: str  # tracks | minutes | streak | artists | night | early | weekend
    icon_color: str = ""
    bg_color: str = ""


_a = AchievementDefinition

ACHIEVEMENTS = [
    # Listening milestones (qualifying plays)
    _a("first_steps", "Premiers Pas", "10 écoutes", "fa-shoe-prints", 10, "listening", "tracks", "text-blue-400", "bg-blue-500/20"),
    _a("music_lover", "Mélomane", "100 écoutes", "fa-heart", 100, "listening", "tracks", "text-pink-400", "bg-pink-500/20"),
    _a("addict", "Accro", "500 écoutes", "fa-bolt", 500, "listening", "tracks", "text-yellow-400", "bg-yellow-500/20"),
    _a("marathoner", "Marathonien", "1 000 écoutes", "fa-person-running", 1000, "listening", "tracks", "text-orange-400", "bg-orange-500/20"),
    _a("legend", "Légende", "5 000 écoutes", "fa-crown", 5000, "listening", "tracks", "text-amber-400", "bg-amber-500/20"),
    _a("mythic", "Mythique", "10 000 écoutes", "fa-gem", 10000, "listening", "tracks", "text-purple-400", "bg-purple-500/20"),
    _a("godlike", "Divin", "25 000 écoutes", "fa-star", 25000, "listening", "tracks", "text-yellow-300", "bg-yellow-400/20"),
    _a("immortal", "Immortel", "50 000 écoutes", "fa-infinity", 50000, "listening", "tracks", "text-cyan-300", "bg-cyan-400/20"),

    # Time milestones (minutes)
    _a("hour_1", "1 Heure", "60 minutes", "fa-clock", 60, "time", "minutes", "text-cyan-400", "bg-cyan-500/20"),
    _a("hour_10", "10 Heures", "600 minutes", "fa-hourglass-half", 600, "time", "minutes", "text-teal-400", "bg-teal-500/20"),
    _a("hour_100", "Centurion", "6 000 minutes", "fa-hourglass", 6000, "time", "minutes", "text-emerald-400", "bg-emerald-500/20"),
    _a("time_500h", "Dédié", "30 000 min (500h)", "fa-clock-rotate-left", 30000, "time", "minutes", "text-green-400", "bg-green-500/20"),
    _a("time_1000h", "Passionné", "60 000 min (1000h)", "fa-stopwatch", 60000, "time", "minutes", "text-lime-400", "bg-lime-500/20"),
    _a("time_100k", "100K Master", "100 000 minutes", "fa-trophy", 100000, "time", "minutes", "text-yellow-500", "bg-yellow-600/20"),
    _a("time_200k", "Légende Ultime", "200 000 minutes", "fa-medal", 200000, "time", "minutes", "text-orange-500", "bg-orange-600/20"),
    _a("time_500k", "Dieu de la Musique", "500 000 minutes", "fa-dragon", 500000, "time", "minutes", "text-red-500", "bg-red-600/20"),

    # Streaks (days)
    _a("streak_3", "Régulier", "3 jours de streak", "fa-fire", 3, "streak", "streak", "text-orange-400", "bg-orange-500/20"),
    _a("streak_7", "Semainier", "7 jours de streak", "fa-fire-flame-curved", 7, "streak", "streak", "text-orange-500", "bg-orange-600/20"),
    _a("streak_14", "Dévoué", "14 jours de streak", "fa-fire-flame-simple", 14, "streak", "streak", "text-red-400", "bg-red-500/20"),
    _a("streak_30", "Inarrêtable", "30 jours de streak", "fa-meteor", 30, "streak", "streak", "text-red-500", "bg-red-600/20"),
    _a("streak_60", "Machine", "60 jours de streak", "fa-robot", 60, "streak", "streak", "text-purple-500", "bg-purple-600/20"),
    _a("streak_100", "Centenaire", "100 jours de streak", "fa-hundred-points", 100, "streak", "streak", "text-yellow-400", "bg-yellow-500/20"),
    _a("streak_365", "Annuel", "365 jours de streak", "fa-calendar-check", 365, "streak", "streak", "text-green-400", "bg-green-500/20"),

    # Discovery (unique artists)
    _a("artists_10", "Curieux", "10 artistes", "fa-users", 10, "discovery", "artists", "text-purple-400", "bg-purple-500/20"),
    _a("artists_50", "Explorateur", "50 artistes", "fa-compass", 50, "discovery", "artists", "text-violet-400", "bg-violet-500/20"),
    _a("artists_100", "Globe-Trotter", "100 artistes", "fa-earth-americas", 100, "discovery", "artists", "text-indigo-400", "bg-indigo-500/20"),
    _a("artists_250", "Collectionneur", "250 artistes", "fa-layer-group", 250, "discovery", "artists", "text-blue-400", "bg-blue-500/20"),
    _a("artists_500", "Encyclopédie", "500 artistes", "fa-book", 500, "discovery", "artists", "text-cyan-400", "bg-cyan-500/20"),
    _a("artists_1000", "Omniscient", "1000 artistes", "fa-brain", 1000, "discovery", "artists", "text-pink-400", "bg-pink-500/20"),

    # Special
    _a("night_owl", "Noctambule", "Écoute après minuit", "fa-moon", 1, "special", "night", "text-blue-300", "bg-blue-400/20"),
    _a("early_bird", "Lève-tôt", "Écoute avant 6h", "fa-sun", 1, "special", "early", "text-yellow-300", "bg-yellow-400/20"),
    _a("weekend_warrior", "Weekend Warrior", "1000 min un weekend", "fa-champagne-glasses", 1000, "special", "weekend", "text-pink-300", "bg-pink-400/20"),
]


@dataclass
class SpecialConditions:
    """Flags gathered in one scan over all events (UTC hours and weekdays)."""
    night_owl: bool = False
    early_bird: bool = False
    weekend_minutes: float = 0.0


def scan_special_conditions(events: Iterable[ListeningEvent]) -> SpecialConditions:
    conditions = SpecialConditions()
    for e in events:
        hour = e.played_at.hour
        # Hour 4 satisfies both night owl and early bird
        if 0 <= hour < 5:
            conditions.night_owl = True
        if 4 <= hour < 6:
            conditions.early_bird = True
        if e.played_at.weekday() >= 5:  # Saturday, Sunday
            conditions.weekend_minutes += e.duration_ms / 60000
    return conditions


def score_achievements(events: list[ListeningEvent], streak: StreakRecord) -> dict:
    """
    Compute progress and unlocked state for every achievement.

    Returns {"achievements": [...], "stats": {...}}.
    """
    stats = compute_stats(events)
    total_plays = stats.total_qualifying_plays
    total_minutes = stats.total_minutes
    unique_artists = stats.unique_artist_count
    streak_days = best_streak(streak)
    special = scan_special_conditions(events)

    results = []
    for definition in ACHIEVEMENTS:
        if definition.metric == "tracks":
            progress = total_plays
        elif definition.metric == "minutes":
            progress = total_minutes
        elif definition.metric == "streak":
            progress = streak_days
        elif definition.metric == "artists":
            progress = unique_artists
        elif definition.metric == "night":
            progress = int(special.night_owl)
        elif definition.metric == "early":
            progress = int(special.early_bird)
        elif definition.metric == "weekend":
            progress = int(special.weekend_minutes)
        else:
            progress = 0

        if definition.metric == "weekend":
            unlocked = special.weekend_minutes >= definition.target
        else:
            unlocked = progress >= definition.target

        results.append({**asdict(definition), "progress": progress, "unlocked": unlocked})

    return {
        "achievements": results,
        "stats": {
            "total_qualifying_plays": total_plays,
            "total_minutes": total_minutes,
            "unique_artists": unique_artists,
            "longest_streak": streak.longest_streak,
        },
    }
