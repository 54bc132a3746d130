"""
Listening Stats - FastAPI Backend

Personal Spotify analytics built on a locally stored listening log.

Flow:
1. Connect Spotify (OAuth, session cookie)
2. Poll now-playing / recently-played into the history log, or import a
   GDPR export
3. Read statistics derived fresh from that log: totals, top lists, streak,
   achievements, mood, heatmap, recommendations
"""
import asyncio
import urllib.parse
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Body, Cookie, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from config import (
    SPOTIFY_CLIENT_ID,
    SPOTIFY_AUTH_URL,
    SPOTIFY_REDIRECT_URI,
    SPOTIFY_SCOPES,
    FRONTEND_URL,
    CORS_ORIGINS,
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_MAX_AGE,
    RECENT_HISTORY_LIMIT,
    TOP_ITEMS_LIMIT,
)
from errors import AuthError, NotAuthenticated, UpstreamError, ValidationError
from spotify_client import SpotifyClient, exchange_code_for_token
from history import from_recently_played_item, parse_gdpr_records, parse_import_payload, parse_timestamp
from listening_stats import compute_stats, filter_by_period, format_listening_time, top_artists, top_tracks
from streak_tracker import StreakRecord, advance_streak, listened_on
from achievements import score_achievements
from mood_classifier import analyze_mood
from heatmap import build_heatmap
from enrichment import enrich_top_items, fetch_previews
from recommendations import get_recommendations
from session_manager import authenticated_session, call_with_refresh, load_session, now_ms
import database as db

VERSION = "0.1.0"

app = FastAPI(
    title="Listening Stats",
    description="Spotify listening history, streaks, achievements and mood.",
    version=VERSION
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================================================
# ERROR MAPPING
# =========================================================================

@app.exception_handler(NotAuthenticated)
async def not_authenticated_handler(request: Request, exc: NotAuthenticated):
    return JSONResponse(status_code=401, content={"detail": exc.message})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=401, content={"detail": "Token expired", "reason": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    return JSONResponse(
        status_code=502,
        content={"detail": exc.message, "upstream_status": exc.status_code},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# =========================================================================
# RESPONSE MODELS
# =========================================================================

class AuthUrlResponse(BaseModel):
    """Spotify authorization URL."""
    auth_url: str


class UserInfo(BaseModel):
    id: str
    display_name: str
    profile_image: Optional[str] = None


class SessionResponse(BaseModel):
    authenticated: bool
    user: Optional[UserInfo] = None


class ListeningEventItem(BaseModel):
    track_id: str
    track_name: str
    artist_name: str
    album_name: str
    album_image: str
    duration_ms: int
    played_at: str
    external_url: str


class StatsSummary(BaseModel):
    total_qualifying_plays: int
    total_listening_ms: int
    total_minutes: int
    total_listening_time: str  # "12h 5min"
    unique_track_count: int
    unique_artist_count: int


class TopTrackItem(BaseModel):
    track_id: str
    track_name: str
    artist_name: str
    album_image: str
    play_count: int
    total_duration_ms: int


class TopArtistItem(BaseModel):
    artist_name: str
    artist_image: str
    play_count: int
    total_duration_ms: int


class StatsResponse(BaseModel):
    """Period-scoped statistics from the stored history."""
    user: UserInfo
    period: str
    stats: StatsSummary
    recent_history: list[ListeningEventItem]  # always the latest plays, any period
    top_tracks: list[TopTrackItem]
    top_artists: list[TopArtistItem]


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_listen_date: str


class AchievementItem(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    target: int
    category: str
    metric: str
    icon_color: str
    bg_color: str
    progress: int
    unlocked: bool


class AchievementStats(BaseModel):
    total_qualifying_plays: int
    total_minutes: int
    unique_artists: int
    longest_streak: int


class AchievementsResponse(BaseModel):
    achievements: list[AchievementItem]
    stats: AchievementStats


class MoodResponse(BaseModel):
    """Averaged audio profile and the mood it maps to."""
    energy: float
    danceability: float
    valence: float
    acousticness: float
    instrumentalness: float
    tempo: float
    mood: str
    mood_emoji: str
    mood_key: str
    source: str  # computed | no_tracks | no_features
    tracks_analyzed: int


class HeatmapResponse(BaseModel):
    heatmap: dict[str, int]
    total_plays: int
    active_days: int


class ImportResponse(BaseModel):
    success: bool
    count: int      # entries received
    inserted: int   # entries stored (duplicates skipped)


class LikedSongsResponse(BaseModel):
    total: int
    recently_added: int


# =========================================================================
# AUTH ENDPOINTS
# =========================================================================

def _authorize_url() -> str:
    if not SPOTIFY_CLIENT_ID:
        raise HTTPException(status_code=500, detail="Spotify client ID not configured")

    params = {
        "client_id": SPOTIFY_CLIENT_ID,
        "response_type": "code",
        "redirect_uri": SPOTIFY_REDIRECT_URI,
        "scope": " ".join(SPOTIFY_SCOPES),
        "show_dialog": "true"
    }
    return f"{SPOTIFY_AUTH_URL}?{urllib.parse.urlencode(params)}"


@app.get("/auth/spotify/url", response_model=AuthUrlResponse)
def get_spotify_auth_url():
    """Generate Spotify OAuth authorization URL."""
    return AuthUrlResponse(auth_url=_authorize_url())


@app.get("/auth/spotify/login")
def spotify_login():
    """Redirect the browser to Spotify's consent screen."""
    return RedirectResponse(_authorize_url())


@app.get("/auth/spotify/callback")
async def spotify_callback(code: Optional[str] = None, error: Optional[str] = None):
    """
    Exchange the authorization code, store the session and set the cookie.
    Failures redirect home with an error query parameter.
    """
    if error:
        print(f"[auth] Spotify returned error: {error}")
        return RedirectResponse(f"{FRONTEND_URL}/?error=access_denied")
    if not code:
        return RedirectResponse(f"{FRONTEND_URL}/?error=no_code")

    try:
        tokens = await exchange_code_for_token(code)
        profile = await SpotifyClient(tokens["access_token"]).get_profile()
    except (AuthError, UpstreamError) as e:
        print(f"[auth] OAuth callback error: {e}")
        details = urllib.parse.quote(str(e))
        return RedirectResponse(f"{FRONTEND_URL}/?error=auth_failed&details={details}")

    images = profile.get("images") or []
    session = db.UserSession(
        user_id=profile["id"],
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token", ""),
        expires_at=now_ms() + int(tokens.get("expires_in", 3600)) * 1000,
        display_name=profile.get("display_name") or profile["id"],
        profile_image=images[0].get("url") if images else None,
    )
    db.save_session(session)

    response = RedirectResponse(f"{FRONTEND_URL}/dashboard")
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session.user_id,
        max_age=SESSION_COOKIE_MAX_AGE,
        httponly=True,
        secure=FRONTEND_URL.startswith("https"),
        samesite="lax",
        path="/",
    )
    print(f"[auth] Session created for {session.display_name}")
    return response


@app.get("/auth/logout")
def logout():
    """Clear the session cookie."""
    response = RedirectResponse(f"{FRONTEND_URL}/")
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


@app.get("/session", response_model=SessionResponse)
def get_session_info(spotify_user_id: Optional[str] = Cookie(None)):
    """Whether the cookie maps to a stored session. Never 401s."""
    try:
        session = load_session(spotify_user_id)
    except NotAuthenticated:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=_user_info(session))


def _user_info(session: db.UserSession) -> UserInfo:
    return UserInfo(
        id=session.user_id,
        display_name=session.display_name,
        profile_image=session.profile_image,
    )


# =========================================================================
# HISTORY STATS
# =========================================================================

@app.get("/stats", response_model=StatsResponse)
async def get_stats(
    period: str = Query("all", description="today, week, month, year, 2023, 2024, 2025 or all"),
    spotify_user_id: Optional[str] = Cookie(None),
):
    """
    Totals and top lists for a period, plus the latest plays.
    Missing album and artist images are backfilled best-effort.
    """
    session = await authenticated_session(spotify_user_id)

    history = db.read_all_history(session.user_id)
    filtered = filter_by_period(history, period)
    stats = compute_stats(filtered)
    recent = db.read_recent_history(session.user_id, RECENT_HISTORY_LIMIT)

    tracks = top_tracks(filtered, TOP_ITEMS_LIMIT)
    artists = top_artists(filtered, TOP_ITEMS_LIMIT)
    tracks, artists = await enrich_top_items(SpotifyClient(session.access_token), tracks, artists)

    return StatsResponse(
        user=_user_info(session),
        period=period,
        stats=StatsSummary(
            **stats.to_dict(),
            total_listening_time=format_listening_time(stats.total_listening_ms),
        ),
        recent_history=[ListeningEventItem(**e.to_dict()) for e in recent],
        top_tracks=[TopTrackItem(**asdict(t)) for t in tracks],
        top_artists=[TopArtistItem(**asdict(a)) for a in artists],
    )


@app.get("/streak", response_model=StreakResponse)
def get_streak(spotify_user_id: Optional[str] = Cookie(None)):
    """Advance the listening streak for today (UTC) and return it."""
    session = load_session(spotify_user_id)

    today = datetime.now(timezone.utc).date()
    history = db.read_all_history(session.user_id)
    listened = listened_on(history, today)

    streak = db.update_streak(
        session.user_id,
        lambda record: advance_streak(record, listened, today)
    )
    print(f"[streak] {session.user_id}: {streak.current_streak} days (listened today: {listened})")
    return StreakResponse(**streak.to_dict())


@app.get("/achievements", response_model=AchievementsResponse)
def get_achievements(spotify_user_id: Optional[str] = Cookie(None)):
    """Progress on every achievement, recomputed from the full history."""
    session = load_session(spotify_user_id)
    history = db.read_all_history(session.user_id)
    streak = db.get_streak(session.user_id) or StreakRecord()
    return AchievementsResponse(**score_achievements(history, streak))


@app.get("/mood", response_model=MoodResponse)
async def get_mood(
    period: str = Query("week", description="week or month"),
    spotify_user_id: Optional[str] = Cookie(None),
):
    """Average audio features of recent plays and the resulting mood."""
    session = await authenticated_session(spotify_user_id)
    history = db.read_all_history(session.user_id)
    result = await call_with_refresh(
        session, lambda client: analyze_mood(client, history, period)
    )
    return MoodResponse(**result.to_dict())


@app.get("/heatmap", response_model=HeatmapResponse)
def get_heatmap(
    period: str = Query("all"),
    spotify_user_id: Optional[str] = Cookie(None),
):
    """Plays per UTC day. Days without plays are omitted."""
    session = load_session(spotify_user_id)
    history = filter_by_period(db.read_all_history(session.user_id), period)
    heatmap = build_heatmap(history)
    return HeatmapResponse(
        heatmap=heatmap,
        total_plays=sum(heatmap.values()),
        active_days=len(heatmap),
    )


# =========================================================================
# SPOTIFY PASSTHROUGH
# =========================================================================

@app.get("/top")
async def get_top_items(
    time_range: str = Query("medium_term", pattern="^(short_term|medium_term|long_term)$"),
    spotify_user_id: Optional[str] = Cookie(None),
):
    """Spotify's own top tracks and artists for a time range."""
    session = await authenticated_session(spotify_user_id)

    async def fetch(client: SpotifyClient):
        return await asyncio.gather(
            client.get_top_tracks(time_range, 50),
            client.get_top_artists(time_range, 50),
        )

    tracks, artists = await call_with_refresh(session, fetch)
    return {
        "top_tracks": (tracks or {}).get("items", []),
        "top_artists": (artists or {}).get("items", []),
    }


@app.get("/now-playing")
async def get_now_playing(spotify_user_id: Optional[str] = Cookie(None)):
    """
    Currently playing track and the last 50 plays.
    The recent plays are appended to the stored history (duplicates skipped).
    """
    session = await authenticated_session(spotify_user_id)

    async def fetch(client: SpotifyClient):
        current = await client.get_currently_playing()
        recent = await client.get_recently_played(50)
        return current, recent

    current, recent = await call_with_refresh(session, fetch)
    items = (recent or {}).get("items") or []

    events = []
    for item in items:
        if not item.get("played_at"):
            print("[db] Skipping recently-played item without played_at")
            continue
        try:
            events.append(from_recently_played_item(item))
        except ValidationError as e:
            print(f"[db] Skipping recently-played item: {e}")
    if events:
        db.append_history(session.user_id, events)

    return {"currently_playing": current, "recently_played": items}


@app.get("/liked-songs", response_model=LikedSongsResponse)
async def get_liked_songs(spotify_user_id: Optional[str] = Cookie(None)):
    """Saved tracks count and how many were added in the last 7 days."""
    session = await authenticated_session(spotify_user_id)

    async def fetch(client: SpotifyClient):
        return await client.get_saved_tracks(limit=50)

    data = await call_with_refresh(session, fetch) or {}
    week_ago = datetime.now(timezone.utc) - timedelta(days=7)
    recently_added = 0
    for item in data.get("items") or []:
        added_at = item.get("added_at")
        if not added_at:
            continue
        try:
            if parse_timestamp(added_at) > week_ago:
                recently_added += 1
        except ValidationError as e:
            print(f"[import] Skipping saved track: {e}")

    return LikedSongsResponse(total=data.get("total", 0), recently_added=recently_added)


@app.get("/previews")
async def get_previews(
    ids: Optional[str] = Query(None, description="Comma-separated track ids"),
    spotify_user_id: Optional[str] = Cookie(None),
):
    """30-second preview URLs for up to 50 tracks. Empty on upstream failure."""
    session = await authenticated_session(spotify_user_id)
    if not ids:
        raise HTTPException(status_code=400, detail="No track IDs provided")

    track_ids = [i.strip() for i in ids.split(",") if i.strip()]
    previews = await fetch_previews(SpotifyClient(session.access_token), track_ids)
    return {"previews": previews}


@app.get("/recommendations")
async def get_track_recommendations(spotify_user_id: Optional[str] = Cookie(None)):
    """Tracks recommended from the most recent distinct plays."""
    session = await authenticated_session(spotify_user_id)
    history = db.read_all_history(session.user_id)
    return await call_with_refresh(
        session, lambda client: get_recommendations(client, history)
    )


# =========================================================================
# HISTORY IMPORT
# =========================================================================

@app.post("/import-history", response_model=ImportResponse)
def import_history(
    payload: dict = Body(...),
    spotify_user_id: Optional[str] = Cookie(None),
):
    """Append previously exported entries: {"entries": [...]}."""
    session = load_session(spotify_user_id)
    events = parse_import_payload(payload.get("entries"))
    inserted = db.append_history(session.user_id, events)
    print(f"[import] {session.user_id}: {inserted}/{len(events)} entries stored")
    return ImportResponse(success=True, count=len(events), inserted=inserted)


@app.post("/import-history/gdpr", response_model=ImportResponse)
def import_gdpr_history(
    payload: Any = Body(...),
    spotify_user_id: Optional[str] = Cookie(None),
):
    """
    Append a Spotify extended streaming history export.
    Accepts the raw JSON array or {"records": [...]}.
    """
    session = load_session(spotify_user_id)
    records = payload.get("records") if isinstance(payload, dict) else payload
    events = parse_gdpr_records(records)
    inserted = db.append_history(session.user_id, events)
    print(f"[import] {session.user_id}: {inserted}/{len(events)} GDPR plays stored")
    return ImportResponse(success=True, count=len(events), inserted=inserted)


# =========================================================================
# HEALTH CHECK
# =========================================================================

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "listening-stats", "version": VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
