"""
Configuration for the Listening Stats backend.
Load Spotify API credentials and storage settings from environment variables.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Spotify OAuth Configuration
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID", "")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET", "")
SPOTIFY_REDIRECT_URI = os.getenv("SPOTIFY_REDIRECT_URI", "http://127.0.0.1:8000/auth/spotify/callback")

# Spotify API Base URLs
SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"

# Seconds before an outbound Spotify call gives up
SPOTIFY_HTTP_TIMEOUT = float(os.getenv("SPOTIFY_HTTP_TIMEOUT", "10"))

# Required Spotify Scopes
SPOTIFY_SCOPES = [
    "user-read-private",
    "user-read-email",
    "user-read-currently-playing",
    "user-read-playback-state",
    "user-read-recently-played",  # Polled into the history log
    "user-top-read",              # Top artists and tracks
    "user-library-read",          # Liked songs count
]

# Frontend / session
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://127.0.0.1:3001")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", f"{FRONTEND_URL},http://localhost:3000").split(",")
    if origin.strip()
]
SESSION_COOKIE_NAME = "spotify_user_id"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days

# Refresh the access token when it expires within this window
TOKEN_REFRESH_MARGIN_MS = 60_000

# Storage
DB_PATH = os.getenv(
    "LISTENING_STATS_DB_PATH",
    os.path.join(os.path.dirname(__file__), "listening_stats.db"),
)

# =========================================================================
# Aggregation policy
# =========================================================================

# Only plays of 30+ seconds count (Spotify's "counted play" convention)
MIN_PLAY_DURATION_MS = 30_000

# Spotify catalog ids are base62 tokens of exactly this length
VALID_TRACK_ID_LENGTH = 22

# Mood analysis: scan at most this many ids, send at most this many unique ones
MOOD_MAX_TRACK_IDS = 100
MOOD_MAX_UNIQUE_IDS = 50

# Neutral audio profile returned when there is nothing to analyze
DEFAULT_MOOD_FEATURES = {
    "energy": 0.5,
    "danceability": 0.5,
    "valence": 0.5,
    "acousticness": 0.3,
    "instrumentalness": 0.1,
    "tempo": 120.0,
}

# Best-effort enrichment cap (one lookup per item)
IMAGE_BACKFILL_LIMIT = 10

# Response sizes
RECENT_HISTORY_LIMIT = 50
TOP_ITEMS_LIMIT = 10
RECOMMENDATION_SEED_COUNT = 5
RECOMMENDATION_LIMIT = 10
