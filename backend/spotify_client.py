"""
Spotify API client for fetching user listening data.
Handles all communication with Spotify Web API.
"""
import httpx
from typing import Optional
from config import (
    SPOTIFY_API_BASE,
    SPOTIFY_TOKEN_URL,
    SPOTIFY_CLIENT_ID,
    SPOTIFY_CLIENT_SECRET,
    SPOTIFY_REDIRECT_URI,
    SPOTIFY_HTTP_TIMEOUT,
)
from errors import AuthError, TokenExpired, UpstreamError


class SpotifyClient:
    """Wrapper for Spotify Web API calls."""

    def __init__(self, access_token: str):
        self.access_token = access_token
        self.headers = {"Authorization": f"Bearer {access_token}"}

    async def _get(self, endpoint: str, params: Optional[dict] = None) -> Optional[dict]:
        """
        Make authenticated GET request to Spotify API.

        Returns None on 204 (e.g. nothing playing). Raises TokenExpired on 401
        and UpstreamError on any other non-2xx answer.
        """
        try:
            async with httpx.AsyncClient(timeout=SPOTIFY_HTTP_TIMEOUT) as client:
                response = await client.get(
                    f"{SPOTIFY_API_BASE}{endpoint}",
                    headers=self.headers,
                    params=params or {}
                )
        except httpx.RequestError as e:
            raise UpstreamError(503, f"Spotify unreachable: {e}") from e

        if response.status_code == 401:
            raise TokenExpired()
        if response.status_code >= 400:
            raise UpstreamError(response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # =========================================================================
    # USER PROFILE & PLAYBACK
    # =========================================================================

    async def get_profile(self) -> dict:
        """Fetch the current user's profile (id, display_name, images)."""
        return await self._get("/me")

    async def get_currently_playing(self) -> Optional[dict]:
        """Fetch the track currently playing, or None when idle."""
        return await self._get("/me/player/currently-playing")

    async def get_recently_played(self, limit: int = 50) -> dict:
        """Fetch user's recently played tracks (last 50 max)."""
        return await self._get("/me/player/recently-played", {"limit": min(limit, 50)})

    async def get_saved_tracks(self, limit: int = 50, offset: int = 0) -> dict:
        """Fetch user's saved/liked tracks."""
        return await self._get("/me/tracks", {"limit": limit, "offset": offset})

    # =========================================================================
    # USER TOP ITEMS
    # =========================================================================

    async def get_top_artists(self, time_range: str = "medium_term", limit: int = 50) -> dict:
        """
        Fetch user's top artists.

        time_range options:
        - short_term: ~4 weeks
        - medium_term: ~6 months
        - long_term: several years
        """
        return await self._get("/me/top/artists", {
            "time_range": time_range,
            "limit": limit
        })

    async def get_top_tracks(self, time_range: str = "medium_term", limit: int = 50) -> dict:
        """Fetch user's top tracks for a given time range."""
        return await self._get("/me/top/tracks", {
            "time_range": time_range,
            "limit": limit
        })

    # =========================================================================
    # TRACK & ARTIST METADATA
    # =========================================================================

    async def get_audio_features(self, track_ids: list[str]) -> dict:
        """
        Fetch audio features for multiple tracks.
        Returns: tempo, energy, danceability, valence, acousticness, instrumentalness.
        Entries are null for tracks without features (podcasts, local files).
        """
        # Spotify limits to 100 tracks per request
        ids = ",".join(track_ids[:100])
        return await self._get("/audio-features", {"ids": ids})

    async def get_tracks(self, track_ids: list[str]) -> dict:
        """Fetch full track objects (max 50) for images and preview URLs."""
        ids = ",".join(track_ids[:50])
        return await self._get("/tracks", {"ids": ids})

    async def search_artist(self, name: str) -> Optional[dict]:
        """Return the best artist match for a display name, or None."""
        data = await self._get("/search", {
            "q": name,
            "type": "artist",
            "limit": 1
        })
        items = ((data or {}).get("artists") or {}).get("items") or []
        return items[0] if items else None

    async def get_recommendations(self, seed_tracks: list[str], limit: int = 10) -> dict:
        """
        Get track recommendations based on seed tracks.
        May be restricted for new apps.
        """
        return await self._get("/recommendations", {
            "seed_tracks": ",".join(seed_tracks[:5]),  # Max 5 seeds
            "limit": limit
        })


async def _post_token(data: dict) -> dict:
    async with httpx.AsyncClient(timeout=SPOTIFY_HTTP_TIMEOUT) as client:
        response = await client.post(
            SPOTIFY_TOKEN_URL,
            data={
                **data,
                "client_id": SPOTIFY_CLIENT_ID,
                "client_secret": SPOTIFY_CLIENT_SECRET,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        response.raise_for_status()
        return response.json()


async def exchange_code_for_token(code: str) -> dict:
    """
    Exchange OAuth authorization code for access token.
    Called after user authorizes via Spotify.
    """
    try:
        return await _post_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": SPOTIFY_REDIRECT_URI,
        })
    except httpx.HTTPError as e:
        raise AuthError(f"Token exchange failed: {e}") from e


async def refresh_access_token(refresh_token: str) -> dict:
    """Refresh an expired access token. Returns {access_token, expires_in, ...}."""
    try:
        return await _post_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
    except httpx.HTTPError as e:
        raise AuthError(f"Token refresh failed: {e}") from e
