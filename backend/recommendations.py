"""
Track recommendations seeded from the listening history.

Seeds are the most recent distinct valid track ids. Users with only
imported legacy data (no catalog ids) fall back to their Spotify top tracks.
Upstream failures return an empty list with an error message, never a 5xx.
"""
from config import RECOMMENDATION_LIMIT, RECOMMENDATION_SEED_COUNT
from errors import TokenExpired, UpstreamError
from history import ListeningEvent, is_valid_track_id
from spotify_client import SpotifyClient


def seed_track_ids(events: list[ListeningEvent], count: int = RECOMMENDATION_SEED_COUNT) -> list[str]:
    valid = [e.track_id for e in events if is_valid_track_id(e.track_id)]
    return list(dict.fromkeys(valid))[:count]


def format_track(track: dict) -> dict:
    album = track.get("album") or {}
    images = album.get("images") or []
    return {
        "id": track.get("id"),
        "name": track.get("name"),
        "artist": ", ".join(a.get("name", "") for a in track.get("artists") or []),
        "album": album.get("name", ""),
        "image": images[0].get("url", "") if images else "",
        "preview_url": track.get("preview_url"),
        "spotify_url": (track.get("external_urls") or {}).get("spotify", ""),
    }


async def get_recommendations(client: SpotifyClient, events: list[ListeningEvent]) -> dict:
    """Return {"tracks": [...]} plus "message" or "error" when empty."""
    seeds = seed_track_ids(events)

    if not seeds:
        try:
            top = await client.get_top_tracks("medium_term", RECOMMENDATION_SEED_COUNT)
            seeds = [t["id"] for t in (top or {}).get("items") or [] if t.get("id")]
        except TokenExpired:
            raise
        except UpstreamError as e:
            print(f"[recs] Top tracks fallback failed: {e}")

    print(f"[recs] Seed tracks: {seeds}")
    if not seeds:
        return {"tracks": [], "message": "No seed tracks available"}

    try:
        data = await client.get_recommendations(seeds, RECOMMENDATION_LIMIT)
    except TokenExpired:
        raise
    except UpstreamError as e:
        print(f"[recs] Recommendations API error: {e.status_code}")
        return {"tracks": [], "error": f"API error: {e.status_code}"}

    tracks = (data or {}).get("tracks") or []
    if not tracks:
        return {"tracks": [], "message": "No recommendations found"}
    return {"tracks": [format_track(t) for t in tracks]}
