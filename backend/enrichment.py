"""
Best-effort enrichment of history rankings with Spotify metadata.

Imported history often lacks album art and never carries artist images,
so the top lists are backfilled from the Web API. Lookups are capped at
IMAGE_BACKFILL_LIMIT items and any failure just leaves the field empty.
"""
import asyncio

from config import IMAGE_BACKFILL_LIMIT
from errors import UpstreamError
from history import is_valid_track_id
from listening_stats import TopArtist, TopTrack
from spotify_client import SpotifyClient


def _first_image(images) -> str:
    return images[0].get("url", "") if images else ""


async def fetch_track_images(client: SpotifyClient, tracks: list[TopTrack]) -> dict[str, str]:
    """Album images for tracks without one, from a single /tracks batch."""
    needing = [t.track_id for t in tracks if not t.album_image and is_valid_track_id(t.track_id)]
    track_ids = needing[:IMAGE_BACKFILL_LIMIT]
    if not track_ids:
        return {}

    try:
        data = await client.get_tracks(track_ids)
    except UpstreamError as e:
        print(f"[enrich] Track image lookup failed: {e}")
        return {}

    images = {}
    for track in (data or {}).get("tracks") or []:
        if not track:
            continue
        url = _first_image((track.get("album") or {}).get("images"))
        if url:
            images[track["id"]] = url
    return images


async def _artist_image(client: SpotifyClient, name: str) -> str:
    artist = await client.search_artist(name)
    return _first_image((artist or {}).get("images"))


async def fetch_artist_images(client: SpotifyClient, artist_names: list[str]) -> dict[str, str]:
    """One search per artist, run concurrently; failed searches are skipped."""
    names = artist_names[:IMAGE_BACKFILL_LIMIT]
    results = await asyncio.gather(
        *[_artist_image(client, name) for name in names],
        return_exceptions=True
    )

    images = {}
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            print(f"[enrich] Image lookup failed for {name!r}: {result}")
            continue
        if result:
            images[name] = result
    return images


async def enrich_top_items(
    client: SpotifyClient,
    tracks: list[TopTrack],
    artists: list[TopArtist]
) -> tuple[list[TopTrack], list[TopArtist]]:
    """Fill missing album and artist images in place and return both lists."""
    track_images = await fetch_track_images(client, tracks)
    for track in tracks:
        if not track.album_image:
            track.album_image = track_images.get(track.track_id, "")

    artist_images = await fetch_artist_images(client, [a.artist_name for a in artists])
    for artist in artists:
        artist.artist_image = artist_images.get(artist.artist_name, "")

    return tracks, artists


async def fetch_previews(client: SpotifyClient, track_ids: list[str]) -> list[dict]:
    """[{id, preview_url}] for the given ids; empty on any upstream failure."""
    ids = [i for i in track_ids if is_valid_track_id(i)]
    if not ids:
        return []
    try:
        data = await client.get_tracks(ids)
    except UpstreamError as e:
        print(f"[enrich] Preview lookup failed: {e}")
        return []

    return [
        {"id": track["id"], "preview_url": track.get("preview_url")}
        for track in (data or {}).get("tracks") or []
        if track
    ]
