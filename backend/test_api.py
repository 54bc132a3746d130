"""
Route tests for the Listening Stats API.

The Spotify Web API is replaced by patching SpotifyClient._get; the token
endpoint by patching session_manager.refresh_access_token.

Run with: pytest test_api.py -v
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import database as db
import main
import session_manager
from errors import AuthError, TokenExpired, UpstreamError
from spotify_client import SpotifyClient

USER_ID = "user1"
TRACK_ID = "4uLU6hMCjMI75M1A2tKUQC"


def entry(played_at, track_id=TRACK_ID, artist="Artist A", duration_ms=180000, album_image=""):
    """One entry of the import payload."""
    return {
        "trackId": track_id,
        "trackName": f"Song {track_id[:4]}",
        "artistName": artist,
        "albumName": "Album",
        "albumImage": album_image,
        "duration_ms": duration_ms,
        "played_at": played_at,
        "spotifyUrl": f"https://open.spotify.com/track/{track_id}",
    }


def iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


class FakeSpotify:
    """Routes SpotifyClient._get calls to canned responses by endpoint."""

    def __init__(self):
        self.responses = {}
        self.calls = []
        self.tokens_seen = []

    def on(self, endpoint, response):
        """response: a dict, None, an exception, or a list consumed per call."""
        self.responses[endpoint] = response
        return self

    async def get(self, client, endpoint, params=None):
        self.calls.append(endpoint)
        self.tokens_seen.append(client.access_token)
        response = self.responses.get(endpoint, UpstreamError(500))
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def spotify(monkeypatch):
    fake = FakeSpotify()

    async def fake_get(self, endpoint, params=None):
        return await fake.get(self, endpoint, params)

    monkeypatch.setattr(SpotifyClient, "_get", fake_get)
    return fake


@pytest.fixture
def api(tmp_path, spotify):
    """TestClient against a temp database, logged in as USER_ID."""
    original_db_path = db.DB_PATH
    db.DB_PATH = str(tmp_path / "api.db")
    db.init_db()

    expires_at = session_manager.now_ms() + 3600 * 1000
    db.save_session(db.UserSession(USER_ID, "access-1", "refresh-1", expires_at, "Test User", None))

    client = TestClient(main.app)
    client.cookies.set("spotify_user_id", USER_ID)
    yield client

    db.DB_PATH = original_db_path


def import_entries(api, entries):
    response = api.post("/import-history", json={"entries": entries})
    assert response.status_code == 200
    return response.json()


# =========================================================================
# AUTH & SESSION
# =========================================================================

class TestAuth:
    """Test session gating."""

    def test_health(self, api):
        assert api.get("/health").json()["status"] == "ok"

    def test_no_cookie_is_401(self, api):
        api.cookies.clear()
        response = api.get("/stats")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_unknown_user_is_401(self, api):
        api.cookies.set("spotify_user_id", "ghost")
        assert api.get("/achievements").status_code == 401

    def test_session_endpoint(self, api):
        body = api.get("/session").json()
        assert body["authenticated"] is True
        assert body["user"]["display_name"] == "Test User"

        api.cookies.clear()
        assert api.get("/session").json() == {"authenticated": False, "user": None}

    def test_logout_clears_cookie(self, api):
        response = api.get("/auth/logout", follow_redirects=False)
        assert response.status_code in (302, 307)
        assert "spotify_user_id" in response.headers.get("set-cookie", "")


# =========================================================================
# IMPORT
# =========================================================================

class TestImport:
    """Test history import endpoints."""

    def test_import_and_dedupe(self, api):
        entries = [entry("2024-03-01T10:00:00Z"), entry("2024-03-01T11:00:00Z")]
        assert import_entries(api, entries) == {"success": True, "count": 2, "inserted": 2}
        assert import_entries(api, entries)["inserted"] == 0

    def test_invalid_entries(self, api):
        response = api.post("/import-history", json={"entries": "nope"})
        assert response.status_code == 400

    def test_malformed_entry(self, api):
        response = api.post("/import-history", json={"entries": [{"trackId": "x"}]})
        assert response.status_code == 400

    def test_nan_duration_is_400(self, api):
        body = '{"entries": [{"trackId": "x", "played_at": "2024-03-01T10:00:00Z", "duration_ms": NaN}]}'
        response = api.post("/import-history", content=body, headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    @pytest.mark.parametrize("override", [
        {"ms_played": "45000"},
        {"spotify_track_uri": 123},
    ])
    def test_gdpr_bad_types_are_400(self, api, override):
        record = {
            "ts": "2023-06-01T08:00:00Z",
            "ms_played": 60000,
            "master_metadata_track_name": "Song",
            "spotify_track_uri": f"spotify:track:{TRACK_ID}",
            **override,
        }
        response = api.post("/import-history/gdpr", json=[record])
        assert response.status_code == 400
        assert db.read_all_history(USER_ID) == []

    def test_gdpr_import(self, api):
        records = [
            {
                "ts": "2023-06-01T08:00:00Z",
                "ms_played": 60000,
                "master_metadata_track_name": "Song",
                "master_metadata_album_artist_name": "Artist",
                "master_metadata_album_album_name": "LP",
                "spotify_track_uri": f"spotify:track:{TRACK_ID}",
            },
            {
                "ts": "2023-06-01T08:05:00Z",
                "ms_played": 2000,
                "master_metadata_track_name": "Skipped",
                "spotify_track_uri": f"spotify:track:{TRACK_ID}",
            },
        ]
        response = api.post("/import-history/gdpr", json=records)
        assert response.json() == {"success": True, "count": 1, "inserted": 1}

        wrapped = api.post("/import-history/gdpr", json={"records": records})
        assert wrapped.json()["inserted"] == 0


# =========================================================================
# STATS
# =========================================================================

class TestStats:
    """Test /stats aggregation and enrichment."""

    def test_stats_for_all_time(self, api, spotify):
        import_entries(api, [
            entry("2024-03-01T10:00:00Z", duration_ms=40000),
            entry("2024-03-01T11:00:00Z", duration_ms=10000),
            entry("2024-03-01T12:00:00Z", duration_ms=35000),
        ])
        spotify.on("/tracks", {"tracks": [{"id": TRACK_ID, "album": {"images": [{"url": "cover.jpg"}]}}]})
        spotify.on("/search", {"artists": {"items": [{"images": [{"url": "artist.jpg"}]}]}})

        body = api.get("/stats", params={"period": "all"}).json()
        assert body["stats"]["total_qualifying_plays"] == 2
        assert body["stats"]["total_listening_ms"] == 75000
        assert len(body["recent_history"]) == 3
        assert body["top_tracks"][0]["play_count"] == 2
        assert body["top_tracks"][0]["album_image"] == "cover.jpg"
        assert body["top_artists"][0]["artist_image"] == "artist.jpg"

    def test_enrichment_failure_does_not_fail_stats(self, api, spotify):
        import_entries(api, [entry("2024-03-01T10:00:00Z")])
        spotify.on("/tracks", UpstreamError(500)).on("/search", UpstreamError(429))

        response = api.get("/stats")
        assert response.status_code == 200
        assert response.json()["top_tracks"][0]["album_image"] == ""
        assert response.json()["top_artists"][0]["artist_image"] == ""

    def test_period_filter(self, api):
        now = datetime.now(timezone.utc)
        import_entries(api, [
            entry(iso(now - timedelta(hours=1))),
            entry(iso(now - timedelta(days=20))),
            entry("2023-06-01T10:00:00Z"),
        ])
        assert api.get("/stats", params={"period": "week"}).json()["stats"]["total_qualifying_plays"] == 1
        assert api.get("/stats", params={"period": "month"}).json()["stats"]["total_qualifying_plays"] == 2
        assert api.get("/stats", params={"period": "2023"}).json()["stats"]["total_qualifying_plays"] == 1

    def test_empty_history(self, api):
        body = api.get("/stats").json()
        assert body["stats"]["total_qualifying_plays"] == 0
        assert body["top_tracks"] == []
        assert body["top_artists"] == []


# =========================================================================
# STREAK, ACHIEVEMENTS, HEATMAP
# =========================================================================

class TestDerivedViews:
    """Test streak, achievements and heatmap routes."""

    def test_streak_counts_today_once(self, api):
        import_entries(api, [entry(iso(datetime.now(timezone.utc)), duration_ms=1000)])
        first = api.get("/streak").json()
        second = api.get("/streak").json()
        assert first["current_streak"] == 1
        assert second == first

    def test_streak_continues_from_yesterday(self, api):
        today = datetime.now(timezone.utc).date()
        yesterday = (today - timedelta(days=1)).isoformat()
        db.save_streak(USER_ID, db.StreakRecord(4, 4, yesterday))
        import_entries(api, [entry(iso(datetime.now(timezone.utc)))])
        body = api.get("/streak").json()
        assert body == {"current_streak": 5, "longest_streak": 5, "last_listen_date": today.isoformat()}

    def test_streak_broken(self, api):
        db.save_streak(USER_ID, db.StreakRecord(4, 9, "2020-01-01"))
        body = api.get("/streak").json()
        assert body["current_streak"] == 0
        assert body["longest_streak"] == 9

    def test_new_user_streak(self, api):
        assert api.get("/streak").json() == {"current_streak": 0, "longest_streak": 0, "last_listen_date": ""}

    def test_achievements(self, api):
        base = datetime(2024, 3, 13, 12, tzinfo=timezone.utc)
        import_entries(api, [entry(iso(base + timedelta(minutes=5 * i))) for i in range(10)])
        body = api.get("/achievements").json()
        first_steps = next(a for a in body["achievements"] if a["id"] == "first_steps")
        assert first_steps["unlocked"] is True
        assert first_steps["progress"] == 10
        assert body["stats"]["total_qualifying_plays"] == 10
        assert body["stats"]["total_minutes"] == 30

    def test_heatmap(self, api):
        import_entries(api, [
            entry("2024-03-01T08:00:00Z"),
            entry("2024-03-01T09:00:00Z", duration_ms=500),
            entry("2024-03-01T10:00:00Z"),
            entry("2024-03-03T10:00:00Z"),
        ])
        body = api.get("/heatmap").json()
        assert body["heatmap"] == {"2024-03-01": 3, "2024-03-03": 1}
        assert body["total_plays"] == 4
        assert body["active_days"] == 2


# =========================================================================
# SPOTIFY-BACKED ROUTES
# =========================================================================

class TestMood:
    """Test /mood defaults and token refresh."""

    def test_no_tracks_default(self, api, spotify):
        body = api.get("/mood").json()
        assert body["source"] == "no_tracks"
        assert body["mood"] == "Équilibré"
        assert body["energy"] == 0.5
        assert body["tempo"] == 120
        assert "/audio-features" not in spotify.calls

    def test_expired_token_refreshed_once(self, api, spotify, monkeypatch):
        import_entries(api, [entry(iso(datetime.now(timezone.utc)))])
        vector = {"energy": 0.9, "danceability": 0.5, "valence": 0.9,
                  "acousticness": 0.1, "instrumentalness": 0.0, "tempo": 128}
        spotify.on("/audio-features", [TokenExpired(), {"audio_features": [vector]}])

        async def fake_refresh(refresh_token):
            assert refresh_token == "refresh-1"
            return {"access_token": "access-2", "expires_in": 3600}

        monkeypatch.setattr(session_manager, "refresh_access_token", fake_refresh)

        body = api.get("/mood").json()
        assert body["mood_key"] == "euphoric"
        assert spotify.tokens_seen == ["access-1", "access-2"]
        assert db.get_session(USER_ID).access_token == "access-2"

    def test_failed_refresh_after_401(self, api, spotify, monkeypatch):
        import_entries(api, [entry(iso(datetime.now(timezone.utc)))])
        spotify.on("/audio-features", TokenExpired())

        async def failing_refresh(refresh_token):
            raise AuthError("invalid_grant")

        monkeypatch.setattr(session_manager, "refresh_access_token", failing_refresh)
        assert api.get("/mood").status_code == 401

    def test_token_response_without_access_token(self, api, spotify, monkeypatch):
        """Expired session, refresh returns no token: stale token used, then 401 after rejection."""
        db.update_session_tokens(USER_ID, "stale", session_manager.now_ms() - 1000)

        async def empty_refresh(refresh_token):
            return {"token_type": "Bearer"}

        monkeypatch.setattr(session_manager, "refresh_access_token", empty_refresh)
        spotify.on("/me/top/tracks", TokenExpired()).on("/me/top/artists", {"items": []})

        response = api.get("/top")
        assert response.status_code == 401
        assert db.get_session(USER_ID).access_token == "stale"

    def test_stale_token_used_when_proactive_refresh_fails(self, api, spotify, monkeypatch):
        db.update_session_tokens(USER_ID, "stale", session_manager.now_ms() - 1000)

        async def failing_refresh(refresh_token):
            raise AuthError("down")

        monkeypatch.setattr(session_manager, "refresh_access_token", failing_refresh)
        spotify.on("/me/top/tracks", {"items": []}).on("/me/top/artists", {"items": []})

        response = api.get("/top")
        assert response.status_code == 200
        assert set(spotify.tokens_seen) == {"stale"}


class TestPassthrough:
    """Test routes that mostly forward Spotify data."""

    def test_top_items(self, api, spotify):
        spotify.on("/me/top/tracks", {"items": [{"id": "t1"}]})
        spotify.on("/me/top/artists", {"items": [{"id": "a1"}]})
        body = api.get("/top", params={"time_range": "short_term"}).json()
        assert body == {"top_tracks": [{"id": "t1"}], "top_artists": [{"id": "a1"}]}

    def test_top_items_bad_range(self, api):
        assert api.get("/top", params={"time_range": "decade"}).status_code == 422

    def test_upstream_error_is_502(self, api, spotify):
        spotify.on("/me/top/tracks", UpstreamError(500)).on("/me/top/artists", {"items": []})
        response = api.get("/top")
        assert response.status_code == 502
        assert response.json()["upstream_status"] == 500

    def test_now_playing_appends_history(self, api, spotify):
        item = {
            "played_at": "2024-03-01T10:00:00.000Z",
            "track": {
                "id": TRACK_ID,
                "name": "Song",
                "duration_ms": 200000,
                "artists": [{"name": "Artist"}],
                "album": {"name": "LP", "images": []},
                "external_urls": {"spotify": "https://open.spotify.com/track/x"},
            },
        }
        spotify.on("/me/player/currently-playing", None)
        spotify.on("/me/player/recently-played", {"items": [item]})

        body = api.get("/now-playing").json()
        assert body["currently_playing"] is None
        assert len(body["recently_played"]) == 1

        api.get("/now-playing")
        assert len(db.read_all_history(USER_ID)) == 1

    def test_now_playing_skips_bad_timestamps(self, api, spotify):
        good = {
            "played_at": "2024-03-01T10:00:00.000Z",
            "track": {"id": TRACK_ID, "name": "Song", "duration_ms": 200000,
                      "artists": [{"name": "Artist"}], "album": {"name": "LP", "images": []}},
        }
        bad = {**good, "played_at": "not-a-date"}
        missing = {"track": good["track"]}
        spotify.on("/me/player/currently-playing", None)
        spotify.on("/me/player/recently-played", {"items": [bad, missing, good]})

        response = api.get("/now-playing")
        assert response.status_code == 200
        assert len(response.json()["recently_played"]) == 3
        assert len(db.read_all_history(USER_ID)) == 1

    def test_liked_songs_skips_bad_timestamps(self, api, spotify):
        recent = iso(datetime.now(timezone.utc) - timedelta(days=1))
        spotify.on("/me/tracks", {"total": 2, "items": [{"added_at": "garbage"}, {"added_at": recent}]})
        response = api.get("/liked-songs")
        assert response.status_code == 200
        assert response.json() == {"total": 2, "recently_added": 1}

    def test_liked_songs(self, api, spotify):
        recent = iso(datetime.now(timezone.utc) - timedelta(days=1))
        spotify.on("/me/tracks", {"total": 321, "items": [
            {"added_at": recent},
            {"added_at": "2020-01-01T00:00:00Z"},
        ]})
        assert api.get("/liked-songs").json() == {"total": 321, "recently_added": 1}

    def test_previews_require_ids(self, api):
        assert api.get("/previews").status_code == 400

    def test_previews_empty_on_failure(self, api, spotify):
        spotify.on("/tracks", UpstreamError(500))
        assert api.get("/previews", params={"ids": TRACK_ID}).json() == {"previews": []}

    def test_recommendations_from_history(self, api, spotify):
        import_entries(api, [entry("2024-03-01T10:00:00Z")])
        spotify.on("/recommendations", {"tracks": [{
            "id": "r1",
            "name": "Rec",
            "artists": [{"name": "X"}],
            "album": {"name": "LP", "images": [{"url": "r.jpg"}]},
            "preview_url": None,
            "external_urls": {"spotify": "https://open.spotify.com/track/r1"},
        }]})
        body = api.get("/recommendations").json()
        assert body["tracks"][0]["image"] == "r.jpg"

    def test_recommendations_upstream_error(self, api, spotify):
        import_entries(api, [entry("2024-03-01T10:00:00Z")])
        spotify.on("/recommendations", UpstreamError(404))
        body = api.get("/recommendations").json()
        assert body["tracks"] == []
        assert "error" in body


# =========================================================================
# RUN TESTS
# =========================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
