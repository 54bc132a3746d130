"""
SQLite storage for sessions, listening history and streaks.

Three tables:
1. sessions - Spotify tokens and display identity, one row per user
2. listening_history - append-only playback log, unique on (user_id, played_at)
3. streaks - one StreakRecord per user
"""
import sqlite3
from dataclasses import dataclass
from typing import Callable, Iterable, Optional
from contextlib import contextmanager

import config
from history import ListeningEvent, format_timestamp, parse_timestamp
from streak_tracker import StreakRecord

DB_PATH = config.DB_PATH


@dataclass
class UserSession:
    """Stored OAuth credentials for one Spotify user."""
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: int  # epoch milliseconds
    display_name: str = ""
    profile_image: Optional[str] = None


def init_db():
    """Initialize the database with required tables."""
    with get_connection() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                user_id TEXT PRIMARY KEY,
                access_token TEXT NOT NULL,
                refresh_token TEXT NOT NULL,
                expires_at INTEGER NOT NULL,
                display_name TEXT,
                profile_image TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS listening_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                track_id TEXT NOT NULL DEFAULT '',
                track_name TEXT,
                artist_name TEXT,
                album_name TEXT,
                album_image TEXT,
                duration_ms INTEGER NOT NULL CHECK(duration_ms >= 0),
                played_at TEXT NOT NULL,
                spotify_url TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(user_id, played_at)
            )
        """)

        # Index for most-recent-first reads
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_history_user_played
            ON listening_history(user_id, played_at DESC)
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS streaks (
                user_id TEXT PRIMARY KEY,
                current_streak INTEGER NOT NULL DEFAULT 0,
                longest_streak INTEGER NOT NULL DEFAULT 0,
                last_listen_date TEXT NOT NULL DEFAULT '',
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.commit()


@contextmanager
def get_connection():
    """Get a database connection."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


# =========================================================================
# SESSIONS
# =========================================================================

def save_session(session: UserSession):
    """Insert or replace the session for session.user_id."""
    with get_connection() as conn:
        conn.execute("""
            INSERT INTO sessions (user_id, access_token, refresh_token,
                                  expires_at, display_name, profile_image)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                expires_at = excluded.expires_at,
                display_name = excluded.display_name,
                profile_image = excluded.profile_image,
                updated_at = CURRENT_TIMESTAMP
        """, (session.user_id, session.access_token, session.refresh_token,
              session.expires_at, session.display_name, session.profile_image or ""))
        conn.commit()
    print(f"[db] Session saved for {session.user_id}")


def get_session(user_id: str) -> Optional[UserSession]:
    """Get the stored session for a user, or None."""
    with get_connection() as conn:
        row = conn.execute("""
            SELECT user_id, access_token, refresh_token, expires_at,
                   display_name, profile_image
            FROM sessions WHERE user_id = ?
        """, (user_id,)).fetchone()

    if row is None:
        return None
    return UserSession(
        user_id=row["user_id"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=row["expires_at"],
        display_name=row["display_name"] or "",
        profile_image=row["profile_image"] or None,
    )


def update_session_tokens(user_id: str, access_token: str, expires_at: int) -> bool:
    """Store a refreshed access token. Returns False when no session exists."""
    with get_connection() as conn:
        cursor = conn.execute("""
            UPDATE sessions
            SET access_token = ?, expires_at = ?, updated_at = CURRENT_TIMESTAMP
            WHERE user_id = ?
        """, (access_token, expires_at, user_id))
        conn.commit()
        return cursor.rowcount > 0


def delete_session(user_id: str) -> bool:
    with get_connection() as conn:
        cursor = conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
        conn.commit()
        return cursor.rowcount > 0


# =========================================================================
# LISTENING HISTORY
# =========================================================================

def append_history(user_id: str, events: Iterable[ListeningEvent]) -> int:
    """
    Append events to a user's history.

    Events whose played_at already exists for this user are dropped, as are
    duplicates within the batch. Returns the number of rows inserted.
    """
    rows = [
        (user_id, e.track_id, e.track_name, e.artist_name, e.album_name,
         e.album_image, e.duration_ms, format_timestamp(e.played_at), e.external_url)
        for e in events
    ]
    if not rows:
        return 0

    with get_connection() as conn:
        before = conn.total_changes
        conn.executemany("""
            INSERT OR IGNORE INTO listening_history (
                user_id, track_id, track_name, artist_name, album_name,
                album_image, duration_ms, played_at, spotify_url
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, rows)
        conn.commit()
        inserted = conn.total_changes - before

    print(f"[db] Saved {inserted} new listening entries ({len(rows) - inserted} duplicates skipped)")
    return inserted


def read_all_history(user_id: str) -> list[ListeningEvent]:
    """Full history for a user, most recent first."""
    with get_connection() as conn:
        cursor = conn.execute("""
            SELECT * FROM listening_history
            WHERE user_id = ?
            ORDER BY played_at DESC
        """, (user_id,))
        return [_row_to_event(row) for row in cursor.fetchall()]


def read_recent_history(user_id: str, limit: int = 50) -> list[ListeningEvent]:
    """Latest `limit` events for a user, most recent first."""
    with get_connection() as conn:
        cursor = conn.execute("""
            SELECT * FROM listening_history
            WHERE user_id = ?
            ORDER BY played_at DESC
            LIMIT ?
        """, (user_id, limit))
        return [_row_to_event(row) for row in cursor.fetchall()]


def _row_to_event(row: sqlite3.Row) -> ListeningEvent:
    return ListeningEvent(
        track_id=row["track_id"] or "",
        track_name=row["track_name"] or "",
        artist_name=row["artist_name"] or "",
        album_name=row["album_name"] or "",
        album_image=row["album_image"] or "",
        duration_ms=row["duration_ms"],
        played_at=parse_timestamp(row["played_at"]),
        external_url=row["spotify_url"] or "",
    )


# =========================================================================
# STREAKS
# =========================================================================

def get_streak(user_id: str) -> Optional[StreakRecord]:
    """Get the stored streak for a user, or None for a new user."""
    with get_connection() as conn:
        row = conn.execute("""
            SELECT current_streak, longest_streak, last_listen_date
            FROM streaks WHERE user_id = ?
        """, (user_id,)).fetchone()
    return _row_to_streak(row) if row else None


def save_streak(user_id: str, streak: StreakRecord):
    with get_connection() as conn:
        _upsert_streak(conn, user_id, streak)
        conn.commit()


def update_streak(
    user_id: str,
    transition: Callable[[StreakRecord], StreakRecord]
) -> StreakRecord:
    """
    Atomically read, transform and write a user's streak.

    The read-modify-write runs inside BEGIN IMMEDIATE, which takes SQLite's
    write lock up front: two concurrent requests for the same user cannot
    both read the old record.
    """
    with get_connection() as conn:
        conn.isolation_level = None
        conn.execute("BEGIN IMMEDIATE")
        try:
            row = conn.execute("""
                SELECT current_streak, longest_streak, last_listen_date
                FROM streaks WHERE user_id = ?
            """, (user_id,)).fetchone()
            current = _row_to_streak(row) if row else StreakRecord()
            updated = transition(current)
            if row is None or updated != current:
                _upsert_streak(conn, user_id, updated)
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
    return updated


def _upsert_streak(conn: sqlite3.Connection, user_id: str, streak: StreakRecord):
    conn.execute("""
        INSERT INTO streaks (user_id, current_streak, longest_streak, last_listen_date)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            current_streak = excluded.current_streak,
            longest_streak = excluded.longest_streak,
            last_listen_date = excluded.last_listen_date,
            updated_at = CURRENT_TIMESTAMP
    """, (user_id, streak.current_streak, streak.longest_streak, streak.last_listen_date))


def _row_to_streak(row: sqlite3.Row) -> StreakRecord:
    return StreakRecord(
        current_streak=row["current_streak"] or 0,
        longest_streak=row["longest_streak"] or 0,
        last_listen_date=row["last_listen_date"] or "",
    )


# Initialize database on module load
init_db()
