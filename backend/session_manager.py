"""
Session lookup and access-token lifecycle.

- load_session: cookie user id -> stored session, or NotAuthenticated
- ensure_fresh_token: proactive refresh shortly before expiry; a failure is
  logged and the stale token is kept
- call_with_refresh: run a Spotify call, and on a 401 refresh once and retry
"""
import time
from typing import Awaitable, Callable, Optional, TypeVar

import database as db
from config import TOKEN_REFRESH_MARGIN_MS
from errors import AuthError, NotAuthenticated, TokenExpired
from spotify_client import SpotifyClient, refresh_access_token

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


def load_session(user_id: Optional[str]) -> db.UserSession:
    if not user_id:
        raise NotAuthenticated()
    session = db.get_session(user_id)
    if session is None:
        raise NotAuthenticated("Session not found")
    return session


async def _refresh(session: db.UserSession) -> db.UserSession:
    tokens = await refresh_access_token(session.refresh_token)
    if not tokens.get("access_token"):
        raise AuthError("Token response missing access_token")
    session.access_token = tokens["access_token"]
    session.expires_at = now_ms() + int(tokens.get("expires_in", 3600)) * 1000
    if tokens.get("refresh_token"):
        session.refresh_token = tokens["refresh_token"]
    db.update_session_tokens(session.user_id, session.access_token, session.expires_at)
    print(f"[auth] Tokens refreshed for {session.user_id}")
    return session


async def ensure_fresh_token(session: db.UserSession) -> db.UserSession:
    """Refresh when the token expires within TOKEN_REFRESH_MARGIN_MS."""
    if now_ms() <= session.expires_at - TOKEN_REFRESH_MARGIN_MS:
        return session
    try:
        return await _refresh(session)
    except AuthError as e:
        # Keep going with the stale token; a 401 will trigger one more attempt
        print(f"[auth] Token refresh failed for {session.user_id}: {e}")
        return session


async def call_with_refresh(
    session: db.UserSession,
    operation: Callable[[SpotifyClient], Awaitable[T]]
) -> T:
    """
    Run operation(client). On TokenExpired, refresh exactly once and retry.
    A failed refresh raises AuthError; a second 401 propagates.
    """
    try:
        return await operation(SpotifyClient(session.access_token))
    except TokenExpired:
        print(f"[auth] Access token rejected for {session.user_id}, refreshing")
        await _refresh(session)
        return await operation(SpotifyClient(session.access_token))


async def authenticated_session(user_id: Optional[str]) -> db.UserSession:
    """Load the session and proactively refresh its token."""
    return await ensure_fresh_token(load_session(user_id))
