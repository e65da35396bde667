"""
Shared dependencies for FastAPI routes.
"""

from fastapi import HTTPException

from api.sessions import MapSession, MapSessionStore
from config import get_session_store


def get_sessions() -> MapSessionStore:
    """Get the map session store dependency for FastAPI routes."""
    return get_session_store()


def require_session(session_id: str, store: MapSessionStore) -> MapSession:
    """Look up a session or raise 404."""
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
