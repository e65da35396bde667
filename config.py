"""
Centralized configuration for the property map service.
"""

import os
from typing import Optional

from api.exceptions import ConfigurationError

# Environment configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

# MapTiler configuration (basemap styles + reverse geocoding)
MAPTILER_BASE_URL = os.getenv("MAPTILER_BASE_URL", "https://api.maptiler.com").rstrip("/")
GEOCODER_TIMEOUT = int(os.getenv("GEOCODER_TIMEOUT", "10"))
GEOCODER_CACHE_SIZE = 1024

# Placeholder shipped in example env files; never a usable key
PLACEHOLDER_API_KEY = "demo-key"

# Map defaults
DEFAULT_CENTER = (11.5167, 3.8667)  # (lng, lat)
DEFAULT_ZOOM = 12
DEFAULT_STYLE = "streets-v2"

# Map sessions: idle sessions are disposed after this many seconds
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "1800"))  # 30 minutes
# Undrained callback events kept per session (oldest dropped first)
OUTBOX_MAX_EVENTS = 500

MAP_STYLES = [
    {"id": "streets-v2", "name": "Streets"},
    {"id": "basic-v2", "name": "Basic"},
    {"id": "bright-v2", "name": "Bright"},
    {"id": "outdoor-v2", "name": "Outdoor"},
    {"id": "satellite", "name": "Satellite"},
]


def get_api_key() -> Optional[str]:
    """Get the MapTiler API key, or None when unset or a placeholder."""
    key = os.getenv("MAPTILER_API_KEY", "").strip()
    if not key or key == PLACEHOLDER_API_KEY:
        return None
    return key


def require_api_key() -> str:
    """Get the MapTiler API key or raise ConfigurationError."""
    key = get_api_key()
    if key is None:
        raise ConfigurationError(
            "Map API key is missing. Please set the MAPTILER_API_KEY environment variable."
        )
    return key


def is_known_style(style_id: str) -> bool:
    return any(style["id"] == style_id for style in MAP_STYLES)


def style_url(style_id: str, api_key: str) -> str:
    """Build the basemap style URL for a style id."""
    return f"{MAPTILER_BASE_URL}/maps/{style_id}/style.json?key={api_key}"


def is_production() -> bool:
    """Check if running in production mode."""
    return ENVIRONMENT == "production"


# Session store instance - will be initialized in main.py
_session_store = None


def set_session_store(store):
    """Set the map session store (called from main.py)."""
    global _session_store
    _session_store = store


def get_session_store():
    """Get the map session store."""
    if _session_store is None:
        raise RuntimeError(
            "Session store not initialized. Call set_session_store() first."
        )
    return _session_store
