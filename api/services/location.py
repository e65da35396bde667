"""
User location: device geolocation with timeout and position cache, plus reverse geocoding.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from api.exceptions import LocationError
from api.schemas import Address, GeoPoint
from api.services.maptiler_geocoder import MapTilerGeocoder

logger = logging.getLogger(__name__)

LOCATION_TIMEOUT_SECONDS = 10
POSITION_MAX_AGE_SECONDS = 300  # 5 minutes


class GeolocationProvider(ABC):
    """Device location API."""

    @abstractmethod
    async def get_current_position(self) -> GeoPoint:
        """Return the device position or raise LocationError."""


class StaticGeolocationProvider(GeolocationProvider):
    """Position reported by the client device (None when it was denied)."""

    def __init__(self, position: Optional[GeoPoint]):
        self.position = position

    async def get_current_position(self) -> GeoPoint:
        if self.position is None:
            raise LocationError("User denied geolocation", reason="permission_denied")
        return self.position


class LocationService:
    """Resolves the user's location and enriches points with addresses."""

    def __init__(
        self,
        provider: Optional[GeolocationProvider] = None,
        geocoder: Optional[MapTilerGeocoder] = None,
        timeout: float = LOCATION_TIMEOUT_SECONDS,
        max_age: float = POSITION_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.geocoder = geocoder if geocoder is not None else MapTilerGeocoder()
        self.timeout = timeout
        self.max_age = max_age
        self._clock = clock
        self._cached_at: Optional[float] = None
        self.user_location: Optional[GeoPoint] = None

    async def resolve_once(self, force: bool = False) -> GeoPoint:
        """
        Resolve the device position.

        A position younger than max_age is reused unless force is set.

        Raises:
            LocationError: geolocation unsupported, denied, failed or timed out
        """
        if (
            not force
            and self.user_location is not None
            and self._cached_at is not None
            and self._clock() - self._cached_at < self.max_age
        ):
            return self.user_location

        if self.provider is None:
            raise LocationError("Geolocation is not supported", reason="unsupported")

        try:
            position = await asyncio.wait_for(
                self.provider.get_current_position(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise LocationError(
                f"Geolocation timed out after {self.timeout}s", reason="timeout"
            )

        self.user_location = position
        self._cached_at = self._clock()
        logger.info("Resolved user location (%s, %s)", position.lng, position.lat)
        return position

    async def reverse_geocode(self, point: GeoPoint) -> Optional[Address]:
        """Address for a point, or None on any failure."""
        try:
            return await asyncio.to_thread(self.geocoder.reverse_geocode, point)
        except Exception as e:
            logger.warning("Reverse geocoding failed for (%s, %s): %s", point.lng, point.lat, e)
            return None
