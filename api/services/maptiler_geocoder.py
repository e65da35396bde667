"""
MapTiler reverse geocoding service for lat/long -> address.
Timeouts are retried; every other failure resolves to None.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException, Timeout

import config
from api.schemas import Address, GeoPoint

logger = logging.getLogger(__name__)


def parse_feature(feature: Dict[str, Any]) -> Address:
    """Extract label, city and country from a geocoding feature."""
    props = feature.get("properties") or {}
    label = feature.get("place_name") or props.get("label") or ""

    city = ""
    country = ""
    for entry in feature.get("context") or []:
        entry_id = entry.get("id") or ""
        if entry_id.startswith("place"):
            city = city or entry.get("text", "")
        if entry_id.startswith("country"):
            country = country or entry.get("text", "")

    city = city or props.get("locality") or props.get("county") or ""
    country = country or props.get("country") or ""
    return Address(label=label, city=city, country=country, raw=feature)


class MapTilerGeocoder:
    """Reverse geocoding (lng/lat -> place) via the MapTiler geocoding API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = config.GEOCODER_TIMEOUT,
        max_retries: int = 2,
        cache_size: int = config.GEOCODER_CACHE_SIZE,
    ):
        self._api_key = api_key
        self.base_url = (base_url or config.MAPTILER_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.cache_size = cache_size
        self._cache: Dict[Tuple[float, float], Optional[Address]] = {}

    @property
    def api_key(self) -> Optional[str]:
        """Explicit key, else the configured one (read per call)."""
        return self._api_key if self._api_key is not None else config.get_api_key()

    def _cache_key(self, point: GeoPoint) -> Tuple[float, float]:
        # ~1 m precision
        return (round(point.lng, 5), round(point.lat, 5))

    def _remember(self, cache_key: Tuple[float, float], result: Optional[Address]) -> None:
        # Oldest entry goes first once the cache is full
        if len(self._cache) >= self.cache_size:
            del self._cache[next(iter(self._cache))]
        self._cache[cache_key] = result

    def reverse_geocode(self, point: GeoPoint) -> Optional[Address]:
        """Reverse geocode a point. Returns Address or None."""
        if not self.api_key:
            logger.debug("Reverse geocoding skipped: no API key")
            return None

        cache_key = self._cache_key(point)
        if cache_key in self._cache:
            return self._cache[cache_key]

        url = f"{self.base_url}/geocoding/{point.lng},{point.lat}.json"
        for attempt in range(self.max_retries):
            try:
                response = requests.get(
                    url, params={"key": self.api_key}, timeout=self.timeout
                )
                response.raise_for_status()
                features = response.json().get("features") or []
                if not features:
                    logger.info("No geocoding result for (%s, %s)", point.lng, point.lat)
                    self._remember(cache_key, None)
                    return None

                result = parse_feature(features[0])
                self._remember(cache_key, result)
                logger.debug("Reverse geocoded (%s, %s) -> %s", point.lng, point.lat, result.label)
                return result

            except Timeout:
                if attempt < self.max_retries - 1:
                    time.sleep(attempt + 1)
                    continue
                logger.warning(
                    "Reverse geocoding timeout after %s attempts: (%s, %s)",
                    self.max_retries,
                    point.lng,
                    point.lat,
                )
                return None
            except RequestException as e:
                logger.warning("Request error reverse geocoding (%s, %s): %s", point.lng, point.lat, e)
                return None
            except ValueError as e:
                logger.warning("Invalid geocoding response for (%s, %s): %s", point.lng, point.lat, e)
                return None

        return None
