"""
Geographic helpers: great-circle distance, bounding boxes and price labels.
"""

from math import asin, cos, radians, sin, sqrt
from typing import Dict, Iterable, List

from api.schemas import GeoPoint

EARTH_RADIUS_M = 6_371_000


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points (haversine)."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = lat2 - lat1
    dlng = radians(b.lng - a.lng)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(h, 1.0)))


def format_price(price: float) -> str:
    """Abbreviate a price for marker labels, e.g. 1500000 -> '1.5M', 2000 -> '2k'."""
    for threshold, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "k")):
        if price >= threshold:
            text = f"{price / threshold:.1f}"
            if text.endswith(".0"):
                text = text[:-2]
            return f"{text}{suffix}"
    if float(price).is_integer():
        return str(int(price))
    return str(price)


def centroid(points: Iterable[GeoPoint]) -> GeoPoint:
    """Arithmetic mean of the given coordinates."""
    points = list(points)
    if not points:
        raise ValueError("centroid of an empty point set")
    return GeoPoint(
        lat=sum(p.lat for p in points) / len(points),
        lng=sum(p.lng for p in points) / len(points),
    )


def bounds(points: Iterable[GeoPoint]) -> Dict[str, float]:
    """Bounding box of the given coordinates as {north, south, east, west}."""
    points: List[GeoPoint] = list(points)
    if not points:
        raise ValueError("bounds of an empty point set")
    lats = [p.lat for p in points]
    lngs = [p.lng for p in points]
    return {
        "north": max(lats),
        "south": min(lats),
        "east": max(lngs),
        "west": min(lngs),
    }
