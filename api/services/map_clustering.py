"""
Map clustering service for property markers.
"""

from typing import Dict, List, Set

from api.schemas import Cluster, ClusterMarker, Property, RenderSpec, SingleMarker
from api.services.geo_math import bounds, centroid, distance_meters

# Clustering only kicks in above this many points
CLUSTER_MIN_POINTS = 5
# At or above this zoom every property gets its own marker
CLUSTER_MAX_ZOOM = 16


def cluster_threshold_meters(zoom: float) -> float:
    """Grouping radius in meters; halves with every zoom level."""
    return 2 ** (15 - zoom) * 100


def with_coordinates(properties: List[Property]) -> List[Property]:
    """Drop properties the map cannot place."""
    return [p for p in properties if p.coordinates is not None]


def cluster_properties(properties: List[Property], zoom: float) -> List[Cluster]:
    """
    Cluster properties with a single greedy pass.

    Each unvisited property, in input order, claims every unvisited property
    (itself included) within the zoom threshold. Runs in O(n^2), which is fine
    for one viewport's listing set.

    Args:
        properties: Properties with coordinates
        zoom: Map zoom level

    Returns:
        List of Cluster objects, in the order their first member appears
    """
    points = with_coordinates(properties)
    threshold = cluster_threshold_meters(zoom)
    visited: Set[str] = set()
    clusters: List[Cluster] = []

    for prop in points:
        if prop.id in visited:
            continue

        nearby = [
            other
            for other in points
            if other.id not in visited
            and distance_meters(prop.coordinates, other.coordinates) <= threshold
        ]
        visited.update(p.id for p in nearby)

        coords = [p.coordinates for p in nearby]
        clusters.append(
            Cluster(centroid=centroid(coords), members=nearby, bounds=bounds(coords))
        )

    return clusters


def should_cluster(count: int, zoom: float, show_clusters: bool) -> bool:
    """Clustering policy: toggle on, enough points, and below the ceiling zoom."""
    return show_clusters and count > CLUSTER_MIN_POINTS and zoom < CLUSTER_MAX_ZOOM


def build_render_specs(
    properties: List[Property], zoom: float, show_clusters: bool
) -> List[RenderSpec]:
    """Fold properties into marker render specs for the current view."""
    points = with_coordinates(properties)
    if not points:
        return []

    if not should_cluster(len(points), zoom, show_clusters):
        return [SingleMarker(listing=p) for p in points]

    specs: List[RenderSpec] = []
    # Distinct clusters can round to the same centroid key
    seen: Dict[str, int] = {}
    for cluster in cluster_properties(points, zoom):
        if cluster.count == 1:
            specs.append(SingleMarker(listing=cluster.members[0]))
        else:
            seen[cluster.key] = seen.get(cluster.key, 0) + 1
            specs.append(ClusterMarker(cluster=cluster, ordinal=seen[cluster.key]))
    return specs
