"""
Heatmap overlay: price-weighted point density layer, weights computed with NumPy.
"""

import logging
from typing import Any, Dict, List, Sequence

import numpy as np

from api.exceptions import RendererError
from api.schemas import Property
from api.services.map_clustering import with_coordinates
from api.services.renderer import MapRenderer

logger = logging.getLogger(__name__)

SOURCE_ID = "properties-heat"
LAYER_ID = "properties-heatmap"

# price -> weight: 0 at 0, 0.5 at 100k, 1 at 1M and above
WEIGHT_PRICE_STOPS = [0, 100_000, 1_000_000]
WEIGHT_VALUES = [0, 0.5, 1]

# zoom -> radius in px
RADIUS_ZOOM_STOPS = [0, 9]
RADIUS_VALUES = [2, 20]

COLOR_RAMP = [
    (0, "rgba(33,102,172,0)"),
    (0.2, "rgb(103,169,207)"),
    (0.4, "rgb(209,229,240)"),
    (0.6, "rgb(253,219,199)"),
    (0.8, "rgb(239,138,98)"),
    (1, "rgb(178,24,43)"),
]


def heatmap_weights(prices: Sequence[float]) -> np.ndarray:
    """Interpolated density weight per price, clamped to [0, 1]."""
    return np.interp(np.asarray(prices, dtype=float), WEIGHT_PRICE_STOPS, WEIGHT_VALUES)


def heatmap_radius(zoom: float) -> float:
    """Point radius at a zoom level (what the layer's radius expression evaluates to)."""
    return float(np.interp(zoom, RADIUS_ZOOM_STOPS, RADIUS_VALUES))


def _interpolate(input_expr: List[Any], stops: Sequence, values: Sequence) -> List[Any]:
    expr: List[Any] = ["interpolate", ["linear"], input_expr]
    for stop, value in zip(stops, values):
        expr.extend([stop, value])
    return expr


def build_heatmap_source(properties: List[Property]) -> Dict[str, Any]:
    """GeoJSON FeatureCollection of properties with a precomputed weight."""
    points = with_coordinates(properties)
    weights = heatmap_weights([p.price for p in points])
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"id": p.id, "price": p.price, "weight": float(w)},
                "geometry": {
                    "type": "Point",
                    "coordinates": [p.coordinates.lng, p.coordinates.lat],
                },
            }
            for p, w in zip(points, weights)
        ],
    }


def build_heatmap_layer() -> Dict[str, Any]:
    """Heatmap style layer bound to the heat source."""
    return {
        "id": LAYER_ID,
        "type": "heatmap",
        "source": SOURCE_ID,
        "paint": {
            "heatmap-weight": ["get", "weight"],
            "heatmap-intensity": _interpolate(["zoom"], [0, 9], [1, 3]),
            "heatmap-color": _interpolate(
                ["heatmap-density"],
                [stop for stop, _ in COLOR_RAMP],
                [color for _, color in COLOR_RAMP],
            ),
            "heatmap-radius": _interpolate(["zoom"], RADIUS_ZOOM_STOPS, RADIUS_VALUES),
            "heatmap-opacity": 0.8,
        },
    }


class HeatmapLayer:
    """Adds and removes the heatmap source/layer pair on a renderer."""

    def __init__(self, renderer: MapRenderer):
        self._renderer = renderer

    @property
    def attached(self) -> bool:
        return self._renderer.get_layer(LAYER_ID) is not None

    def set(self, properties: List[Property], enabled: bool) -> None:
        """Rebuild the overlay from the given points, or remove it when disabled."""
        self.remove()
        if not enabled:
            return

        source = build_heatmap_source(properties)
        if not source["features"]:
            logger.debug("Heatmap enabled with no placeable properties")
            return

        self._renderer.add_source(SOURCE_ID, source)
        try:
            self._renderer.add_layer(build_heatmap_layer())
        except RendererError:
            self._renderer.remove_source(SOURCE_ID)
            raise
        logger.debug("Heatmap attached with %s points", len(source["features"]))

    def remove(self) -> None:
        if self._renderer.get_layer(LAYER_ID) is not None:
            self._renderer.remove_layer(LAYER_ID)
        if self._renderer.get_source(SOURCE_ID) is not None:
            self._renderer.remove_source(SOURCE_ID)
