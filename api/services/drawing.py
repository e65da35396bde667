"""
Search-area drawing: captures map clicks into a polygon.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from api.exceptions import DrawingStateError
from api.schemas import GeoPoint
from api.services.renderer import MapRenderer

logger = logging.getLogger(__name__)

SOURCE_ID = "drawn-polygon"
FILL_LAYER_ID = "drawn-polygon-layer"
OUTLINE_LAYER_ID = "drawn-polygon-outline"

DRAW_COLOR = "#3b82f6"
DRAWING_CURSOR = "crosshair"

# A polygon needs at least this many vertices
MIN_POLYGON_VERTICES = 3


class DrawingState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    FINISHED = "finished"


def polygon_feature(vertices: List[GeoPoint]) -> Dict[str, Any]:
    """GeoJSON polygon for the preview; the ring is closed once it has 3+ vertices."""
    ring = [[v.lng, v.lat] for v in vertices]
    if len(ring) >= MIN_POLYGON_VERTICES:
        ring.append(ring[0])
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {"type": "Polygon", "coordinates": [ring]},
    }


class DrawingTool:
    """
    Idle -> Drawing -> Finished state machine over a vertex buffer.

    Every vertex redraws a live preview (fill + outline layers on one GeoJSON
    source). finish() reports the polygon to on_area_select only when it has
    at least three vertices; the reported list is unclosed.
    """

    def __init__(
        self,
        renderer: MapRenderer,
        on_area_select: Optional[Callable[[List[GeoPoint]], None]] = None,
    ):
        self._renderer = renderer
        self._on_area_select = on_area_select
        self._vertices: List[GeoPoint] = []
        self._polygon: Optional[List[GeoPoint]] = None
        self.state = DrawingState.IDLE

    @property
    def vertices(self) -> List[GeoPoint]:
        return list(self._vertices)

    @property
    def polygon(self) -> Optional[List[GeoPoint]]:
        """The finished polygon, if any."""
        return list(self._polygon) if self._polygon is not None else None

    @property
    def is_drawing(self) -> bool:
        return self.state == DrawingState.DRAWING

    def start(self) -> None:
        """Begin a new drawing session, discarding any previous polygon."""
        if self.state != DrawingState.IDLE:
            self.clear()
        self._vertices = []
        self.state = DrawingState.DRAWING
        self._renderer.set_cursor(DRAWING_CURSOR)
        logger.debug("Drawing started")

    def add_vertex(self, point: GeoPoint) -> None:
        if self.state != DrawingState.DRAWING:
            raise DrawingStateError(f"Cannot add a vertex while {self.state.value}")
        self._vertices.append(point)
        self._draw_preview()

    def finish(self) -> Optional[List[GeoPoint]]:
        """Close the drawing session. Returns the polygon when it has 3+ vertices."""
        if self.state != DrawingState.DRAWING:
            raise DrawingStateError(f"Cannot finish drawing while {self.state.value}")
        self.state = DrawingState.FINISHED
        self._renderer.set_cursor("")

        if len(self._vertices) < MIN_POLYGON_VERTICES:
            logger.debug("Drawing finished with %s vertices; no area selected", len(self._vertices))
            self._remove_preview()
            return None

        self._polygon = list(self._vertices)
        if self._on_area_select is not None:
            self._on_area_select(list(self._polygon))
        return self.polygon

    def clear(self) -> None:
        """Discard the vertex buffer and polygon and remove the preview."""
        if self.state == DrawingState.DRAWING:
            self._renderer.set_cursor("")
        self.state = DrawingState.IDLE
        self._vertices = []
        self._polygon = None
        self._remove_preview()

    def reattach(self) -> None:
        """Redraw the preview after the renderer dropped it (style swap)."""
        if self._vertices and (self.is_drawing or self._polygon is not None):
            self._draw_preview()

    def _draw_preview(self) -> None:
        feature = polygon_feature(self._vertices)
        if self._renderer.get_source(SOURCE_ID) is not None:
            self._renderer.set_source_data(SOURCE_ID, feature)
            return

        self._renderer.add_source(SOURCE_ID, feature)
        if self._renderer.get_layer(FILL_LAYER_ID) is None:
            self._renderer.add_layer(
                {
                    "id": FILL_LAYER_ID,
                    "type": "fill",
                    "source": SOURCE_ID,
                    "paint": {"fill-color": DRAW_COLOR, "fill-opacity": 0.2},
                }
            )
        if self._renderer.get_layer(OUTLINE_LAYER_ID) is None:
            self._renderer.add_layer(
                {
                    "id": OUTLINE_LAYER_ID,
                    "type": "line",
                    "source": SOURCE_ID,
                    "paint": {"line-color": DRAW_COLOR, "line-width": 2},
                }
            )

    def _remove_preview(self) -> None:
        for layer_id in (FILL_LAYER_ID, OUTLINE_LAYER_ID):
            if self._renderer.get_layer(layer_id) is not None:
                self._renderer.remove_layer(layer_id)
        if self._renderer.get_source(SOURCE_ID) is not None:
            self._renderer.remove_source(SOURCE_ID)
