"""
Map engine: owns the live map instance and composes markers, heatmap,
drawing and location onto it.

All renderer handles, timers and the drawing buffer live on the engine
instance. Everything runs on one event loop; renderer events mutate state
synchronously inside their handler.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import config
from api.exceptions import ConfigurationError, LocationError, RendererError
from api.schemas import Address, GeoPoint, Property, ViewState
from api.services.drawing import DrawingTool
from api.services.heatmap import HeatmapLayer
from api.services.location import LocationService
from api.services.map_clustering import build_render_specs
from api.services.markers import MarkerRegistry
from api.services.renderer import MapRenderer, MarkerHandle, SceneRenderer
from api.services.scheduler import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)

ZOOM_DEBOUNCE_SECONDS = 0.3
STYLE_SETTLE_SECONDS = 0.5
# Selection and "my location" fly at least this close
FOCUS_ZOOM = 14

RENDERER_ERROR_MESSAGE = "Map failed to load. Please check your API key and connection."

RendererFactory = Callable[[str, GeoPoint, float], MapRenderer]


class EngineStatus(str, Enum):
    CREATED = "created"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    DISPOSED = "disposed"


def default_center() -> GeoPoint:
    lng, lat = config.DEFAULT_CENTER
    return GeoPoint(lat=lat, lng=lng)


class MapEngine:
    """
    Interactive property map.

    Host callbacks:
        on_property_click(property_id)
        on_area_select(vertices)
        on_map_click(lng, lat)
        on_location_select(lng, lat, address_or_none)

    Reverse geocoding for on_location_select runs as a task on the running
    event loop. When a click is handled with no loop running, the callback
    fires at once with None and no geocoding is attempted.
    """

    def __init__(
        self,
        properties: Optional[List[Property]] = None,
        *,
        on_property_click: Optional[Callable[[str], None]] = None,
        on_area_select: Optional[Callable[[List[GeoPoint]], None]] = None,
        on_map_click: Optional[Callable[[float, float], None]] = None,
        on_location_select: Optional[Callable[[float, float, Optional[Address]], None]] = None,
        selected_location: Optional[GeoPoint] = None,
        style_id: str = config.DEFAULT_STYLE,
        show_clusters: bool = False,
        show_heatmap: bool = False,
        location_service: Optional[LocationService] = None,
        renderer_factory: Optional[RendererFactory] = None,
        scheduler: Optional[Scheduler] = None,
        api_key: Optional[str] = None,
    ):
        if not config.is_known_style(style_id):
            raise ValueError(f"Unknown map style: {style_id}")

        self._properties: List[Property] = list(properties or [])
        self._on_property_click = on_property_click
        self._on_area_select = on_area_select
        self._on_map_click = on_map_click
        self._on_location_select = on_location_select

        self.view = ViewState(
            zoom=config.DEFAULT_ZOOM,
            style_id=style_id,
            show_clusters=show_clusters,
            show_heatmap=show_heatmap,
        )
        self.location = location_service or LocationService()
        self._renderer_factory = renderer_factory or SceneRenderer
        self._scheduler = scheduler or AsyncioScheduler()
        self._api_key = api_key

        self.status = EngineStatus.CREATED
        self.fatal_error: Optional[str] = None
        self.error_banner: Optional[str] = None
        self.selected_location: Optional[GeoPoint] = selected_location
        self.selected_property: Optional[Property] = None

        self._renderer: Optional[MapRenderer] = None
        self._markers: Optional[MarkerRegistry] = None
        self._heatmap: Optional[HeatmapLayer] = None
        self._drawing: Optional[DrawingTool] = None
        self._selection_marker: Optional[MarkerHandle] = None
        self._user_marker: Optional[MarkerHandle] = None
        self._listeners: List[tuple] = []

        self._map_loaded = False
        self._style_ready = False
        self._style_generation = 0
        self._pending_zoom: Optional[float] = None
        self._zoom_timer = None
        self._settle_timer = None
        self._tasks: Set[asyncio.Future] = set()
        self._disposed = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def renderer(self) -> Optional[MapRenderer]:
        return self._renderer

    @property
    def markers(self) -> Optional[MarkerRegistry]:
        return self._markers

    @property
    def heatmap(self) -> Optional[HeatmapLayer]:
        return self._heatmap

    @property
    def drawing(self) -> Optional[DrawingTool]:
        return self._drawing

    @property
    def properties(self) -> List[Property]:
        return list(self._properties)

    @property
    def user_location(self) -> Optional[GeoPoint]:
        return self.location.user_location

    @property
    def loaded(self) -> bool:
        return self._map_loaded and self._style_ready

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> EngineStatus:
        """Resolve the initial center, create the map and wire its events."""
        if self.status != EngineStatus.CREATED:
            return self.status

        try:
            api_key = self._api_key or config.require_api_key()
        except ConfigurationError as e:
            logger.error("Map initialization failed: %s", e)
            self.fatal_error = str(e)
            self.status = EngineStatus.FAILED
            return self.status
        self._api_key = api_key
        self.status = EngineStatus.LOADING

        try:
            center = await self.location.resolve_once()
        except LocationError as e:
            logger.info("Using default map center (%s): %s", e.reason, e)
            center = default_center()

        if self._disposed:
            return self.status

        try:
            renderer = self._renderer_factory(
                config.style_url(self.view.style_id, api_key), center, self.view.zoom
            )
        except RendererError as e:
            logger.error("Error initializing map: %s", e)
            self.fatal_error = "Failed to initialize map. Please check your API key."
            self.status = EngineStatus.FAILED
            return self.status

        self._renderer = renderer
        self._markers = MarkerRegistry(renderer, on_property_select=self.select_property)
        self._heatmap = HeatmapLayer(renderer)
        self._drawing = DrawingTool(renderer, on_area_select=self._handle_area_select)

        self._listen("load", self._handle_load)
        self._listen("click", self._handle_click)
        self._listen("zoomend", self._handle_zoomend)
        self._listen("error", self._handle_error)
        return self.status

    def _listen(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        self._renderer.on(event, callback)
        self._listeners.append((event, callback))

    def dispose(self) -> None:
        """Cancel timers and tasks, remove every handle and destroy the map."""
        if self._disposed:
            return
        self._disposed = True

        for timer in (self._zoom_timer, self._settle_timer):
            if timer is not None:
                timer.cancel()
        self._zoom_timer = None
        self._settle_timer = None

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        if self._renderer is not None:
            self._markers.clear()
            self._remove_selection_marker()
            if self._user_marker is not None:
                self._user_marker.remove()
                self._user_marker = None
            for event, callback in self._listeners:
                self._renderer.off(event, callback)
            self._listeners.clear()
            self._renderer.remove()
            self._renderer = None

        self.status = EngineStatus.DISPOSED
        logger.debug("Map engine disposed")

    # ------------------------------------------------------------------
    # Renderer events
    # ------------------------------------------------------------------

    def _handle_load(self, _event: Dict[str, Any]) -> None:
        if self._disposed:
            return
        self._map_loaded = True
        self._style_ready = True
        self.status = EngineStatus.READY
        logger.info("Map loaded with style %s", self.view.style_id)

        self._update_markers()
        self._apply_heatmap()
        if self.user_location is not None:
            self._guard(self._place_user_marker, self.user_location)
        if self.selected_location is not None:
            self._select_location(self.selected_location)

    def _handle_error(self, event: Dict[str, Any]) -> None:
        if self._disposed:
            return
        logger.error("Map error: %s", event.get("message") or event)
        self.error_banner = RENDERER_ERROR_MESSAGE

    def _handle_zoomend(self, event: Dict[str, Any]) -> None:
        if self._disposed:
            return
        zoom = event.get("zoom")
        self._pending_zoom = zoom if zoom is not None else self._renderer.get_zoom()
        if self._zoom_timer is not None:
            self._zoom_timer.cancel()
        self._zoom_timer = self._scheduler.call_later(ZOOM_DEBOUNCE_SECONDS, self._flush_zoom)

    def _flush_zoom(self) -> None:
        self._zoom_timer = None
        if self._disposed or self._pending_zoom is None:
            return
        self.view.zoom = round(self._pending_zoom * 10) / 10
        self._pending_zoom = None
        self._update_markers()

    def _handle_click(self, event: Dict[str, Any]) -> None:
        if self._disposed:
            return
        point = GeoPoint(lat=event["lat"], lng=event["lng"])
        if self._drawing.is_drawing:
            self._guard(self._drawing.add_vertex, point)
            return
        self._select_location(point)

    def _handle_area_select(self, vertices: List[GeoPoint]) -> None:
        self._notify(self._on_area_select, vertices)

    # ------------------------------------------------------------------
    # Host inputs
    # ------------------------------------------------------------------

    def set_properties(self, properties: List[Property]) -> None:
        self._properties = list(properties)
        self._update_markers()
        if self.view.show_heatmap:
            self._apply_heatmap()

    def set_show_clusters(self, enabled: bool) -> None:
        self.view.show_clusters = enabled
        self._update_markers()

    def set_show_heatmap(self, enabled: bool) -> None:
        self.view.show_heatmap = enabled
        self._apply_heatmap()

    def set_selected_location(self, point: Optional[GeoPoint]) -> None:
        """Externally driven selection; behaves like a map click."""
        self.selected_location = point
        if point is None:
            self._remove_selection_marker()
            return
        if self._map_loaded and not self._disposed:
            self._select_location(point)

    def select_property(self, prop: Optional[Property]) -> None:
        """Set the previewed property and notify the host."""
        self.selected_property = prop
        if prop is not None:
            self._notify(self._on_property_click, prop.id)

    def dismiss_error(self) -> None:
        self.error_banner = None

    # ------------------------------------------------------------------
    # Style swap
    # ------------------------------------------------------------------

    def change_style(self, style_id: str) -> None:
        """
        Switch the basemap style.

        The renderer drops custom sources and layers on a style swap, so after
        "style.load" plus a settle delay the heatmap, drawn polygon and
        user-location marker are attached again. A newer swap supersedes any
        pending one.
        """
        if not config.is_known_style(style_id):
            raise ValueError(f"Unknown map style: {style_id}")
        self.view.style_id = style_id
        if self._renderer is None or self._disposed:
            return

        self._style_generation += 1
        generation = self._style_generation
        self._style_ready = False
        if self._settle_timer is not None:
            self._settle_timer.cancel()
            self._settle_timer = None

        self._renderer.once("style.load", lambda _event: self._handle_style_load(generation))
        self._renderer.set_style(config.style_url(style_id, self._api_key))
        logger.info("Map style change requested: %s", style_id)

    def _handle_style_load(self, generation: int) -> None:
        if self._disposed or generation != self._style_generation:
            return
        if self._settle_timer is not None:
            self._settle_timer.cancel()
        self._settle_timer = self._scheduler.call_later(
            STYLE_SETTLE_SECONDS, self._reattach_overlays, generation
        )

    def _reattach_overlays(self, generation: int) -> None:
        self._settle_timer = None
        if self._disposed or generation != self._style_generation:
            return
        self._style_ready = True
        self._apply_heatmap()
        self._guard(self._drawing.reattach)
        if self.user_location is not None:
            self._guard(self._place_user_marker, self.user_location)
        logger.debug("Overlays re-attached after style %s", self.view.style_id)

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def _require_renderer(self) -> MapRenderer:
        if self._renderer is None or self._disposed:
            raise RendererError("Map is not initialized")
        return self._renderer

    def start_drawing(self) -> None:
        self._require_renderer()
        self._drawing.start()

    def finish_drawing(self) -> Optional[List[GeoPoint]]:
        self._require_renderer()
        return self._drawing.finish()

    def clear_drawing(self) -> None:
        self._require_renderer()
        self._drawing.clear()

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    async def go_to_user_location(self) -> Optional[GeoPoint]:
        """Re-request the device position and fly to it. Failures are absorbed."""
        try:
            point = await self.location.resolve_once(force=True)
        except LocationError as e:
            logger.warning("Unable to get user location (%s): %s", e.reason, e)
            return None
        if self._renderer is None or self._disposed:
            return point

        self._guard(self._renderer.fly_to, point, FOCUS_ZOOM)
        self._guard(self._place_user_marker, point)
        return point

    def _place_user_marker(self, point: GeoPoint) -> None:
        if self._user_marker is not None:
            self._user_marker.remove()
        self._user_marker = self._renderer.add_marker(
            point, {"kind": "user-location", "label": "", "color": "#2563eb"}
        )

    def _select_location(self, point: GeoPoint) -> None:
        self.selected_location = point
        self._guard(self._place_selection_marker, point)
        self._notify(self._on_map_click, point.lng, point.lat)
        self._spawn_location_select(point)

    def _place_selection_marker(self, point: GeoPoint) -> None:
        self._remove_selection_marker()
        self._selection_marker = self._renderer.add_marker(
            point, {"kind": "selection", "label": "", "color": "#dc2626"}
        )
        self._renderer.fly_to(point, max(self._renderer.get_zoom(), FOCUS_ZOOM))

    def _remove_selection_marker(self) -> None:
        if self._selection_marker is not None:
            self._selection_marker.remove()
            self._selection_marker = None

    def _spawn_location_select(self, point: GeoPoint) -> None:
        coro = self._resolve_location_select(point)
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; location selected without address")
            self._notify(self._on_location_select, point.lng, point.lat, None)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve_location_select(self, point: GeoPoint) -> None:
        address = await self.location.reverse_geocode(point)
        if self._disposed:
            return
        self._notify(self._on_location_select, point.lng, point.lat, address)

    async def join_pending(self) -> None:
        """Wait for in-flight reverse geocoding callbacks."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _update_markers(self) -> None:
        if self._renderer is None or self._disposed or not self._map_loaded:
            return
        specs = build_render_specs(self._properties, self.view.zoom, self.view.show_clusters)
        self._guard(self._markers.reconcile, specs)

    def _apply_heatmap(self) -> None:
        if self._renderer is None or self._disposed or not self.loaded:
            return
        self._guard(self._heatmap.set, self._properties, self.view.show_heatmap)

    def _guard(self, operation: Callable[..., Any], *args: Any) -> Any:
        """Run a renderer operation; failures become the recoverable error banner."""
        try:
            return operation(*args)
        except RendererError as e:
            logger.error("Renderer error in %s: %s", getattr(operation, "__name__", operation), e)
            self.error_banner = RENDERER_ERROR_MESSAGE
            return None

    def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None or self._disposed:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Map callback %s failed", getattr(callback, "__name__", callback))

    def snapshot(self) -> Dict[str, Any]:
        """State summary for the host."""
        drawing = self._drawing
        return {
            "status": self.status.value,
            "fatal_error": self.fatal_error,
            "error_banner": self.error_banner,
            "view": self.view,
            "drawing": {
                "state": drawing.state.value if drawing else "idle",
                "vertices": [v.model_dump() for v in drawing.vertices] if drawing else [],
                "polygon": (
                    [v.model_dump() for v in drawing.polygon]
                    if drawing and drawing.polygon is not None
                    else None
                ),
            },
            "user_location": self.user_location,
            "selected_location": self.selected_location,
            "selected_property_id": self.selected_property.id if self.selected_property else None,
            "scene": self._renderer.snapshot() if isinstance(self._renderer, SceneRenderer) else None,
        }
