"""
Map renderer surface.

MapRenderer is the imperative map object the engine drives: a basemap style,
GeoJSON sources, style layers, DOM-like markers with popups, a cursor and a
camera. SceneRenderer keeps all of that as an in-memory scene graph that can
be snapshotted for a browser client, which mirrors it onto a real map and
reports gestures back as events.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from api.exceptions import RendererError
from api.schemas import GeoPoint
from api.services.scheduler import Scheduler

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], None]


class EventEmitter:
    """Minimal on/off/once/fire event registry."""

    def __init__(self):
        self._listeners: Dict[str, List[EventCallback]] = defaultdict(list)
        self._once: Dict[str, List[EventCallback]] = defaultdict(list)

    def on(self, event: str, callback: EventCallback) -> None:
        self._listeners[event].append(callback)

    def once(self, event: str, callback: EventCallback) -> None:
        self._once[event].append(callback)

    def off(self, event: str, callback: EventCallback) -> None:
        for registry in (self._listeners, self._once):
            if callback in registry.get(event, []):
                registry[event].remove(callback)

    def fire(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        payload = payload or {}
        once_callbacks = self._once.pop(event, [])
        for callback in list(self._listeners.get(event, [])) + once_callbacks:
            callback(payload)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, [])) + len(self._once.get(event, []))
        return sum(len(v) for v in self._listeners.values()) + sum(
            len(v) for v in self._once.values()
        )

    def _clear_listeners(self) -> None:
        self._listeners.clear()
        self._once.clear()


class PopupHandle:
    """Info panel anchored to a marker."""

    def __init__(self, html: str):
        self.html = html
        self.is_open = False
        self.removed = False

    def open(self) -> None:
        if not self.removed:
            self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def remove(self) -> None:
        self.is_open = False
        self.removed = True


class MarkerHandle(EventEmitter):
    """Marker placed on the map. Fires click/mouseenter/mouseleave."""

    _ids = itertools.count(1)

    def __init__(self, owner: "MapRenderer", position: GeoPoint, element: Dict[str, Any]):
        super().__init__()
        self.id = next(self._ids)
        self.position = position
        self.element = element
        self.popup: Optional[PopupHandle] = None
        self.removed = False
        self._owner = owner

    def set_popup(self, popup: PopupHandle) -> None:
        self.popup = popup

    def remove(self) -> None:
        if self.removed:
            return
        self.removed = True
        if self.popup is not None:
            self.popup.remove()
        self._clear_listeners()
        self._owner._forget_marker(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lng": self.position.lng,
            "lat": self.position.lat,
            "element": self.element,
            "popup": (
                {"html": self.popup.html, "open": self.popup.is_open}
                if self.popup is not None
                else None
            ),
        }


class MapRenderer(EventEmitter, ABC):
    """Interface of the live map surface used by the engine."""

    @abstractmethod
    def set_style(self, style_url: str) -> None:
        """Replace the basemap style. Custom sources and layers are discarded."""

    @abstractmethod
    def add_source(self, source_id: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def get_source(self, source_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set_source_data(self, source_id: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def remove_source(self, source_id: str) -> None:
        ...

    @abstractmethod
    def add_layer(self, layer: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def remove_layer(self, layer_id: str) -> None:
        ...

    @abstractmethod
    def add_marker(self, position: GeoPoint, element: Dict[str, Any]) -> MarkerHandle:
        ...

    @abstractmethod
    def create_popup(self, html: str) -> PopupHandle:
        ...

    @abstractmethod
    def set_cursor(self, cursor: str) -> None:
        ...

    @abstractmethod
    def get_zoom(self) -> float:
        ...

    @abstractmethod
    def fly_to(self, center: GeoPoint, zoom: float) -> None:
        ...

    @abstractmethod
    def remove(self) -> None:
        """Destroy the map and release every handle."""

    def _forget_marker(self, marker: MarkerHandle) -> None:
        pass


class SceneRenderer(MapRenderer):
    """
    In-memory map scene.

    When a scheduler is given, "load" and "style.load" are fired on it after
    construction and after each set_style, like an asynchronous renderer.
    Without one the host fires them (e.g. as reported by the browser).
    """

    def __init__(
        self,
        style_url: str,
        center: GeoPoint,
        zoom: float,
        scheduler: Optional[Scheduler] = None,
    ):
        super().__init__()
        self.style_url = style_url
        self.center = center
        self.zoom = zoom
        self.cursor = ""
        self.removed = False
        self._scheduler = scheduler
        self._sources: Dict[str, Dict[str, Any]] = {}
        self._layers: List[Dict[str, Any]] = []
        self._markers: Dict[int, MarkerHandle] = {}
        if scheduler is not None:
            scheduler.call_later(0, self._fire_if_alive, "load")

    def _fire_if_alive(self, event: str) -> None:
        if not self.removed:
            self.fire(event)

    def _check_alive(self) -> None:
        if self.removed:
            raise RendererError("Map has been removed")

    # Style

    def set_style(self, style_url: str) -> None:
        self._check_alive()
        logger.debug("Switching basemap style to %s", style_url)
        self.style_url = style_url
        self._layers.clear()
        self._sources.clear()
        if self._scheduler is not None:
            self._scheduler.call_later(0, self._fire_if_alive, "style.load")

    # Sources

    def add_source(self, source_id: str, data: Dict[str, Any]) -> None:
        self._check_alive()
        if source_id in self._sources:
            raise RendererError(f"There is already a source with ID \"{source_id}\"")
        self._sources[source_id] = data

    def get_source(self, source_id: str) -> Optional[Dict[str, Any]]:
        return self._sources.get(source_id)

    def set_source_data(self, source_id: str, data: Dict[str, Any]) -> None:
        self._check_alive()
        if source_id not in self._sources:
            raise RendererError(f"Source \"{source_id}\" does not exist")
        self._sources[source_id] = data

    def remove_source(self, source_id: str) -> None:
        self._check_alive()
        if source_id not in self._sources:
            raise RendererError(f"Source \"{source_id}\" does not exist")
        users = [layer["id"] for layer in self._layers if layer.get("source") == source_id]
        if users:
            raise RendererError(
                f"Source \"{source_id}\" cannot be removed while layer \"{users[0]}\" is using it"
            )
        del self._sources[source_id]

    # Layers

    def add_layer(self, layer: Dict[str, Any]) -> None:
        self._check_alive()
        if self.get_layer(layer["id"]) is not None:
            raise RendererError(f"Layer with id \"{layer['id']}\" already exists on this map")
        if layer.get("source") not in self._sources:
            raise RendererError(f"Source \"{layer.get('source')}\" not found")
        self._layers.append(layer)

    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]:
        for layer in self._layers:
            if layer["id"] == layer_id:
                return layer
        return None

    def remove_layer(self, layer_id: str) -> None:
        self._check_alive()
        layer = self.get_layer(layer_id)
        if layer is None:
            raise RendererError(f"Layer \"{layer_id}\" does not exist")
        self._layers.remove(layer)

    # Markers

    def add_marker(self, position: GeoPoint, element: Dict[str, Any]) -> MarkerHandle:
        self._check_alive()
        marker = MarkerHandle(self, position, element)
        self._markers[marker.id] = marker
        return marker

    def create_popup(self, html: str) -> PopupHandle:
        return PopupHandle(html)

    def _forget_marker(self, marker: MarkerHandle) -> None:
        self._markers.pop(marker.id, None)

    @property
    def markers(self) -> List[MarkerHandle]:
        return list(self._markers.values())

    # Camera and cursor

    def set_cursor(self, cursor: str) -> None:
        self.cursor = cursor

    def get_zoom(self) -> float:
        return self.zoom

    def set_zoom(self, zoom: float) -> None:
        """Apply a zoom gesture."""
        self.zoom = zoom
        self.fire("zoomend", {"zoom": zoom})

    def fly_to(self, center: GeoPoint, zoom: float) -> None:
        self._check_alive()
        self.center = center
        if zoom != self.zoom:
            self.set_zoom(zoom)

    # Lifecycle

    def remove(self) -> None:
        if self.removed:
            return
        for marker in list(self._markers.values()):
            marker.remove()
        self._layers.clear()
        self._sources.clear()
        self._clear_listeners()
        self.removed = True

    def snapshot(self) -> Dict[str, Any]:
        """JSON-serializable view of the scene."""
        return {
            "style_url": self.style_url,
            "center": {"lng": self.center.lng, "lat": self.center.lat},
            "zoom": self.zoom,
            "cursor": self.cursor,
            "sources": dict(self._sources),
            "layers": list(self._layers),
            "markers": [m.to_dict() for m in self._markers.values()],
        }
