"""
Marker registry: owns the on-map marker and popup handles for properties and clusters.
"""

import html
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from api.schemas import Cluster, ClusterMarker, Property, RenderSpec, SingleMarker
from api.services.geo_math import format_price
from api.services.renderer import MapRenderer, MarkerHandle, PopupHandle

logger = logging.getLogger(__name__)

MAX_ZOOM = 18
ZOOM_INCREMENT = 2

RENT_COLOR = "#2563eb"
SALE_COLOR = "#16a34a"
CLUSTER_COLOR = "#9333ea"
CLUSTER_LABEL_CAP = 99


class MarkerEntry(NamedTuple):
    key: str
    handle: MarkerHandle
    popup_handle: PopupHandle


def cluster_size_class(count: int) -> str:
    if count > 20:
        return "large"
    if count > 10:
        return "medium"
    return "small"


def render_marker(spec: RenderSpec) -> Dict[str, Any]:
    """Marker element description for a render spec."""
    if isinstance(spec, ClusterMarker):
        count = spec.cluster.count
        label = str(min(count, CLUSTER_LABEL_CAP))
        if count > CLUSTER_LABEL_CAP:
            label += "+"
        return {
            "key": spec.key,
            "kind": "cluster",
            "label": label,
            "color": CLUSTER_COLOR,
            "size_class": cluster_size_class(count),
            "aria_label": f"Cluster of {count} properties",
        }

    prop = spec.listing
    price_label = format_price(prop.price)
    return {
        "key": spec.key,
        "kind": "single",
        "label": price_label,
        "color": RENT_COLOR if prop.is_rent else SALE_COLOR,
        "size_class": None,
        "aria_label": f"{prop.title or prop.address or prop.id}, {price_label}",
    }


def render_popup(spec: RenderSpec) -> str:
    """Popup HTML for a render spec."""
    if isinstance(spec, ClusterMarker):
        prices = [p.price for p in spec.cluster.members]
        return (
            f'<div class="popup popup-cluster">'
            f"<strong>{spec.cluster.count} properties</strong>"
            f"<p>{format_price(min(prices))} - {format_price(max(prices))}</p>"
            f"</div>"
        )

    prop = spec.listing
    parts = ['<div class="popup popup-property">']
    if prop.images:
        parts.append(f'<img src="{html.escape(prop.images[0])}" alt="">')
    parts.append(f"<strong>{html.escape(format_price(prop.price))}</strong>")
    if prop.is_rent:
        parts.append("<span>/month</span>")
    if prop.title:
        parts.append(f"<p>{html.escape(prop.title)}</p>")
    if prop.type:
        parts.append(f"<p>{html.escape(prop.type)}</p>")
    if prop.address:
        parts.append(f"<p>{html.escape(prop.address)}</p>")

    facts = []
    if prop.area_label:
        facts.append(html.escape(prop.area_label))
    if prop.beds:
        facts.append(f"{prop.beds} beds")
    if prop.baths:
        facts.append(f"{prop.baths} baths")
    if facts:
        parts.append(f"<p>{' · '.join(facts)}</p>")
    parts.append("</div>")
    return "".join(parts)


class MarkerRegistry:
    """
    Maps a logical key (property id or cluster key) to its marker and popup.

    reconcile() always disposes every owned handle before creating the new
    set, so no handle outlives the entity it was created for.
    """

    def __init__(
        self,
        renderer: MapRenderer,
        on_property_select: Optional[Callable[[Property], None]] = None,
    ):
        self._renderer = renderer
        self._on_property_select = on_property_select
        self._entries: Dict[str, MarkerEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> List[str]:
        return list(self._entries)

    def get(self, key: str) -> Optional[MarkerEntry]:
        return self._entries.get(key)

    def reconcile(self, specs: List[RenderSpec]) -> None:
        """Clear all markers, then create one marker per render spec."""
        self.clear()
        for spec in specs:
            if spec.key in self._entries:
                logger.warning("Duplicate marker key %s skipped", spec.key)
                continue
            self._entries[spec.key] = self._create(spec)
        logger.debug("Reconciled %s markers", len(self._entries))

    def clear(self) -> None:
        """Remove every marker and popup owned by the registry."""
        for entry in self._entries.values():
            entry.popup_handle.remove()
            entry.handle.remove()
        self._entries.clear()

    def _create(self, spec: RenderSpec) -> MarkerEntry:
        handle = self._renderer.add_marker(spec.position, render_marker(spec))
        popup = self._renderer.create_popup(render_popup(spec))
        handle.set_popup(popup)

        handle.on("mouseenter", lambda _event: popup.open())
        handle.on("mouseleave", lambda _event: popup.close())

        if isinstance(spec, SingleMarker):
            prop = spec.listing
            handle.on("click", lambda _event: self._select(prop))
        else:
            cluster = spec.cluster
            handle.on("click", lambda _event: self._zoom_into(cluster))

        return MarkerEntry(key=spec.key, handle=handle, popup_handle=popup)

    def _select(self, prop: Property) -> None:
        if self._on_property_select is not None:
            self._on_property_select(prop)

    def _zoom_into(self, cluster: Cluster) -> None:
        zoom = min(self._renderer.get_zoom() + ZOOM_INCREMENT, MAX_ZOOM)
        self._renderer.fly_to(cluster.centroid, zoom)
