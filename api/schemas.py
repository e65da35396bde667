"""
Pydantic schemas for the map engine and its API requests and responses.
"""

from typing import Optional, List, Dict, Any, Literal, Union
from pydantic import BaseModel, Field


# ============================================================================
# Geographic Schemas
# ============================================================================


class GeoPoint(BaseModel):
    """Geographic coordinate (immutable)."""

    lat: float
    lng: float

    class Config:
        frozen = True


class Address(BaseModel):
    """Reverse-geocoded address."""

    label: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


# ============================================================================
# Property Schemas
# ============================================================================


class Property(BaseModel):
    """Property listing supplied by the host. Read-only to the map engine."""

    id: str
    coordinates: Optional[GeoPoint] = None
    price: float
    title: Optional[str] = None
    type: Optional[str] = None
    listing_type: Literal["sale", "rent"] = "sale"
    address: Optional[str] = None
    beds: Optional[int] = None
    baths: Optional[int] = None
    area_label: Optional[str] = None
    images: List[str] = []

    @property
    def is_rent(self) -> bool:
        return self.listing_type == "rent"


# ============================================================================
# Map Schemas
# ============================================================================


class Cluster(BaseModel):
    """Group of nearby properties collapsed into one marker."""

    centroid: GeoPoint
    members: List[Property] = Field(..., min_length=1)
    bounds: dict  # {north, south, east, west}

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def key(self) -> str:
        return f"cluster:{self.centroid.lat:.5f},{self.centroid.lng:.5f}"


class SingleMarker(BaseModel):
    """Render spec for one property."""

    kind: Literal["single"] = "single"
    listing: Property

    @property
    def key(self) -> str:
        return self.listing.id

    @property
    def position(self) -> GeoPoint:
        return self.listing.coordinates


class ClusterMarker(BaseModel):
    """Render spec for a cluster of two or more properties."""

    kind: Literal["cluster"] = "cluster"
    cluster: Cluster
    # 1 unless an earlier cluster in the same view rounds to the same centroid
    ordinal: int = 1

    @property
    def key(self) -> str:
        if self.ordinal == 1:
            return self.cluster.key
        return f"{self.cluster.key}#{self.ordinal}"

    @property
    def position(self) -> GeoPoint:
        return self.cluster.centroid


RenderSpec = Union[SingleMarker, ClusterMarker]


class ViewState(BaseModel):
    """Current view toggles and zoom."""

    zoom: float
    style_id: str
    show_clusters: bool = False
    show_heatmap: bool = False


class StyleOption(BaseModel):
    """Basemap style option."""

    id: str
    name: str


# ============================================================================
# Session Schemas
# ============================================================================


class MapSessionCreate(BaseModel):
    """Create map session request."""

    properties: List[Property] = []
    style_id: Optional[str] = None
    show_clusters: bool = False
    show_heatmap: bool = False
    device_location: Optional[GeoPoint] = None
    selected_location: Optional[GeoPoint] = None


class PropertiesUpdate(BaseModel):
    """Replace the session's property list."""

    properties: List[Property] = []


class ViewUpdate(BaseModel):
    """Partial view toggle update."""

    show_clusters: Optional[bool] = None
    show_heatmap: Optional[bool] = None
    style_id: Optional[str] = None


class SelectedLocationUpdate(BaseModel):
    """Externally driven selection marker."""

    location: Optional[GeoPoint] = None


class LocateRequest(BaseModel):
    """Go-to-my-location request with the browser-reported position."""

    device_location: Optional[GeoPoint] = None


class MapEventRequest(BaseModel):
    """Renderer event forwarded from the browser."""

    type: Literal[
        "load",
        "style.load",
        "click",
        "zoomend",
        "error",
        "marker.click",
        "marker.mouseenter",
        "marker.mouseleave",
    ]
    lng: Optional[float] = None
    lat: Optional[float] = None
    zoom: Optional[float] = None
    key: Optional[str] = None
    message: Optional[str] = None


class OutboxEvent(BaseModel):
    """Host callback event."""

    type: str
    payload: Dict[str, Any] = {}


class OutboxResponse(BaseModel):
    """Drained host callback events."""

    events: List[OutboxEvent]


class MapSessionResponse(BaseModel):
    """Map session scene snapshot."""

    session_id: str
    status: str
    fatal_error: Optional[str] = None
    error_banner: Optional[str] = None
    view: ViewState
    drawing: Dict[str, Any]
    user_location: Optional[GeoPoint] = None
    selected_location: Optional[GeoPoint] = None
    selected_property_id: Optional[str] = None
    scene: Optional[Dict[str, Any]] = None
