"""
Map routes: basemap styles, reverse geocoding and interactive map sessions.
"""

import logging
from typing import List, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from api.exceptions import DrawingStateError, RendererError
from api.schemas import (
    Address,
    GeoPoint,
    LocateRequest,
    MapEventRequest,
    MapSessionCreate,
    MapSessionResponse,
    OutboxResponse,
    PropertiesUpdate,
    SelectedLocationUpdate,
    StyleOption,
    ViewUpdate,
)
from api.services.location import LocationService, StaticGeolocationProvider
from api.services.maptiler_geocoder import MapTilerGeocoder
from api.services.renderer import SceneRenderer
from api.sessions import MapSession, MapSessionStore
from config import MAP_STYLES
from dependencies import get_sessions, require_session

router = APIRouter()
logger = logging.getLogger(__name__)

# Shared so its result cache serves every reverse-geocode request
geocoder = MapTilerGeocoder()


def _session_response(session: MapSession) -> MapSessionResponse:
    return MapSessionResponse(session_id=session.id, **session.engine.snapshot())


@router.get("/styles", response_model=List[StyleOption])
async def list_styles():
    """Available basemap styles."""
    return [StyleOption(**style) for style in MAP_STYLES]


@router.get("/reverse-geocode", response_model=Address)
async def reverse_geocode(
    lng: float = Query(..., ge=-180, le=180, description="Longitude"),
    lat: float = Query(..., ge=-90, le=90, description="Latitude"),
):
    """Reverse geocode a coordinate into a place label, city and country."""
    service = LocationService(geocoder=geocoder)
    address = await service.reverse_geocode(GeoPoint(lat=lat, lng=lng))
    if address is None:
        raise HTTPException(status_code=404, detail="No address found")
    return address


@router.post("/sessions", response_model=MapSessionResponse, status_code=201)
async def create_session(
    request: MapSessionCreate,
    store: MapSessionStore = Depends(get_sessions),
):
    """Create a map session. The client reports the map's "load" event to make it ready."""
    try:
        session = await store.create(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_response(session)


@router.get("/sessions/{session_id}", response_model=MapSessionResponse)
async def get_session(session_id: str, store: MapSessionStore = Depends(get_sessions)):
    """Current scene and state of a map session."""
    return _session_response(require_session(session_id, store))


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str, store: MapSessionStore = Depends(get_sessions)):
    """Dispose a map session and everything it holds."""
    if not store.remove(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=204)


@router.put("/sessions/{session_id}/properties", response_model=MapSessionResponse)
async def update_properties(
    session_id: str,
    update: PropertiesUpdate,
    store: MapSessionStore = Depends(get_sessions),
):
    """Replace the properties shown on the map."""
    session = require_session(session_id, store)
    session.engine.set_properties(update.properties)
    return _session_response(session)


@router.patch("/sessions/{session_id}/view", response_model=MapSessionResponse)
async def update_view(
    session_id: str,
    update: ViewUpdate,
    store: MapSessionStore = Depends(get_sessions),
):
    """Toggle clustering or heatmap, or switch the basemap style."""
    session = require_session(session_id, store)
    engine = session.engine
    if update.style_id is not None:
        try:
            engine.change_style(update.style_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    if update.show_clusters is not None:
        engine.set_show_clusters(update.show_clusters)
    if update.show_heatmap is not None:
        engine.set_show_heatmap(update.show_heatmap)
    return _session_response(session)


@router.put("/sessions/{session_id}/selected-location", response_model=MapSessionResponse)
async def update_selected_location(
    session_id: str,
    update: SelectedLocationUpdate,
    store: MapSessionStore = Depends(get_sessions),
):
    """Place (or remove) the selection marker from outside the map."""
    session = require_session(session_id, store)
    session.engine.set_selected_location(update.location)
    return _session_response(session)


@router.post("/sessions/{session_id}/events", response_model=MapSessionResponse)
async def post_map_event(
    session_id: str,
    event: MapEventRequest,
    store: MapSessionStore = Depends(get_sessions),
):
    """Forward a renderer event (gesture, load, error) from the browser map."""
    session = require_session(session_id, store)
    renderer = session.engine.renderer
    if renderer is None:
        raise HTTPException(status_code=409, detail="Map is not initialized")

    if event.type.startswith("marker."):
        entry = session.engine.markers.get(event.key or "")
        if entry is None:
            raise HTTPException(status_code=404, detail="Marker not found")
        entry.handle.fire(event.type.split(".", 1)[1])
    elif event.type == "click":
        if event.lng is None or event.lat is None:
            raise HTTPException(status_code=400, detail="click requires lng and lat")
        renderer.fire("click", {"lng": event.lng, "lat": event.lat})
    elif event.type == "zoomend":
        if event.zoom is None:
            raise HTTPException(status_code=400, detail="zoomend requires zoom")
        if isinstance(renderer, SceneRenderer):
            renderer.set_zoom(event.zoom)
        else:
            renderer.fire("zoomend", {"zoom": event.zoom})
    elif event.type == "error":
        renderer.fire("error", {"message": event.message})
    else:
        renderer.fire(event.type)

    return _session_response(session)


@router.post(
    "/sessions/{session_id}/drawing/{action}", response_model=MapSessionResponse
)
async def drawing_action(
    session_id: str,
    action: Literal["start", "finish", "clear"],
    store: MapSessionStore = Depends(get_sessions),
):
    """Start, finish or clear the search-area drawing."""
    session = require_session(session_id, store)
    engine = session.engine
    try:
        if action == "start":
            engine.start_drawing()
        elif action == "finish":
            engine.finish_drawing()
        else:
            engine.clear_drawing()
    except (DrawingStateError, RendererError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _session_response(session)


@router.post("/sessions/{session_id}/locate", response_model=MapSessionResponse)
async def locate_user(
    session_id: str,
    request: LocateRequest,
    store: MapSessionStore = Depends(get_sessions),
):
    """Fly to the user's position as reported by the browser."""
    session = require_session(session_id, store)
    session.engine.location.provider = StaticGeolocationProvider(request.device_location)
    await session.engine.go_to_user_location()
    return _session_response(session)


@router.delete("/sessions/{session_id}/error", response_model=MapSessionResponse)
async def dismiss_error(session_id: str, store: MapSessionStore = Depends(get_sessions)):
    """Dismiss the recoverable error banner."""
    session = require_session(session_id, store)
    session.engine.dismiss_error()
    return _session_response(session)


@router.get("/sessions/{session_id}/outbox", response_model=OutboxResponse)
async def drain_outbox(session_id: str, store: MapSessionStore = Depends(get_sessions)):
    """Drain host callback events (property clicks, area selections, map clicks)."""
    session = require_session(session_id, store)
    return OutboxResponse(events=session.drain())
