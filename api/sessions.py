"""
In-memory map sessions: one MapEngine per browser map plus its callback outbox.
"""

import logging
import time
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

import config
from api.schemas import Address, GeoPoint, MapSessionCreate, OutboxEvent
from api.services.location import LocationService, StaticGeolocationProvider
from api.services.map_engine import MapEngine
from api.services.renderer import SceneRenderer

logger = logging.getLogger(__name__)


class MapSession:
    """A map engine whose host callbacks are queued for the browser to drain."""

    def __init__(self, session_id: str, request: MapSessionCreate):
        self.id = session_id
        self.last_access = 0.0
        self._outbox: Deque[OutboxEvent] = deque(maxlen=config.OUTBOX_MAX_EVENTS)
        provider = (
            StaticGeolocationProvider(request.device_location)
            if request.device_location is not None
            else None
        )
        self.engine = MapEngine(
            request.properties,
            on_property_click=self._property_click,
            on_area_select=self._area_select,
            on_map_click=self._map_click,
            on_location_select=self._location_select,
            selected_location=request.selected_location,
            style_id=request.style_id or config.DEFAULT_STYLE,
            show_clusters=request.show_clusters,
            show_heatmap=request.show_heatmap,
            location_service=LocationService(provider=provider),
            renderer_factory=SceneRenderer,
        )

    def _push(self, event_type: str, payload: Dict[str, Any]) -> None:
        self._outbox.append(OutboxEvent(type=event_type, payload=payload))

    def _property_click(self, property_id: str) -> None:
        self._push("property_click", {"id": property_id})

    def _area_select(self, vertices: List[GeoPoint]) -> None:
        self._push("area_select", {"vertices": [v.model_dump() for v in vertices]})

    def _map_click(self, lng: float, lat: float) -> None:
        self._push("map_click", {"lng": lng, "lat": lat})

    def _location_select(self, lng: float, lat: float, address: Optional[Address]) -> None:
        self._push(
            "location_select",
            {
                "lng": lng,
                "lat": lat,
                "address": address.model_dump(exclude={"raw"}) if address else None,
            },
        )

    def drain(self) -> List[OutboxEvent]:
        events = list(self._outbox)
        self._outbox.clear()
        return events


class MapSessionStore:
    """
    Process-local registry of map sessions.

    A session idle for longer than ttl seconds (no get()) is disposed on the
    next create() or get(), so a closed browser tab does not keep its engine,
    markers and timers alive.
    """

    def __init__(
        self,
        ttl: float = config.SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, MapSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(self, request: MapSessionCreate) -> MapSession:
        self.evict_expired()
        session = MapSession(str(uuid.uuid4()), request)
        session.last_access = self._clock()
        self._sessions[session.id] = session
        await session.engine.init()
        logger.info("Map session %s created (%s)", session.id, session.engine.status.value)
        return session

    def get(self, session_id: str) -> Optional[MapSession]:
        self.evict_expired()
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_access = self._clock()
        return session

    def evict_expired(self) -> int:
        """Dispose sessions idle past the TTL. Returns how many were removed."""
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_access > self.ttl
        ]
        for session_id in expired:
            logger.info("Map session %s expired", session_id)
            self.remove(session_id)
        return len(expired)

    def remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.engine.dispose()
        logger.info("Map session %s disposed", session_id)
        return True

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.remove(session_id)
