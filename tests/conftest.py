"""Pytest fixtures for map engine tests."""

import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Ensure project root is on path
_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from api.schemas import Address, GeoPoint, Property
from api.services.location import LocationService
from api.services.map_engine import MapEngine
from api.services.renderer import SceneRenderer


class _ManualTimer:
    def __init__(self, when, seq, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when advance() is called."""

    def __init__(self):
        self.now = 0.0
        self._timers: List[_ManualTimer] = []
        self._seq = 0

    def call_later(self, delay, callback, *args):
        self._seq += 1
        timer = _ManualTimer(self.now + delay, self._seq, callback, args)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> List[_ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float = 0.0) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback(*timer.args)
        self.now = target
        self._timers = self.pending


class FakeGeocoder:
    """Stands in for MapTilerGeocoder; records the points it was asked about."""

    def __init__(self, result: Optional[Address] = None):
        self.result = result
        self.calls: List[GeoPoint] = []

    def reverse_geocode(self, point: GeoPoint) -> Optional[Address]:
        self.calls.append(point)
        return self.result


def make_property(
    property_id: str,
    lat: float,
    lng: float,
    price: float = 250_000,
    listing_type: str = "sale",
    **kwargs,
) -> Property:
    return Property(
        id=property_id,
        coordinates=GeoPoint(lat=lat, lng=lng),
        price=price,
        listing_type=listing_type,
        **kwargs,
    )


def nearby_properties(count: int = 6) -> List[Property]:
    """Properties a few meters apart (all within 50 m of each other)."""
    return [
        make_property(f"p{i}", 3.8667 + i * 0.00005, 11.5167, price=100_000 * (i + 1))
        for i in range(count)
    ]


def same_centroid_properties() -> List[Property]:
    """
    Two clusters at zoom 15 (100 m threshold) whose centroids round alike.

    The origin claims 19 points ~98 m east; its centroid lands at lng 0.000836.
    Two points straddling that centroid are ~104 m from the origin, so they
    form a second cluster with the same centroid.
    """
    props = [make_property("origin", 0.0, 0.0)]
    props += [make_property(f"east{i}", 0.0, 0.00088) for i in range(19)]
    props += [
        make_property("north", 0.00042, 0.000836),
        make_property("south", -0.00042, 0.000836),
    ]
    return props


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def renderers():
    """Renderers created by the engine under test."""
    return []


@pytest.fixture
def renderer_factory(scheduler, renderers):
    def factory(style_url, center, zoom):
        renderer = SceneRenderer(style_url, center, zoom, scheduler=scheduler)
        renderers.append(renderer)
        return renderer

    return factory


@pytest.fixture
def geocoder():
    return FakeGeocoder(Address(label="Avenue Kennedy, Yaounde", city="Yaounde", country="Cameroon"))


@pytest.fixture
def make_engine(scheduler, renderer_factory, geocoder):
    """Build a MapEngine wired to the manual scheduler and a scene renderer."""

    def build(properties=None, provider=None, **kwargs):
        kwargs.setdefault("api_key", "test-key")
        kwargs.setdefault(
            "location_service", LocationService(provider=provider, geocoder=geocoder)
        )
        return MapEngine(
            properties,
            renderer_factory=renderer_factory,
            scheduler=scheduler,
            **kwargs,
        )

    return build


@pytest.fixture
def client(monkeypatch):
    """Test client for the FastAPI app, kept open so the event loop persists across requests."""
    from fastapi.testclient import TestClient

    monkeypatch.setenv("MAPTILER_API_KEY", "test-key")
    from main import app

    with TestClient(app) as test_client:
        yield test_client
