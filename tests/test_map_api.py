"""Tests for the map session HTTP API."""

from unittest.mock import MagicMock, patch

import pytest
from requests.exceptions import ConnectionError

PROPERTIES = [
    {
        "id": f"p{i}",
        "coordinates": {"lat": 3.8667 + i * 0.00005, "lng": 11.5167},
        "price": 100_000 * (i + 1),
        "listing_type": "rent" if i % 2 else "sale",
        "title": f"Apartment {i}",
    }
    for i in range(6)
]


@pytest.fixture
def offline_geocoder():
    """Keep reverse geocoding off the network."""
    with patch(
        "api.services.maptiler_geocoder.requests.get",
        side_effect=ConnectionError("offline"),
    ) as mock_get:
        yield mock_get


@pytest.fixture
def session_id(client, offline_geocoder):
    response = client.post(
        "/api/maps/sessions", json={"properties": PROPERTIES, "show_clusters": True}
    )
    assert response.status_code == 201
    sid = response.json()["session_id"]
    client.post(f"/api/maps/sessions/{sid}/events", json={"type": "load"})
    return sid


def _markers(data, kind):
    return [m for m in data["scene"]["markers"] if m["element"]["kind"] == kind]


def _click(client, sid, lng, lat):
    return client.post(
        f"/api/maps/sessions/{sid}/events", json={"type": "click", "lng": lng, "lat": lat}
    )


def test_list_styles(client):
    response = client.get("/api/maps/styles")
    assert response.status_code == 200
    ids = [s["id"] for s in response.json()]
    assert ids == ["streets-v2", "basic-v2", "bright-v2", "outdoor-v2", "satellite"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["maps"]["api_key_configured"] is True


def test_create_session_waits_for_load(client):
    response = client.post("/api/maps/sessions", json={"properties": PROPERTIES})
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "loading"
    assert data["scene"]["markers"] == []
    assert data["scene"]["center"] == {"lng": 11.5167, "lat": 3.8667}


def test_load_event_renders_clusters(client, session_id):
    data = client.get(f"/api/maps/sessions/{session_id}").json()
    assert data["status"] == "ready"
    assert len(_markers(data, "cluster")) == 1
    assert data["view"]["show_clusters"] is True


def test_toggle_view(client, session_id):
    response = client.patch(
        f"/api/maps/sessions/{session_id}/view",
        json={"show_clusters": False, "show_heatmap": True},
    )
    assert response.status_code == 200
    data = response.json()
    assert len(_markers(data, "single")) == 6
    assert [layer["id"] for layer in data["scene"]["layers"]] == ["properties-heatmap"]


def test_unknown_style_is_rejected(client, session_id):
    response = client.patch(f"/api/maps/sessions/{session_id}/view", json={"style_id": "neon"})
    assert response.status_code == 400


def test_style_change_drops_custom_layers_until_reattached(client, session_id):
    client.patch(f"/api/maps/sessions/{session_id}/view", json={"show_heatmap": True})
    data = client.patch(
        f"/api/maps/sessions/{session_id}/view", json={"style_id": "satellite"}
    ).json()
    assert data["view"]["style_id"] == "satellite"
    assert "/maps/satellite/" in data["scene"]["style_url"]
    assert data["scene"]["layers"] == []


def test_marker_click_reaches_outbox(client, session_id):
    client.patch(f"/api/maps/sessions/{session_id}/view", json={"show_clusters": False})
    response = client.post(
        f"/api/maps/sessions/{session_id}/events",
        json={"type": "marker.click", "key": "p3"},
    )
    assert response.json()["selected_property_id"] == "p3"

    events = client.get(f"/api/maps/sessions/{session_id}/outbox").json()["events"]
    assert {"type": "property_click", "payload": {"id": "p3"}} in events
    assert client.get(f"/api/maps/sessions/{session_id}/outbox").json()["events"] == []


def test_marker_hover_toggles_popup(client, session_id):
    data = client.get(f"/api/maps/sessions/{session_id}").json()
    cluster = _markers(data, "cluster")[0]
    assert cluster["popup"]["open"] is False
    assert "6 properties" in cluster["popup"]["html"]

    events_url = f"/api/maps/sessions/{session_id}/events"
    key = cluster["element"]["key"]
    data = client.post(events_url, json={"type": "marker.mouseenter", "key": key}).json()
    assert _markers(data, "cluster")[0]["popup"]["open"] is True

    data = client.post(events_url, json={"type": "marker.mouseleave", "key": key}).json()
    assert _markers(data, "cluster")[0]["popup"]["open"] is False


def test_unknown_marker_is_404(client, session_id):
    response = client.post(
        f"/api/maps/sessions/{session_id}/events",
        json={"type": "marker.click", "key": "nope"},
    )
    assert response.status_code == 404


def test_map_click_reaches_outbox(client, session_id):
    data = _click(client, session_id, 11.52, 3.87).json()
    assert data["selected_location"] == {"lat": 3.87, "lng": 11.52}
    assert len(_markers(data, "selection")) == 1

    events = client.get(f"/api/maps/sessions/{session_id}/outbox").json()["events"]
    assert events[0] == {"type": "map_click", "payload": {"lng": 11.52, "lat": 3.87}}


def test_click_requires_coordinates(client, session_id):
    response = client.post(f"/api/maps/sessions/{session_id}/events", json={"type": "click"})
    assert response.status_code == 400


def test_drawing_flow(client, session_id):
    base = f"/api/maps/sessions/{session_id}"
    assert client.post(f"{base}/drawing/start").json()["drawing"]["state"] == "drawing"
    for lng, lat in [(0, 0), (0, 1), (1, 1), (1, 0)]:
        _click(client, session_id, lng, lat)

    data = client.post(f"{base}/drawing/finish").json()
    assert data["drawing"]["state"] == "finished"
    assert len(data["drawing"]["polygon"]) == 4

    events = client.get(f"{base}/outbox").json()["events"]
    assert [e["type"] for e in events] == ["area_select"]
    assert events[0]["payload"]["vertices"] == [
        {"lat": 0.0, "lng": 0.0},
        {"lat": 1.0, "lng": 0.0},
        {"lat": 1.0, "lng": 1.0},
        {"lat": 0.0, "lng": 1.0},
    ]

    assert client.post(f"{base}/drawing/finish").status_code == 409

    data = client.post(f"{base}/drawing/clear").json()
    assert data["drawing"] == {"state": "idle", "vertices": [], "polygon": None}
    assert all(not s.startswith("drawn-polygon") for s in data["scene"]["sources"])


def test_locate_user(client, session_id):
    data = client.post(
        f"/api/maps/sessions/{session_id}/locate",
        json={"device_location": {"lat": 4.05, "lng": 9.7}},
    ).json()
    assert data["user_location"] == {"lat": 4.05, "lng": 9.7}
    assert len(_markers(data, "user-location")) == 1


def test_locate_denied_is_not_an_error(client, session_id):
    response = client.post(f"/api/maps/sessions/{session_id}/locate", json={})
    assert response.status_code == 200
    assert response.json()["error_banner"] is None


def test_renderer_error_banner_can_be_dismissed(client, session_id):
    data = client.post(
        f"/api/maps/sessions/{session_id}/events",
        json={"type": "error", "message": "tile failed"},
    ).json()
    assert data["error_banner"]
    assert data["status"] == "ready"

    data = client.delete(f"/api/maps/sessions/{session_id}/error").json()
    assert data["error_banner"] is None


def test_delete_session(client, session_id):
    assert client.delete(f"/api/maps/sessions/{session_id}").status_code == 204
    assert client.get(f"/api/maps/sessions/{session_id}").status_code == 404
    assert client.delete(f"/api/maps/sessions/{session_id}").status_code == 404


def test_unknown_session_is_404(client):
    response = client.get("/api/maps/sessions/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["detail"] == "Session not found"


def test_missing_api_key_session_fails(client, monkeypatch):
    monkeypatch.delenv("MAPTILER_API_KEY")
    data = client.post("/api/maps/sessions", json={"properties": PROPERTIES}).json()
    assert data["status"] == "failed"
    assert "MAPTILER_API_KEY" in data["fatal_error"]
    assert data["scene"] is None

    response = client.post(
        f"/api/maps/sessions/{data['session_id']}/events", json={"type": "load"}
    )
    assert response.status_code == 409


def test_reverse_geocode_route(client):
    payload = {
        "features": [
            {
                "place_name": "Rue 1, Douala, Cameroon",
                "context": [
                    {"id": "place.1", "text": "Douala"},
                    {"id": "country.1", "text": "Cameroon"},
                ],
            }
        ]
    }
    fake_resp = MagicMock()
    fake_resp.json.return_value = payload
    with patch("api.services.maptiler_geocoder.requests.get", return_value=fake_resp):
        response = client.get("/api/maps/reverse-geocode", params={"lng": 9.71, "lat": 4.05})
    assert response.status_code == 200
    assert response.json()["city"] == "Douala"


def test_reverse_geocode_route_no_result(client, offline_geocoder):
    response = client.get("/api/maps/reverse-geocode", params={"lng": 9.72, "lat": 4.06})
    assert response.status_code == 404


def test_reverse_geocode_route_reuses_cached_results(client):
    fake_resp = MagicMock()
    fake_resp.json.return_value = {"features": [{"place_name": "Bonanjo, Douala"}]}
    params = {"lng": 9.6951, "lat": 4.0429}
    with patch(
        "api.services.maptiler_geocoder.requests.get", return_value=fake_resp
    ) as mock_get:
        first = client.get("/api/maps/reverse-geocode", params=params)
        second = client.get("/api/maps/reverse-geocode", params=params)

    assert first.json()["label"] == second.json()["label"] == "Bonanjo, Douala"
    assert mock_get.call_count == 1


def test_property_without_price_is_rejected(client):
    listing = {"id": "no-price", "coordinates": {"lat": 3.87, "lng": 11.52}}
    response = client.post("/api/maps/sessions", json={"properties": [listing]})
    assert response.status_code == 422
