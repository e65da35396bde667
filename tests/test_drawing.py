"""Tests for the search-area drawing tool."""

from unittest.mock import MagicMock, patch

import pytest

from api.exceptions import DrawingStateError
from api.schemas import GeoPoint
from api.services.drawing import (
    FILL_LAYER_ID,
    OUTLINE_LAYER_ID,
    SOURCE_ID,
    DrawingState,
    DrawingTool,
    polygon_feature,
)
from api.services.renderer import SceneRenderer


def _tool():
    renderer = SceneRenderer("style.json", GeoPoint(lat=0, lng=0), 10)
    on_area_select = MagicMock()
    return DrawingTool(renderer, on_area_select=on_area_select), renderer, on_area_select


def _points(*pairs):
    return [GeoPoint(lng=lng, lat=lat) for lng, lat in pairs]


def test_start_enters_drawing_with_crosshair():
    tool, renderer, _ = _tool()
    tool.start()
    assert tool.state == DrawingState.DRAWING
    assert renderer.cursor == "crosshair"


def test_each_vertex_redraws_preview():
    tool, renderer, _ = _tool()
    tool.start()
    tool.add_vertex(GeoPoint(lng=0, lat=0))

    ring = renderer.get_source(SOURCE_ID)["geometry"]["coordinates"][0]
    assert ring == [[0, 0]]
    assert renderer.get_layer(FILL_LAYER_ID) is not None
    assert renderer.get_layer(OUTLINE_LAYER_ID) is not None

    tool.add_vertex(GeoPoint(lng=0, lat=1))
    tool.add_vertex(GeoPoint(lng=1, lat=1))
    ring = renderer.get_source(SOURCE_ID)["geometry"]["coordinates"][0]
    assert ring == [[0, 0], [0, 1], [1, 1], [0, 0]]


def test_finish_with_two_vertices_selects_nothing():
    tool, renderer, on_area_select = _tool()
    tool.start()
    for p in _points((0, 0), (0, 1)):
        tool.add_vertex(p)

    assert tool.finish() is None
    on_area_select.assert_not_called()
    assert tool.state == DrawingState.FINISHED
    assert tool.polygon is None
    assert renderer.get_source(SOURCE_ID) is None


def test_finish_with_three_vertices_selects_area_once():
    tool, _, on_area_select = _tool()
    points = _points((0, 0), (0, 1), (1, 1))
    tool.start()
    for p in points:
        tool.add_vertex(p)

    tool.finish()

    on_area_select.assert_called_once_with(points)
    assert tool.polygon == points


def test_scenario_square_reports_four_vertices_in_order():
    tool, renderer, on_area_select = _tool()
    points = _points((0, 0), (0, 1), (1, 1), (1, 0))
    tool.start()
    for p in points:
        tool.add_vertex(p)
    tool.finish()

    on_area_select.assert_called_once_with(points)
    assert renderer.cursor == ""


def test_vertices_rejected_outside_drawing_state():
    tool, _, _ = _tool()
    with pytest.raises(DrawingStateError):
        tool.add_vertex(GeoPoint(lng=0, lat=0))

    tool.start()
    for p in _points((0, 0), (0, 1), (1, 1)):
        tool.add_vertex(p)
    tool.finish()
    with pytest.raises(DrawingStateError):
        tool.add_vertex(GeoPoint(lng=2, lat=2))
    assert len(tool.vertices) == 3


def test_finish_requires_drawing_state():
    tool, _, _ = _tool()
    with pytest.raises(DrawingStateError):
        tool.finish()


def test_clear_removes_preview_and_resets():
    tool, renderer, _ = _tool()
    tool.start()
    for p in _points((0, 0), (0, 1), (1, 1)):
        tool.add_vertex(p)
    tool.finish()

    tool.clear()

    assert tool.state == DrawingState.IDLE
    assert tool.vertices == []
    assert tool.polygon is None
    assert renderer.get_source(SOURCE_ID) is None
    assert renderer.get_layer(FILL_LAYER_ID) is None


def test_clear_twice_is_a_noop():
    tool, renderer, _ = _tool()
    tool.start()
    for p in _points((0, 0), (0, 1), (1, 1)):
        tool.add_vertex(p)
    tool.finish()
    tool.clear()

    with patch.object(renderer, "remove_layer", wraps=renderer.remove_layer) as remove_layer, \
            patch.object(renderer, "remove_source", wraps=renderer.remove_source) as remove_source:
        tool.clear()

    remove_layer.assert_not_called()
    remove_source.assert_not_called()
    assert tool.vertices == []


def test_start_discards_previous_polygon():
    tool, renderer, _ = _tool()
    tool.start()
    for p in _points((0, 0), (0, 1), (1, 1)):
        tool.add_vertex(p)
    tool.finish()

    tool.start()

    assert tool.polygon is None
    assert tool.vertices == []
    assert renderer.get_source(SOURCE_ID) is None


def test_reattach_redraws_finished_polygon_after_style_swap():
    tool, renderer, _ = _tool()
    tool.start()
    for p in _points((0, 0), (0, 1), (1, 1)):
        tool.add_vertex(p)
    tool.finish()

    renderer.set_style("other.json")
    assert renderer.get_source(SOURCE_ID) is None

    tool.reattach()
    assert renderer.get_layer(FILL_LAYER_ID) is not None


def test_polygon_feature_leaves_short_rings_open():
    feature = polygon_feature(_points((0, 0), (1, 1)))
    assert feature["geometry"]["coordinates"] == [[[0, 0], [1, 1]]]
