"""
tests/test_geo_projection.py: Projection, geometry loading and hit testing.
"""

from __future__ import annotations

import json
import math

import numpy as np
import pytest

from geo_projection import (
    GeoFeature,
    GeoProjection,
    MERCATOR_MAX_LAT,
    contains,
    feature_at,
    feature_ids_by_name,
    graticule,
    load_features,
    project,
    project_features,
    project_lines,
    viewport_projection,
)

SQUARE = GeoFeature(
    id="SQ",
    name="Square",
    rings=(
        ((0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0), (0.0, 0.0)),
        ((4.0, 4.0), (6.0, 4.0), (6.0, 6.0), (4.0, 6.0), (4.0, 4.0)),  # hole
    ),
)
ISLANDS = GeoFeature(
    id="IS",
    name="Islands",
    rings=(
        ((20.0, 0.0), (25.0, 0.0), (25.0, 5.0), (20.0, 5.0)),
        ((30.0, 0.0), (35.0, 0.0), (35.0, 5.0), (30.0, 5.0)),
    ),
)


# ---------------------------------------------------------------------------
# Projection maths
# ---------------------------------------------------------------------------

def test_origin_maps_to_translate():
    proj = GeoProjection(scale=100, translate=(480, 330))
    assert np.allclose(proj.forward((0, 0)), (480, 330))


def test_equirectangular_is_linear_in_radians():
    proj = GeoProjection(scale=100, translate=(0, 0), kind="equirectangular")
    x, y = proj.forward((180, 90))
    assert x == pytest.approx(100 * math.pi)
    assert y == pytest.approx(-100 * math.pi / 2)


def test_north_is_up():
    proj = GeoProjection(scale=100, translate=(0, 0))
    assert proj.forward((0, 45))[1] < 0 < proj.forward((0, -45))[1]


def test_mercator_clamps_poles():
    proj = GeoProjection(scale=100, translate=(0, 0))
    assert np.isfinite(proj.forward((0, 90))).all()
    assert np.allclose(proj.forward((0, 90)), proj.forward((0, MERCATOR_MAX_LAT)))


@pytest.mark.parametrize("kind", ["mercator", "equirectangular"])
def test_invert_round_trips(kind):
    proj = GeoProjection(scale=152.4, translate=(480, 330), kind=kind)
    lonlat = np.array([[0, 0], [-73.9, 40.7], [151.2, -33.9], [179.0, 80.0]])
    assert np.allclose(proj.invert(proj.forward(lonlat)), lonlat)


def test_unknown_projection():
    with pytest.raises(ValueError):
        GeoProjection(scale=1, kind="orthographic")


def test_viewport_projection():
    proj = viewport_projection(630, 400)
    assert proj.scale == pytest.approx(100)
    assert proj.translate == (315, 250)


# ---------------------------------------------------------------------------
# project
# ---------------------------------------------------------------------------

def test_project_keeps_features_and_rings():
    out = project([SQUARE, ISLANDS], 100, (0, 0), kind="equirectangular")
    assert [pf.id for pf in out] == ["SQ", "IS"]
    assert [len(pf.rings) for pf in out] == [2, 2]
    assert out[0].rings[0].shape == (5, 2)


def test_project_path_has_one_subpath_per_ring():
    (pf,) = project([SQUARE], 100, (10, 20))
    assert pf.path.count("M") == 2
    assert pf.path.count("Z") == 2
    assert pf.path.startswith("M10.00,20.00L")


def test_project_is_pure():
    before = SQUARE.rings
    project([SQUARE], 100, (0, 0))
    assert SQUARE.rings == before


def test_bbox_covers_rings():
    (pf,) = project([ISLANDS], 100, (0, 0), kind="equirectangular")
    xmin, ymin, xmax, ymax = pf.bbox
    assert xmin == pytest.approx(math.radians(20) * 100)
    assert xmax == pytest.approx(math.radians(35) * 100)
    assert ymin < ymax


def test_graticule_lines_project():
    proj = GeoProjection(scale=100, translate=(0, 0))
    lines = project_lines(graticule(step=30), proj)
    assert lines
    assert all(line.shape[1] == 2 for line in lines)


# ---------------------------------------------------------------------------
# Hit testing
# ---------------------------------------------------------------------------

@pytest.fixture
def projected():
    proj = GeoProjection(scale=100, translate=(0, 0), kind="equirectangular")
    return project_features([SQUARE, ISLANDS], proj), proj


def test_point_inside_feature(projected):
    features, proj = projected
    hit = feature_at(features, proj.forward((2, 2)))
    assert hit is not None and hit.id == "SQ"


def test_point_in_hole_misses(projected):
    features, proj = projected
    assert feature_at(features, proj.forward((5, 5))) is None


def test_every_island_hits(projected):
    features, proj = projected
    assert feature_at(features, proj.forward((22, 2))).id == "IS"
    assert feature_at(features, proj.forward((32, 2))).id == "IS"
    assert feature_at(features, proj.forward((27, 2))) is None


def test_shared_border_belongs_to_neither_side():
    west = GeoFeature("W", "West", (((0.0, 0.0), (4.0, 0.0), (4.0, 4.0), (0.0, 4.0)),))
    east = GeoFeature("E", "East", (((4.0, 0.0), (8.0, 0.0), (8.0, 4.0), (4.0, 4.0)),))
    features = project_features([west, east], GeoProjection(scale=1, kind="equirectangular"))
    x, y = features[0].rings[0][1]
    assert not contains(features[0], (x, y))
    assert not contains(features[1], (x, y))
    assert feature_at(features, (x, y)) is None


def test_point_outside_everything(projected):
    features, proj = projected
    assert feature_at(features, proj.forward((-50, -50))) is None


def test_ids_by_name():
    assert feature_ids_by_name([SQUARE, ISLANDS]) == {"Square": "SQ", "Islands": "IS"}


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

TOPOLOGY = {
    "type": "Topology",
    "transform": {"scale": [0.5, 0.5], "translate": [-10, -10]},
    "objects": {
        "units": {
            "type": "GeometryCollection",
            "geometries": [
                {"type": "Polygon", "id": "AAA", "arcs": [[0, 1]], "properties": {"name": "Alpha"}},
                {"type": "MultiPolygon", "id": "BBB", "arcs": [[[~1, 2]]], "properties": {"name": "Beta"}},
                {"type": None, "id": "ZZZ", "properties": {"name": "Nowhere"}},
            ],
        }
    },
    # quantized, delta-encoded
    "arcs": [
        [[0, 0], [20, 0], [0, 20]],   # (-10,-10) -> (0,-10) -> (0,0)
        [[20, 20], [-20, 0], [0, -20]],  # (0,0) -> (-10,0) -> (-10,-10)
        [[20, 0], [-20, 0]],            # (0,-10) -> (-10,-10)
    ],
}


def test_topology_arcs_are_decoded():
    features = load_features(TOPOLOGY)
    assert [f.id for f in features] == ["AAA", "BBB"]

    alpha = features[0]
    assert alpha.name == "Alpha"
    assert alpha.rings == ((
        (-10.0, -10.0), (0.0, -10.0), (0.0, 0.0), (-10.0, 0.0), (-10.0, -10.0),
    ),)


def test_topology_negative_arc_is_reversed():
    beta = load_features(TOPOLOGY)[1]
    assert beta.rings[0][:3] == ((-10.0, -10.0), (-10.0, 0.0), (0.0, 0.0))


def test_topology_named_object():
    features = load_features(TOPOLOGY, object_name="units")
    assert [f.name for f in features] == ["Alpha", "Beta"]


def test_topology_unknown_object():
    with pytest.raises(KeyError):
        load_features(TOPOLOGY, object_name="countries")


def test_geojson_hole_and_multipolygon():
    doc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "id": "MP", "properties": {"name": "Multi"},
             "geometry": {"type": "MultiPolygon", "coordinates": [
                 [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]], [[4, 4], [6, 4], [6, 6], [4, 6], [4, 4]]],
                 [[[20, 0], [25, 0], [25, 5], [20, 5], [20, 0]]],
             ]}},
        ],
    }
    (multi,) = load_features(doc)
    assert len(multi.rings) == 3
    assert multi.rings[1][0] == (4.0, 4.0)

    proj = GeoProjection(scale=100, kind="equirectangular")
    features = project_features([multi], proj)
    assert feature_at(features, proj.forward((2, 2))).id == "MP"
    assert feature_at(features, proj.forward((22, 2))).id == "MP"
    assert feature_at(features, proj.forward((5, 5))) is None


def test_geojson_from_file(tmp_path):
    doc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "id": "ESP", "properties": {"name": "Spain"},
             "geometry": {"type": "Polygon", "coordinates": [[[-9, 36], [3, 36], [3, 43], [-9, 43], [-9, 36]]]}},
            {"type": "Feature", "id": "PT", "properties": {"name": "Point"},
             "geometry": {"type": "Point", "coordinates": [0, 0]}},
        ],
    }
    path = tmp_path / "world.json"
    path.write_text(json.dumps(doc), encoding="utf-8")

    features = load_features(path)
    assert len(features) == 1
    assert features[0] == GeoFeature(
        id="ESP", name="Spain",
        rings=(((-9.0, 36.0), (3.0, 36.0), (3.0, 43.0), (-9.0, 43.0), (-9.0, 36.0)),),
    )


def test_load_rejects_other_documents():
    with pytest.raises(ValueError):
        load_features({"type": "Feature"})


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_features(tmp_path / "missing.json")
