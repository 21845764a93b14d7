"""
World geometry: loading, projection to screen space and hit testing.

Screen space follows SVG conventions, x to the right and y downward.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from shapely.geometry import MultiPolygon, Point, Polygon, shape
from shapely.prepared import prep
from shapely.validation import make_valid

logger = logging.getLogger("energymap.geo")

MERCATOR_MAX_LAT = 85.0511287798
PROJECTIONS = ("mercator", "equirectangular")


@dataclass(frozen=True)
class GeoFeature:
    id: str
    name: str
    rings: tuple  # tuple of rings, each a tuple of (lon, lat)


@dataclass
class ProjectedFeature:
    feature: GeoFeature
    rings: list   # numpy arrays of shape (k, 2), projected
    path: str     # SVG path data
    bbox: tuple   # (xmin, ymin, xmax, ymax)
    geometry: object = None  # prepared shapely geometry for hit testing

    @property
    def id(self):
        return self.feature.id

    @property
    def name(self):
        return self.feature.name


@dataclass(frozen=True)
class GeoProjection:
    scale: float
    translate: tuple = (0.0, 0.0)
    kind: str = "mercator"

    def __post_init__(self):
        if self.kind not in PROJECTIONS:
            raise ValueError(f"Unknown projection {self.kind!r}; expected one of {PROJECTIONS}")

    def forward(self, lonlat):
        """(lon, lat) degrees -> screen (x, y). Accepts a single pair or an (n, 2) array."""
        pts = np.asarray(lonlat, dtype=float)
        lam = np.radians(pts[..., 0])
        if self.kind == "mercator":
            phi = np.radians(np.clip(pts[..., 1], -MERCATOR_MAX_LAT, MERCATOR_MAX_LAT))
            y = np.log(np.tan(np.pi / 4 + phi / 2))
        else:
            y = np.radians(pts[..., 1])
        tx, ty = self.translate
        return np.stack([lam * self.scale + tx, ty - y * self.scale], axis=-1)

    def invert(self, xy):
        """Screen (x, y) -> (lon, lat) degrees."""
        pts = np.asarray(xy, dtype=float)
        tx, ty = self.translate
        lam = (pts[..., 0] - tx) / self.scale
        y = (ty - pts[..., 1]) / self.scale
        if self.kind == "mercator":
            phi = 2 * np.arctan(np.exp(y)) - np.pi / 2
        else:
            phi = y
        return np.stack([np.degrees(lam), np.degrees(phi)], axis=-1)


def viewport_projection(width, height, kind="mercator"):
    """The map's projection fitted to a viewport: 100 units per 630 pixels of width."""
    return GeoProjection(scale=width / 630 * 100, translate=(width / 2, height / 2 + 50), kind=kind)


def _ring_path(xy, closed=True):
    head = f"M{xy[0, 0]:.2f},{xy[0, 1]:.2f}"
    tail = "".join(f"L{x:.2f},{y:.2f}" for x, y in xy[1:])
    return head + tail + ("Z" if closed else "")


def project(features, target_scale, translate, kind="mercator"):
    """Project every feature's rings into the viewport. O(total vertex count)."""
    projection = GeoProjection(scale=target_scale, translate=tuple(translate), kind=kind)
    return project_features(features, projection)


def _ring_geometry(rings):
    """
    Rings combined under the even-odd rule: a ring inside another cuts a
    hole, disjoint rings add islands.
    """
    area = Polygon()
    for ring in rings:
        if len(ring) < 3:
            continue
        poly = Polygon(ring)
        if not poly.is_valid:
            poly = make_valid(poly)
        area = area.symmetric_difference(poly)
    return prep(area)


def project_features(features, projection):
    out = []
    for feature in features:
        rings = [projection.forward(ring) for ring in feature.rings if len(ring)]
        if rings:
            stacked = np.concatenate(rings)
            bbox = (*stacked.min(axis=0), *stacked.max(axis=0))
        else:
            bbox = (np.inf, np.inf, -np.inf, -np.inf)
        path = "".join(_ring_path(r) for r in rings)
        out.append(ProjectedFeature(
            feature=feature,
            rings=rings,
            path=path,
            bbox=tuple(float(v) for v in bbox),
            geometry=_ring_geometry(rings),
        ))
    return out


def graticule(step=10, lat_limit=80, resolution=2.5):
    """Meridians and parallels as (lon, lat) polylines."""
    lats = np.arange(-lat_limit, lat_limit + resolution / 2, resolution)
    lons = np.arange(-180, 180 + resolution / 2, resolution)
    lines = [np.column_stack([np.full_like(lats, lon), lats]) for lon in np.arange(-180, 181, step)]
    lines += [np.column_stack([lons, np.full_like(lons, lat)]) for lat in np.arange(-lat_limit, lat_limit + 1, step)]
    return lines


def project_lines(lines, projection):
    return [projection.forward(line) for line in lines]


# -----------------------------
# Hit testing
# -----------------------------

def contains(projected, point):
    """Strictly inside: a point on a border belongs to neither side."""
    x, y = float(point[0]), float(point[1])
    xmin, ymin, xmax, ymax = projected.bbox
    if not (xmin <= x <= xmax and ymin <= y <= ymax):
        return False
    return projected.geometry.contains(Point(x, y))


def feature_at(projected_features, point):
    """The feature under a point in projected space. Later features are drawn on top."""
    for pf in reversed(projected_features):
        if contains(pf, point):
            return pf
    return None


def feature_ids_by_name(features):
    return {f.name: f.id for f in features}


# -----------------------------
# Loading
# -----------------------------

def _decode_arcs(topology):
    """Absolute (lon, lat) arrays from a topology's (possibly quantized) arcs."""
    transform = topology.get("transform")
    arcs = []
    for arc in topology.get("arcs", []):
        pts = np.asarray(arc, dtype=float)[:, :2]
        if transform:
            pts = np.cumsum(pts, axis=0) * transform["scale"] + transform["translate"]
        arcs.append(pts)
    return arcs


def _stitch_ring(arc_indices, arcs):
    pieces = []
    for i in arc_indices:
        pts = arcs[~i][::-1] if i < 0 else arcs[i]
        pieces.append(pts if not pieces else pts[1:])
    return np.concatenate(pieces) if pieces else np.empty((0, 2))


def _as_rings(rings):
    return tuple(tuple((float(x), float(y)) for x, y in np.asarray(r)[:, :2]) for r in rings if len(r))


def _topology_features(topology, object_name=None):
    objects = topology.get("objects", {})
    if not objects:
        return []
    name = object_name or next(iter(objects))
    if name not in objects:
        raise KeyError(f"Topology has no object {name!r}; available: {sorted(objects)}")
    arcs = _decode_arcs(topology)
    obj = objects[name]
    geometries = obj.get("geometries", [obj])

    features = []
    for geom in geometries:
        kind = geom.get("type")
        if kind == "Polygon":
            polygons = [geom["arcs"]]
        elif kind == "MultiPolygon":
            polygons = geom["arcs"]
        else:
            continue
        rings = [_stitch_ring(ring, arcs) for poly in polygons for ring in poly]
        features.append(_make_feature(geom, geom.get("properties") or {}, _as_rings(rings)))
    return features


def _geometry_rings(geom):
    polygons = geom.geoms if isinstance(geom, MultiPolygon) else [geom]
    return [ring.coords for poly in polygons for ring in (poly.exterior, *poly.interiors)]


def _geojson_features(collection):
    features = []
    for feat in collection.get("features", []):
        raw = feat.get("geometry") or {}
        if raw.get("type") not in ("Polygon", "MultiPolygon"):
            continue
        geom = shape(raw)
        if geom.is_empty:
            continue
        features.append(_make_feature(feat, feat.get("properties") or {}, _as_rings(_geometry_rings(geom))))
    return features


def _make_feature(source, properties, rings):
    fid = source.get("id", properties.get("id", ""))
    name = properties.get("name") or str(fid)
    return GeoFeature(id=str(fid), name=name, rings=rings)


def load_features(source, object_name=None):
    """
    Read world polygons from a TopoJSON topology or a GeoJSON FeatureCollection.
    ``source`` is a path or an already-parsed document.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Geometry file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    else:
        doc = source

    kind = doc.get("type")
    if kind == "Topology":
        features = _topology_features(doc, object_name)
    elif kind == "FeatureCollection":
        features = _geojson_features(doc)
    else:
        raise ValueError(f"Expected a Topology or FeatureCollection, got {kind!r}")

    logger.info("Loaded %d features", len(features))
    return features
