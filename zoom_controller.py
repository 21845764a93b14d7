"""
Pan/zoom state for the map.

The user transform sits on top of the projection:

    screen = M @ projected,   M = [[scale_x, skew_x, translate_x],
                                   [skew_y, scale_y, translate_y],
                                   [0,      0,       1          ]]

Only the controller writes to its transform. Dash callbacks are stateless, so
the app round-trips the controller through ``to_dict``/``from_dict`` in a
``dcc.Store``.
"""

import logging
from dataclasses import asdict, dataclass, field, replace
from enum import Enum

import numpy as np

logger = logging.getLogger("energymap.zoom")

DRAG_DELTA_MODES = ("screen", "scaled")


@dataclass
class AffineTransform:
    scale_x: float = 1.0
    scale_y: float = 1.0
    translate_x: float = 0.0
    translate_y: float = 0.0
    skew_x: float = 0.0
    skew_y: float = 0.0

    @property
    def matrix(self):
        return np.array([
            [self.scale_x, self.skew_x, self.translate_x],
            [self.skew_y, self.scale_y, self.translate_y],
            [0.0, 0.0, 1.0],
        ])

    @classmethod
    def from_matrix(cls, m):
        return cls(
            scale_x=float(m[0, 0]), skew_x=float(m[0, 1]), translate_x=float(m[0, 2]),
            skew_y=float(m[1, 0]), scale_y=float(m[1, 1]), translate_y=float(m[1, 2]),
        )


class DragState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass
class ZoomConfig:
    width: float
    height: float
    scale_min: float = 0.5
    scale_max: float = 4.0
    initial: AffineTransform = field(default_factory=AffineTransform)
    drag_delta: str = "screen"

    def __post_init__(self):
        if self.scale_min <= 0 or self.scale_min > self.scale_max:
            raise ValueError(f"Invalid scale bounds [{self.scale_min}, {self.scale_max}]")
        if self.drag_delta not in DRAG_DELTA_MODES:
            raise ValueError(f"drag_delta must be one of {DRAG_DELTA_MODES}, got {self.drag_delta!r}")

    @property
    def center(self):
        return (self.width / 2, self.height / 2)


class TransformController:
    """Owns one AffineTransform and turns gestures into updates of it."""

    def __init__(self, config, transform=None):
        self.config = config
        self.transform = replace(transform or config.initial)
        self.state = DragState.IDLE
        self._last = None

    # ---- drag gesture ----

    @property
    def is_dragging(self):
        return self.state is DragState.DRAGGING

    def pointer_down(self, point):
        self.state = DragState.DRAGGING
        self._last = (float(point[0]), float(point[1]))

    def pointer_move(self, point):
        if not self.is_dragging:
            return
        x, y = float(point[0]), float(point[1])
        dx, dy = x - self._last[0], y - self._last[1]
        if self.config.drag_delta == "scaled":
            dx /= self.transform.scale_x
            dy /= self.transform.scale_y
        self.transform.translate_x += dx
        self.transform.translate_y += dy
        self._last = (x, y)

    def pointer_up(self):
        self.state = DragState.IDLE
        self._last = None

    pointer_leave = pointer_up

    # ---- zoom ----

    def zoom(self, factor, focal_point=None):
        """
        Scale by ``factor`` (scalar or (fx, fy)) about ``focal_point``, which
        keeps its screen position. Scales are clamped to the configured range.
        """
        fx, fy = (factor, factor) if np.isscalar(factor) else factor
        if fx <= 0 or fy <= 0:
            raise ValueError(f"Zoom factor must be positive, got {factor!r}")
        focal = self.config.center if focal_point is None else focal_point

        t = self.transform
        lo, hi = self.config.scale_min, self.config.scale_max
        fx = float(np.clip(t.scale_x * fx, lo, hi)) / t.scale_x
        fy = float(np.clip(t.scale_y * fy, lo, hi)) / t.scale_y

        # M' = M . T(p) . S(f) . T(-p) with p the focal point in pre-transform space
        px, py = self.invert(focal)
        step = np.array([
            [fx, 0.0, px - fx * px],
            [0.0, fy, py - fy * py],
            [0.0, 0.0, 1.0],
        ])
        self.transform = AffineTransform.from_matrix(t.matrix @ step)
        logger.debug("zoom x%.3f,%.3f about %s -> %s", fx, fy, focal, self.transform)

    def reset(self):
        self.transform = replace(self.config.initial)
        self.pointer_up()

    # ---- mapping ----

    @property
    def matrix(self):
        return self.transform.matrix

    def apply(self, point):
        x, y = self.apply_many(np.asarray(point, dtype=float).reshape(1, 2))[0]
        return (float(x), float(y))

    def apply_many(self, points):
        pts = np.asarray(points, dtype=float)
        m = self.matrix
        return pts @ m[:2, :2].T + m[:2, 2]

    def invert(self, point):
        x, y = self.invert_many(np.asarray(point, dtype=float).reshape(1, 2))[0]
        return (float(x), float(y))

    def invert_many(self, points):
        m = self.matrix
        linear = m[:2, :2]
        if abs(np.linalg.det(linear)) < 1e-12:
            raise ValueError("Transform is not invertible")
        pts = np.asarray(points, dtype=float)
        return np.linalg.solve(linear, (pts - m[:2, 2]).T).T

    def screen_to_lonlat(self, point, projection):
        """Screen point -> (lon, lat), undoing the user transform then the projection."""
        lon, lat = projection.invert(self.invert(point))
        return (float(lon), float(lat))

    def to_svg(self):
        t = self.transform
        return f"matrix({t.scale_x},{t.skew_y},{t.skew_x},{t.scale_y},{t.translate_x},{t.translate_y})"

    # ---- persistence between callbacks ----

    def to_dict(self):
        return asdict(self.transform)

    @classmethod
    def from_dict(cls, config, data):
        if not data:
            return cls(config)
        return cls(config, AffineTransform(**data))


def config_from_settings(settings):
    """ZoomConfig from the dashboard settings module (dashboard_hook)."""
    initial = getattr(settings, "INITIAL_TRANSFORM", None) or {}
    return ZoomConfig(
        width=getattr(settings, "MAP_WIDTH", 960),
        height=getattr(settings, "MAP_HEIGHT", 560),
        scale_min=getattr(settings, "SCALE_MIN", 0.5),
        scale_max=getattr(settings, "SCALE_MAX", 4.0),
        initial=AffineTransform(**initial),
        drag_delta=getattr(settings, "DRAG_DELTA", "screen"),
    )
