"""
coordinates.py - Screen <-> image space mapping for the viewer canvas.

Both spaces are centre-relative: (0, 0) is the middle of the canvas on
screen and the middle of the pixel grid in image space.  With the current
zoom and pan:

    image = (screen - pan) / zoom
    screen = image * zoom + pan

Rotation is a display-only transform applied to the canvas element.  It
is deliberately *not* part of this mapping, so measurements taken on a
rotated view use unrotated image coordinates.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from dicom_viewer.config import CONFIG

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass
class ViewTransform:
    """Presentation state of the canvas; not part of the image data."""
    zoom: float = 1.0
    pan: Point = Point(0.0, 0.0)
    rotation: float = 0.0

    def __post_init__(self):
        if self.zoom <= 0:
            raise ValueError(f"Zoom must be > 0, got zoom={self.zoom}.")

    def set_zoom(self, zoom: float) -> float:
        """Set zoom, clamped to the configured [zoom_min, zoom_max]."""
        view_cfg = CONFIG["view"]
        self.zoom = min(max(zoom, view_cfg["zoom_min"]), view_cfg["zoom_max"])
        return self.zoom

    def zoom_in(self, step: Optional[float] = None) -> float:
        return self.set_zoom(self.zoom + (step or CONFIG["view"]["zoom_step"]))

    def zoom_out(self, step: Optional[float] = None) -> float:
        return self.set_zoom(self.zoom - (step or CONFIG["view"]["zoom_step"]))

    def pan_by(self, dx: float, dy: float) -> Point:
        self.pan = Point(self.pan.x + dx, self.pan.y + dy)
        return self.pan

    def rotate(self, degrees: float = 90.0) -> float:
        self.rotation = (self.rotation + degrees) % 360.0
        return self.rotation

    def reset(self) -> None:
        self.zoom = 1.0
        self.pan = Point(0.0, 0.0)
        self.rotation = 0.0


def screen_to_image(point: Point, view: ViewTransform) -> Point:
    """Map a centre-relative screen point into image space."""
    return Point(
        (point.x - view.pan.x) / view.zoom,
        (point.y - view.pan.y) / view.zoom,
    )


def image_to_screen(point: Point, view: ViewTransform) -> Point:
    """Inverse of screen_to_image, used to place overlays."""
    return Point(
        point.x * view.zoom + view.pan.x,
        point.y * view.zoom + view.pan.y,
    )


def canvas_to_centered(x: float, y: float, canvas_width: float, canvas_height: float) -> Point:
    """Convert a top-left-origin canvas position to centre-relative."""
    return Point(x - canvas_width / 2.0, y - canvas_height / 2.0)


def image_to_pixel(point: Point, width: int, height: int) -> tuple[float, float]:
    """Centre-relative image point to (column, row) in the pixel grid."""
    return point.x + width / 2.0, point.y + height / 2.0


def pixel_to_image(column: float, row: float, width: int, height: int) -> Point:
    """(column, row) in the pixel grid to a centre-relative image point."""
    return Point(column - width / 2.0, row - height / 2.0)


def is_inside_image(point: Point, width: int, height: int) -> bool:
    column, row = image_to_pixel(point, width, height)
    return 0 <= column < width and 0 <= row < height
