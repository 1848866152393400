"""
measurement.py - Two-point distance measurements in image space.

A measurement is built by two clicks in measurement mode:

    EMPTY --click--> ONE_POINT_PLACED --click--> (measurement stored) --> EMPTY

Distances are physical: image-space deltas are scaled by Pixel Spacing,
which DICOM stores as (row spacing, column spacing).  Horizontal deltas
therefore use the column spacing and vertical deltas the row spacing.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from dicom_viewer.coordinates import Point
from dicom_viewer.metadata import DEFAULT_PIXEL_SPACING

logger = logging.getLogger(__name__)


class Tool(str, Enum):
    NAVIGATE = "navigate"
    PAN = "pan"
    MEASURE = "measure"


class MeasurementState(str, Enum):
    EMPTY = "empty"
    ONE_POINT_PLACED = "one_point_placed"


@dataclass(frozen=True)
class Measurement:
    id: str
    point_a: Point
    point_b: Point
    distance_mm: float
    unit: str = "mm"

    @property
    def label(self) -> str:
        return f"{self.distance_mm:.2f} {self.unit}"


def physical_distance(
    a: Point,
    b: Point,
    pixel_spacing: Optional[tuple[float, float]] = None,
) -> float:
    """Distance in mm between two image-space points."""
    row_spacing, col_spacing = pixel_spacing or DEFAULT_PIXEL_SPACING
    dx = (b.x - a.x) * col_spacing
    dy = (b.y - a.y) * row_spacing
    return math.sqrt(dx * dx + dy * dy)


class MeasurementEngine:
    """Collects point pairs and keeps the list of finished measurements."""

    def __init__(self, pixel_spacing: Optional[tuple[float, float]] = None):
        self.pixel_spacing = pixel_spacing
        self._pending: Optional[Point] = None
        self._measurements: list[Measurement] = []
        self._next_id = 1

    @property
    def state(self) -> MeasurementState:
        if self._pending is None:
            return MeasurementState.EMPTY
        return MeasurementState.ONE_POINT_PLACED

    @property
    def pending_point(self) -> Optional[Point]:
        return self._pending

    @property
    def measurements(self) -> tuple[Measurement, ...]:
        return tuple(self._measurements)

    def click(
        self,
        point: Point,
        pixel_spacing: Optional[tuple[float, float]] = None,
    ) -> Optional[Measurement]:
        """
        Place a point.  The second point completes a measurement, which is
        stored and returned; the first returns None.

        *pixel_spacing* is the spacing of the slice being measured and
        overrides the engine default for this measurement.
        """
        if self._pending is None:
            self._pending = point
            return None

        spacing = pixel_spacing if pixel_spacing is not None else self.pixel_spacing
        measurement = Measurement(
            id=f"m{self._next_id}",
            point_a=self._pending,
            point_b=point,
            distance_mm=physical_distance(self._pending, point, spacing),
        )
        self._next_id += 1
        self._measurements.append(measurement)
        self._pending = None
        logger.debug("Measurement %s: %s", measurement.id, measurement.label)
        return measurement

    def cancel(self) -> None:
        """Drop a half-placed measurement, if any."""
        self._pending = None

    def delete(self, measurement_id: str) -> bool:
        before = len(self._measurements)
        self._measurements = [m for m in self._measurements if m.id != measurement_id]
        return len(self._measurements) != before

    def get(self, measurement_id: str) -> Optional[Measurement]:
        return next((m for m in self._measurements if m.id == measurement_id), None)

    def clear(self) -> None:
        self._pending = None
        self._measurements = []

    def restore(self, measurements: Iterable[Measurement]) -> None:
        """Replace the list with previously saved measurements."""
        self._pending = None
        self._measurements = list(measurements)
        ids = [int(m.id[1:]) for m in self._measurements if m.id[1:].isdigit()]
        self._next_id = max(ids, default=0) + 1
