"""
session.py - Explicit per-viewer state with YAML save/load.

A ViewerSession bundles everything the user controls while looking at a
series: render parameters, zoom/pan/rotation, the active tool, the
measurement list and the current slice.  It is passed to whoever needs
it; nothing reads viewer state from a global.

Saving writes metadata only.  Pixel data is never persisted; after a
load the caller re-decodes the files and attaches the new series.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import yaml

from dicom_viewer.coordinates import Point, ViewTransform, screen_to_image
from dicom_viewer.measurement import Measurement, MeasurementEngine, Tool
from dicom_viewer.series import SeriesController
from dicom_viewer.windowing import RasterCache, RenderParameters

logger = logging.getLogger(__name__)


@dataclass
class ViewerSession:
    render_params: RenderParameters = field(default_factory=RenderParameters.default)
    view: ViewTransform = field(default_factory=ViewTransform)
    tool: Tool = Tool.NAVIGATE
    measurements: MeasurementEngine = field(default_factory=MeasurementEngine)
    series: Optional[SeriesController] = None
    # Index to restore once a series is attached after load()
    saved_index: int = 0
    cache: RasterCache = field(default_factory=RasterCache, repr=False)

    # ---------- series lifecycle ----------

    def attach_series(self, series: SeriesController, use_file_window: bool = False) -> None:
        """
        Start viewing *series*; a new upload supersedes the previous one.

        A slice index restored by load() applies to the first series
        attached afterwards only.  Measurements of a replaced series are
        dropped since they refer to its images.
        """
        if self.series is not None:
            self.measurements.clear()
        self.series = series
        self.cache.clear()
        series.go_to(self.saved_index)
        self.saved_index = 0
        if use_file_window and series.current is not None:
            self.render_params = RenderParameters.from_image(series.current)

    def close_series(self) -> None:
        self.series = None
        self.saved_index = 0
        self.cache.clear()
        self.measurements.clear()

    @property
    def current_index(self) -> int:
        if self.series is None:
            return self.saved_index
        return self.series.current_index

    @property
    def current_spacing(self) -> Optional[tuple[float, float]]:
        """Pixel spacing of the slice on screen right now."""
        image = self.series.current if self.series is not None else None
        return image.pixel_spacing if image is not None else None

    def go_to(self, index: int) -> int:
        if self.series is None:
            return self.saved_index
        return self.series.go_to(index)

    # ---------- interaction ----------

    def set_tool(self, tool: Tool) -> None:
        """Switch tools; a half-placed measurement is discarded."""
        if tool != self.tool:
            self.measurements.cancel()
        self.tool = Tool(tool)

    def click(self, screen_point: Point) -> Optional[Measurement]:
        """
        Handle a canvas click given in centre-relative screen coordinates.

        Spacing is read from the current slice at click time, so it stays
        right however the slice was reached (go_to, next, tick, autoplay).
        """
        if self.tool != Tool.MEASURE:
            return None
        return self.measurements.click(
            screen_to_image(screen_point, self.view),
            pixel_spacing=self.current_spacing,
        )

    def render_current(self) -> np.ndarray:
        image = self.series.current if self.series is not None else None
        return self.cache.render(image, self.render_params)

    # ---------- persistence ----------

    def to_dict(self) -> dict[str, Any]:
        images = []
        if self.series is not None:
            for image in self.series.images:
                if image is None:
                    images.append(None)
                    continue
                images.append({
                    "source": image.source,
                    "width": image.width,
                    "height": image.height,
                    "modality": image.modality,
                    "window_center": image.window_center_default,
                    "window_width": image.window_width_default,
                    "pixel_spacing": list(image.pixel_spacing) if image.pixel_spacing else None,
                })
        return {
            "render": {
                "window": self.render_params.window,
                "level": self.render_params.level,
                "invert": self.render_params.invert,
                "contrast": self.render_params.contrast,
                "brightness": self.render_params.brightness,
            },
            "view": {
                "zoom": self.view.zoom,
                "pan": [self.view.pan.x, self.view.pan.y],
                "rotation": self.view.rotation,
            },
            "tool": self.tool.value,
            "current_index": self.current_index,
            "measurements": [
                {
                    "id": m.id,
                    "point_a": [m.point_a.x, m.point_a.y],
                    "point_b": [m.point_b.x, m.point_b.y],
                    "distance_mm": m.distance_mm,
                    "unit": m.unit,
                }
                for m in self.measurements.measurements
            ],
            "images": images,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ViewerSession":
        render_data = data.get("render") or {}
        view_data = data.get("view") or {}
        pan = view_data.get("pan") or [0.0, 0.0]

        session = cls(
            render_params=RenderParameters(**render_data) if render_data else RenderParameters.default(),
            view=ViewTransform(
                zoom=float(view_data.get("zoom", 1.0)),
                pan=Point(float(pan[0]), float(pan[1])),
                rotation=float(view_data.get("rotation", 0.0)),
            ),
            tool=Tool(data.get("tool", Tool.NAVIGATE.value)),
            saved_index=int(data.get("current_index", 0)),
        )
        session.measurements.restore(
            Measurement(
                id=m["id"],
                point_a=Point(*m["point_a"]),
                point_b=Point(*m["point_b"]),
                distance_mm=float(m["distance_mm"]),
                unit=m.get("unit", "mm"),
            )
            for m in data.get("measurements") or []
        )
        return session

    def save(self, path: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        logger.info("Saved viewer session to %s", path)

    @classmethod
    def load(cls, path: str) -> "ViewerSession":
        """
        Load a saved session.  A missing or corrupt file gives a fresh
        session rather than an error.
        """
        if not os.path.exists(path):
            return cls()
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return cls.from_dict(data)
        except (yaml.YAMLError, KeyError, TypeError, ValueError) as exc:
            logger.error("Could not load viewer session from %s: %s", path, exc)
            return cls()
