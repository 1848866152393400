"""
visualization.py - Matplotlib helpers for rendered rasters and overlays.

All plot functions follow a consistent style and return the Figure so
callers can save or display it as needed.
"""

import logging
from typing import Iterable, Optional

import matplotlib.pyplot as plt
import numpy as np

from dicom_viewer.coordinates import Point, ViewTransform, image_to_screen
from dicom_viewer.measurement import Measurement
from dicom_viewer.pixels import DecodedImage
from dicom_viewer.windowing import WINDOW_PRESETS, RenderParameters, render

logger = logging.getLogger(__name__)

# Consistent figure style across all plots
plt.rcParams.update({"figure.dpi": 100, "axes.titlesize": 11})

OVERLAY_COLOR = "#ffd400"


def plot_raster(
    raster: np.ndarray,
    measurements: Iterable[Measurement] = (),
    view: Optional[ViewTransform] = None,
    title: str = "",
) -> plt.Figure:
    """
    Display a rendered RGBA raster in screen space with measurement overlays.

    The raster is placed with the view's zoom and pan, and each
    measurement endpoint goes through image_to_screen so the overlay
    lines up with the image.  Rotation is not drawn.

    Parameters
    ----------
    raster : np.ndarray
        (height, width, 4) raster from windowing.render.
    measurements : iterable of Measurement
        Completed measurements in image space.
    view : ViewTransform, optional
        Zoom/pan to apply; identity when omitted.
    title : str
        Plot title.

    Returns
    -------
    plt.Figure
    """
    view = view or ViewTransform()
    height, width = raster.shape[:2]

    top_left = image_to_screen(Point(-width / 2.0, -height / 2.0), view)
    bottom_right = image_to_screen(Point(width / 2.0, height / 2.0), view)

    fig, ax = plt.subplots(figsize=(6, 6))
    ax.imshow(
        raster,
        extent=(top_left.x, bottom_right.x, bottom_right.y, top_left.y),
        interpolation="nearest",
    )

    for m in measurements:
        a = image_to_screen(m.point_a, view)
        b = image_to_screen(m.point_b, view)
        ax.plot([a.x, b.x], [a.y, b.y], color=OVERLAY_COLOR, linewidth=1.5, marker="o", markersize=3)
        ax.annotate(
            m.label,
            ((a.x + b.x) / 2.0, (a.y + b.y) / 2.0),
            color=OVERLAY_COLOR,
            fontsize=8,
            xytext=(5, 5),
            textcoords="offset points",
        )

    ax.set_title(title)
    ax.axis("off")
    return fig


def plot_window_comparison(image: DecodedImage) -> plt.Figure:
    """
    Show the same slice through each standard window preset side by side.

    Parameters
    ----------
    image : DecodedImage
        Decoded slice.

    Returns
    -------
    plt.Figure
    """
    presets = list(WINDOW_PRESETS.keys())
    fig, axes = plt.subplots(1, len(presets), figsize=(4 * len(presets), 4))

    for ax, preset in zip(axes, presets):
        raster = render(image, RenderParameters.from_preset(preset))
        center, width = WINDOW_PRESETS[preset]
        ax.imshow(raster)
        ax.set_title(f"{preset.replace('_', ' ').title()}\n(C={center}, W={width})")
        ax.axis("off")

    fig.suptitle("Windowed Views (same slice)", y=1.02)
    fig.tight_layout()
    return fig
