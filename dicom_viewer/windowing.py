"""
windowing.py - Window/level rendering of calibrated samples to RGBA.

WHY THIS MATTERS
----------------
Calibrated CT intensities span thousands of Hounsfield Units, but a
display only has 256 grey levels.  A *window* (width) and *level*
(centre) pick the clinically relevant slice of that range:

    lo = level - window / 2
    hi = level + window / 2

Samples at or below ``lo`` render black, samples at or above ``hi``
render white and everything in between is scaled linearly.  Showing the
wrong window makes anatomy invisible.

Display filters (invert, brightness, contrast) run afterwards on the
8-bit output.  They are always applied to a freshly windowed raster;
re-filtering an already filtered raster would compound the effect.

References
----------
- DICOM PS3.3 C.11.2.1.2: Window Center and Window Width
- Radiopaedia windowing reference: https://radiopaedia.org/articles/windowing-ct
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.colors import to_rgb
from matplotlib.figure import Figure

from dicom_viewer.config import CONFIG
from dicom_viewer.pixels import DecodedImage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Window presets (centre, width) commonly used in radiology
# ---------------------------------------------------------------------------
WINDOW_PRESETS: dict[str, tuple[float, float]] = {
    "brain": (40.0, 80.0),
    "bone": (400.0, 1800.0),
    "lung": (-600.0, 1500.0),
    "soft_tissue": (50.0, 400.0),
}

LOADING_MESSAGE = ("DICOM file loaded", "Processing pixel data...")


@dataclass
class RenderParameters:
    """User-controlled display settings for one viewing session."""
    window: float
    level: float
    invert: bool = False
    # Contrast in [-1, 1]; 0 leaves the raster unchanged
    contrast: float = 0.0
    # Brightness offset in grey levels, added before clamping
    brightness: float = 0.0

    def __post_init__(self):
        if self.window <= 0:
            raise ValueError(f"Window width must be > 0, got window={self.window}.")
        if not -1.0 <= self.contrast <= 1.0:
            raise ValueError(f"Contrast must be within [-1, 1], got contrast={self.contrast}.")

    @classmethod
    def default(cls) -> "RenderParameters":
        render_cfg = CONFIG["render"]
        return cls(window=float(render_cfg["default_window"]), level=float(render_cfg["default_level"]))

    @classmethod
    def from_image(cls, image: DecodedImage) -> "RenderParameters":
        """Start from the window the file itself recommends."""
        return cls(window=image.window_width_default, level=image.window_center_default)

    @classmethod
    def from_preset(cls, preset: str) -> "RenderParameters":
        if preset not in WINDOW_PRESETS:
            raise ValueError(
                f"Unknown preset '{preset}'. "
                f"Choose from: {list(WINDOW_PRESETS.keys())}"
            )
        level, window = WINDOW_PRESETS[preset]
        return cls(window=window, level=level)

    @property
    def has_filters(self) -> bool:
        return self.invert or self.contrast != 0 or self.brightness != 0

    def cache_key(self) -> tuple:
        return (self.window, self.level, self.invert, self.contrast, self.brightness)


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def apply_window(
    samples: np.ndarray,
    center: float,
    width: float,
) -> np.ndarray:
    """
    Apply window/level and return values normalised to [0, 1].

    Samples at or below (center - width/2) map to 0.
    Samples at or above (center + width/2) map to 1.
    Everything in between is linearly scaled.

    Parameters
    ----------
    samples : np.ndarray
        Calibrated intensities.
    center : float
        Window centre (level).
    width : float
        Window width.

    Returns
    -------
    np.ndarray
        Float array in [0, 1], same shape as *samples*.
    """
    if width <= 0:
        raise ValueError(
            f"Window width must be > 0, got width={width}."
        )
    lower = center - width / 2.0
    upper = center + width / 2.0
    windowed = np.clip(samples, lower, upper)
    return (windowed - lower) / (upper - lower)


def window_to_gray(samples: np.ndarray, window: float, level: float) -> np.ndarray:
    """Window calibrated samples to 8-bit grey, rounding half up."""
    normalised = apply_window(samples, center=level, width=window)
    return np.clip(_round_half_up(normalised * 255.0), 0, 255).astype(np.uint8)


def contrast_factor(contrast: float) -> float:
    """Classic contrast curve factor for a contrast value in [-1, 1]."""
    c = contrast * 255.0
    return (259.0 * (c + 255.0)) / (255.0 * (259.0 - c))


def apply_filters(
    gray: np.ndarray,
    invert: bool = False,
    brightness: float = 0.0,
    contrast: float = 0.0,
) -> np.ndarray:
    """
    Run the display filters over a windowed 8-bit raster.

    Order: invert, then brightness (add and clamp), then contrast
    ``clamp(factor * (v - 128) + 128)``.  Returns a new array; *gray* is
    left untouched so callers can re-filter from the same windowed input.
    """
    out = gray.astype(np.float64)
    if invert:
        out = 255.0 - out
    if brightness:
        out = np.clip(out + brightness, 0, 255)
    if contrast:
        out = np.clip(contrast_factor(contrast) * (out - 128.0) + 128.0, 0, 255)
    return _round_half_up(out).astype(np.uint8)


def to_rgba(gray: np.ndarray) -> np.ndarray:
    """Replicate a (H, W) grey raster into opaque (H, W, 4) RGBA."""
    rgba = np.empty(gray.shape + (4,), dtype=np.uint8)
    rgba[..., 0] = gray
    rgba[..., 1] = gray
    rgba[..., 2] = gray
    rgba[..., 3] = 255
    return rgba


def render_placeholder(
    lines: Sequence[str] = LOADING_MESSAGE,
    width: Optional[int] = None,
    height: Optional[int] = None,
    background: Optional[str] = None,
    text_color: Optional[str] = None,
) -> np.ndarray:
    """
    Draw a solid raster with centred message lines.

    Used whenever there is nothing real to show, so the viewer never
    displays a blank canvas without explanation.
    """
    cfg = CONFIG["render"]["placeholder"]
    width = int(width or cfg["width"])
    height = int(height or cfg["height"])
    background = background or cfg["background"]
    text_color = text_color or cfg["text_color"]

    dpi = 100
    fig = Figure(figsize=(width / dpi, height / dpi), dpi=dpi, facecolor=background)
    canvas = FigureCanvasAgg(fig)
    line_gap = 20.0 / height
    top = 0.5 + line_gap * (len(lines) - 1) / 2.0
    for i, line in enumerate(lines):
        fig.text(
            0.5, top - i * line_gap, line,
            color=text_color, fontsize=11, ha="center", va="center",
        )
    canvas.draw()
    drawn = np.asarray(canvas.buffer_rgba())

    # Agg may round the canvas size by a pixel; pad or crop to the exact shape
    raster = np.empty((height, width, 4), dtype=np.uint8)
    raster[..., :3] = np.round(np.array(to_rgb(background)) * 255).astype(np.uint8)
    h = min(height, drawn.shape[0])
    w = min(width, drawn.shape[1])
    raster[:h, :w] = drawn[:h, :w]
    raster[..., 3] = 255
    return raster


def render(
    image: Optional[DecodedImage],
    params: Optional[RenderParameters] = None,
) -> np.ndarray:
    """
    Render a decoded image to a (height, width, 4) RGBA raster.

    Pure: the same image and parameters always give the same raster.
    Never raises.  A missing image or sample buffer renders the loading
    placeholder; any failure renders an error placeholder.
    """
    if image is None or image.calibrated_samples is None:
        return render_placeholder(LOADING_MESSAGE)

    try:
        if image.calibrated_samples.size != image.width * image.height:
            raise ValueError(
                f"{image.calibrated_samples.size} samples do not fill {image.width}x{image.height}"
            )
        params = params or RenderParameters.from_image(image)
        gray = window_to_gray(image.calibrated_samples, params.window, params.level)
        if params.has_filters:
            gray = apply_filters(gray, params.invert, params.brightness, params.contrast)
        return to_rgba(gray.reshape(image.height, image.width))
    except Exception as exc:
        logger.exception("Error rendering DICOM image %s", image.source or "")
        return render_placeholder(
            ("Error rendering DICOM", str(exc)[:40]),
            width=image.width,
            height=image.height,
            background="#000000",
            text_color="#ff0000",
        )


class RasterCache:
    """
    Small LRU of rendered rasters keyed by (image, render parameters).

    Rendering is cheap enough to redo on every change; the cache only
    saves work when the user flips back and forth between slices.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries or CONFIG["render"]["cache_size"]
        self._entries: OrderedDict = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def render(self, image: Optional[DecodedImage], params: Optional[RenderParameters] = None) -> np.ndarray:
        if image is None:
            return render(None)
        params = params or RenderParameters.from_image(image)
        key = (id(image), params.cache_key())
        hit = self._entries.get(key)
        if hit is not None and hit[0] is image:
            self._entries.move_to_end(key)
            return hit[1]

        raster = render(image, params)
        raster.setflags(write=False)
        self._entries[key] = (image, raster)
        if len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return raster

    def clear(self) -> None:
        self._entries.clear()
