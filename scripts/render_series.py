"""
render_series.py - End-to-end decode, render and measure demonstration.

Generates a synthetic series (if data/raw is empty), decodes every file
in upload order, prints the batch summary and the Records API payload,
then saves rendered slices, a preset comparison and a measurement
overlay to reports/.

Usage
-----
    python scripts/render_series.py

To use your own data instead of generated samples, copy your DICOM
files into data/raw/ first:

    cp my_study/*.dcm data/raw/
    python scripts/render_series.py
"""

import json
import logging
import os
import sys

# Ensure repo root is on sys.path regardless of launch directory
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

import matplotlib
matplotlib.use("Agg")  # non-interactive backend, no display needed
import matplotlib.pyplot as plt

from dicom_viewer.config import CONFIG
from dicom_viewer.coordinates import Point
from dicom_viewer.measurement import Tool
from dicom_viewer.pipeline import build_records_payload, discover_files, load_series
from dicom_viewer.session import ViewerSession
from dicom_viewer.visualization import plot_raster, plot_window_comparison

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)-8s %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
INPUT_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["input_folder"])
REPORTS_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["reports_folder"])
SESSION_FILE = os.path.join(_REPO_ROOT, CONFIG["paths"]["session_file"])


def _ensure_sample_data() -> None:
    """Generate synthetic data if data/raw/ has no DICOM files."""
    if discover_files(INPUT_FOLDER):
        logger.info("Found DICOM files in %s; skipping generation.", INPUT_FOLDER)
        return

    logger.info("No DICOM files in %s, generating samples...", INPUT_FOLDER)
    from scripts.generate_sample_data import generate  # noqa: E402
    generate(INPUT_FOLDER)


def main() -> None:
    os.makedirs(REPORTS_FOLDER, exist_ok=True)

    # ── Step 1: Ensure sample data exists ──────────────────────────────────
    print("=" * 60)
    print("STEP 1: Prepare input data")
    print("=" * 60)
    _ensure_sample_data()
    paths = discover_files(INPUT_FOLDER)
    print(f"  Input folder : {INPUT_FOLDER}")
    print(f"  Files found  : {len(paths)}")
    print()

    # ── Step 2: Sequential batch decode ────────────────────────────────────
    print("=" * 60)
    print("STEP 2: Decode series")
    print("=" * 60)
    series, report = load_series(
        paths,
        on_progress=lambda i, r: print(f"  [{i + 1:02d}/{len(paths)}] {r.filename}: {'ok' if r.success else r.error}"),
    )
    print(report.summary())
    print()

    # ── Step 3: Records API payload ────────────────────────────────────────
    print("=" * 60)
    print("STEP 3: Records payload (first image)")
    print("=" * 60)
    print(json.dumps(build_records_payload(report.images[0] if report.images else None), indent=2))
    print()

    # ── Step 4: Render, measure and save ───────────────────────────────────
    print("=" * 60)
    print("STEP 4: Saving renders to reports/")
    print("=" * 60)
    session = ViewerSession.load(SESSION_FILE)
    session.attach_series(series, use_file_window=True)
    session.go_to(len(series) // 2)

    session.set_tool(Tool.MEASURE)
    session.click(Point(-40.0, 0.0))
    session.click(Point(40.0, 0.0))

    fig = plot_raster(
        session.render_current(),
        session.measurements.measurements,
        session.view,
        title=f"Slice {series.current_index + 1}/{len(series)}",
    )
    path = os.path.join(REPORTS_FOLDER, "measured_slice.png")
    fig.savefig(path, dpi=100, bbox_inches="tight")
    plt.close(fig)
    print(f"  Saved: {path}")

    if series.current is not None:
        fig = plot_window_comparison(series.current)
        path = os.path.join(REPORTS_FOLDER, "window_presets.png")
        fig.savefig(path, dpi=100, bbox_inches="tight")
        plt.close(fig)
        print(f"  Saved: {path}")

    session.save(SESSION_FILE)
    print(f"  Session: {SESSION_FILE}")
    print()

    print("=" * 60)
    print("ALL STAGES COMPLETED SUCCESSFULLY")
    print("=" * 60)


if __name__ == "__main__":
    main()
