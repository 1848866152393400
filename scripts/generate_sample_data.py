"""
generate_sample_data.py - Create a synthetic CT series for the viewer demo.

Writes a short series of small DICOM slices to data/raw/ so you can
decode and render immediately without real patient data.  Each slice
holds a water-density disc with a bone-density ring whose radius changes
through the series, so playback shows visible motion.

Usage
-----
    python scripts/generate_sample_data.py

After running, try:
    python scripts/render_series.py
"""

import os
import sys

import numpy as np
import pydicom
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian

# Make sure repo root is on the path when run as a script
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from dicom_viewer.config import CONFIG  # noqa: E402

OUTPUT_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["input_folder"])

N_SLICES = 12
SIZE = 128
# Stored values are offset by 1024 so RescaleIntercept=-1024 yields HU
_AIR, _WATER, _BONE = 24, 1024, 1824


def _slice_pixels(index: int, size: int = SIZE, seed: int = 42) -> np.ndarray:
    """Disc of water with a bone ring; ring radius grows with *index*."""
    rng = np.random.default_rng(seed + index)
    yy, xx = np.mgrid[:size, :size]
    r = np.hypot(xx - size / 2, yy - size / 2)

    pixels = np.full((size, size), _AIR, dtype=np.float64)
    pixels[r < size * 0.45] = _WATER
    ring = size * (0.15 + 0.02 * index)
    pixels[np.abs(r - ring) < 2.5] = _BONE
    pixels += rng.normal(0, 15, size=(size, size))
    return pixels.clip(0, 4095).astype(np.uint16)


def _make_dicom(path: str, index: int, study_uid: str, series_uid: str) -> None:
    """Write a single synthetic slice of the series."""
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.2")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)

    # --- Patient / study identity ---
    ds.PatientName = "Synthetic^Patient"
    ds.PatientID = "SYN00001"
    ds.PatientBirthDate = "19800101"
    ds.PatientSex = "F"
    ds.PatientAge = "045Y"
    ds.StudyDate = "20230601"
    ds.StudyTime = "120000"
    ds.StudyDescription = "Synthetic phantom"
    ds.SeriesDescription = "Axial 2.5mm"
    ds.StudyInstanceUID = study_uid
    ds.SeriesInstanceUID = series_uid
    ds.BodyPartExamined = "HEAD"
    ds.InstitutionName = "City General Hospital"
    ds.Modality = "CT"
    ds.InstanceNumber = index + 1

    # --- Calibration ---
    ds.RescaleSlope = 1.0
    ds.RescaleIntercept = -1024.0
    ds.WindowCenter = 40.0
    ds.WindowWidth = 400.0
    ds.PixelSpacing = [0.8, 0.8]

    # --- Pixel data ---
    ds.Rows = SIZE
    ds.Columns = SIZE
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelData = _slice_pixels(index).tobytes()

    ds.save_as(path)


def generate(output_folder: str = OUTPUT_FOLDER, n_slices: int = N_SLICES) -> None:
    """Generate the synthetic series into *output_folder*."""
    os.makedirs(output_folder, exist_ok=True)
    study_uid = pydicom.uid.generate_uid()
    series_uid = pydicom.uid.generate_uid()

    print(f"Writing {n_slices} synthetic slices to: {output_folder}")
    print("-" * 60)

    for i in range(n_slices):
        filename = f"slice_{i + 1:03d}.dcm"
        _make_dicom(os.path.join(output_folder, filename), i, study_uid, series_uid)
        print(f"  [{i + 1:02d}/{n_slices}] {filename}")

    print("-" * 60)
    print("Done.  Render the series with:")
    print("  python scripts/render_series.py")


if __name__ == "__main__":
    generate()
