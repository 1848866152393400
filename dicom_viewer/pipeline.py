"""
pipeline.py - Sequential batch decode of an upload.

Decodes every DICOM candidate in upload order, one file at a time, so
that previews appear progressively.  A file that fails to decode is
recorded with its error message and a placeholder preview; the rest of
the batch keeps going.

After the batch, the first image supplies the payload the surrounding
application persists through the Records API.  The core never calls
that API itself.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import numpy as np

from dicom_viewer.config import CONFIG
from dicom_viewer.pixels import DecodedImage, decode_file
from dicom_viewer.series import SeriesController
from dicom_viewer.windowing import render, render_placeholder

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class FileResult:
    """Outcome of decoding a single file."""
    filename: str
    success: bool
    image: Optional[DecodedImage] = None
    preview: Optional[np.ndarray] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_s: float = 0.0


@dataclass
class BatchReport:
    """Aggregate report produced at the end of a batch decode."""
    total_files: int = 0
    decoded: int = 0
    failed: int = 0
    elapsed_s: float = 0.0
    results: list[FileResult] = field(default_factory=list)

    @property
    def images(self) -> list[Optional[DecodedImage]]:
        """Decoded images in upload order, None where decoding failed."""
        return [r.image for r in self.results]

    def summary(self) -> str:
        lines = [
            "=" * 50,
            "BATCH DECODE SUMMARY",
            "=" * 50,
            f"Total files found : {self.total_files}",
            f"Decoded           : {self.decoded}",
            f"Failed            : {self.failed}",
            f"Total time        : {self.elapsed_s:.2f}s",
        ]
        if self.failed > 0:
            lines.append("\nFailed files:")
            for r in self.results:
                if not r.success:
                    lines.append(f"  - {r.filename}: [{r.error_type}] {r.error}")
        return "\n".join(lines)


ProgressCallback = Callable[[int, FileResult], None]


# ---------------------------------------------------------------------------
# File discovery
# ---------------------------------------------------------------------------

def is_dicom_candidate(filename: str, extensions: Optional[Iterable[str]] = None) -> bool:
    """True if *filename* has one of the accepted DICOM extensions."""
    extensions = extensions or CONFIG["loader"]["extensions"]
    ext = os.path.splitext(filename)[1].lower()
    return ext in {e.lower() for e in extensions}


def discover_files(
    folder: str,
    extensions: Optional[Iterable[str]] = None,
    max_files: Optional[int] = None,
) -> list[str]:
    """Sorted DICOM candidates in *folder* (hidden files skipped)."""
    if not os.path.isdir(folder):
        logger.error("Input folder not found: %s", folder)
        return []
    files = sorted(
        f for f in os.listdir(folder)
        if not f.startswith(".") and is_dicom_candidate(f, extensions)
    )
    if max_files is not None:
        files = files[:max_files]
    return [os.path.join(folder, f) for f in files]


# ---------------------------------------------------------------------------
# Core batch decode
# ---------------------------------------------------------------------------

def decode_batch(
    paths: Iterable[str],
    on_progress: Optional[ProgressCallback] = None,
    render_previews: bool = True,
) -> BatchReport:
    """
    Decode *paths* strictly in order.

    Parameters
    ----------
    paths : iterable of str
        Files to decode, in upload order.
    on_progress : callable, optional
        Called as ``on_progress(index, result)`` after each file, so a
        caller can show previews as they arrive.
    render_previews : bool
        Render a default-window preview (or an error placeholder) per file.

    Returns
    -------
    BatchReport
        One FileResult per path, in the same order.
    """
    paths = list(paths)
    report = BatchReport(total_files=len(paths))
    batch_start = time.time()
    logger.info("Starting batch decode: %d files.", report.total_files)

    for index, path in enumerate(paths):
        file_start = time.time()
        result = FileResult(filename=os.path.basename(path), success=False)

        try:
            result.image = decode_file(path)
            result.success = True
            report.decoded += 1
            if render_previews:
                result.preview = render(result.image)
        except Exception as exc:
            result.error = str(exc)
            result.error_type = type(exc).__name__
            report.failed += 1
            logger.exception("Error decoding %s: %s", result.filename, exc)
            if render_previews:
                result.preview = render_placeholder(("Error loading DICOM file", str(exc)[:40]))

        result.duration_s = time.time() - file_start
        report.results.append(result)
        if on_progress is not None:
            on_progress(index, result)

    report.elapsed_s = time.time() - batch_start
    logger.info(report.summary())
    return report


def process_folder(
    input_folder: Optional[str] = None,
    max_files: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchReport:
    """Decode every DICOM candidate in *input_folder* (default from config)."""
    input_folder = input_folder or CONFIG["paths"]["input_folder"]
    return decode_batch(discover_files(input_folder, max_files=max_files), on_progress=on_progress)


def load_series(
    paths: Iterable[str],
    fps: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> tuple[SeriesController, BatchReport]:
    """Decode an upload and wrap the result in a fresh SeriesController."""
    report = decode_batch(paths, on_progress=on_progress)
    return SeriesController(report.images, fps=fps), report


# ---------------------------------------------------------------------------
# Records API payload
# ---------------------------------------------------------------------------

def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def build_records_payload(image: Optional[DecodedImage]) -> dict[str, Any]:
    """
    Structured description of an upload for the Records API.

    Built from the first image of the upload.  When that image failed to
    decode, the identity blocks are empty and geometry fields are None;
    the receiving side applies its own defaults.
    """
    if image is None:
        return {
            "patientInfo": {},
            "studyInfo": {},
            "modality": None,
            "dimensions": None,
            "pixelSpacing": None,
        }

    patient = image.patient
    study = image.study
    return {
        "patientInfo": {
            "name": patient.name,
            "patientId": patient.patient_id,
            "dateOfBirth": _iso(patient.birth_date),
            "gender": patient.sex,
            "age": patient.age,
        },
        "studyInfo": {
            "studyDate": _iso(study.study_date),
            "studyTime": study.study_time,
            "studyDescription": study.description,
            "studyInstanceUID": study.study_instance_uid,
            "seriesInstanceUID": study.series_instance_uid,
            "seriesDescription": study.series_description,
            "bodyPartExamined": study.body_part,
            "institutionName": study.institution,
            "manufacturer": study.manufacturer,
            "manufacturerModelName": study.model_name,
        },
        "modality": image.modality,
        "dimensions": {"width": image.width, "height": image.height},
        "pixelSpacing": list(image.pixel_spacing) if image.pixel_spacing else None,
    }
