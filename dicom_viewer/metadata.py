"""
metadata.py - Patient, study and image-geometry fields from a DICOM header.

Reads a fixed set of well-known tags through a TagReader and applies the
viewer's defaults for anything that is missing.  Nothing in here aborts a
decode: a corrupt date or an unparseable spacing is logged and left unset.

Tag reference (group, element)
------------------------------
    Rows (0028,0010)              Columns (0028,0011)
    Bits Allocated (0028,0100)    Pixel Representation (0028,0103)
    Rescale Intercept (0028,1052) Rescale Slope (0028,1053)
    Window Center (0028,1050)     Window Width (0028,1051)
    Pixel Spacing (0028,0030)     Modality (0008,0060)
    Patient's Name (0010,0010)    Patient ID (0010,0020)
    Patient's Birth Date (0010,0030)  Patient's Sex (0010,0040)
    Study Date (0008,0020)        Study Instance UID (0020,000D)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from dicom_viewer.errors import MalformedDate
from dicom_viewer.tag_reader import TagReader

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_CENTER = 50.0
DEFAULT_WINDOW_WIDTH = 400.0
DEFAULT_PIXEL_SPACING: tuple[float, float] = (1.0, 1.0)
DEFAULT_DIMENSION = 512
DEFAULT_MODALITY = "CT"

_SEX_CODES = {
    "M": "male",
    "MALE": "male",
    "F": "female",
    "FEMALE": "female",
}


@dataclass(frozen=True)
class PatientInfo:
    name: str = ""
    patient_id: str = ""
    birth_date: Optional[date] = None
    # "male" / "female" / "other", or None when the tag is absent
    sex: Optional[str] = None
    age: str = ""


@dataclass(frozen=True)
class StudyInfo:
    study_date: Optional[date] = None
    study_time: str = ""
    description: str = ""
    study_instance_uid: str = ""
    series_instance_uid: str = ""
    series_description: str = ""
    body_part: str = ""
    institution: str = ""
    manufacturer: str = ""
    model_name: str = ""


@dataclass(frozen=True)
class ImageGeometry:
    """Dimensions and calibration needed to decode and render pixels."""
    width: int
    height: int
    bits_allocated: int
    bits_stored: int
    high_bit: int
    samples_per_pixel: int
    photometric_interpretation: str
    pixel_representation: int
    rescale_slope: float
    rescale_intercept: float
    window_center: float
    window_width: float
    # (row spacing, column spacing) in mm, None when the header has none
    pixel_spacing: Optional[tuple[float, float]]
    modality: str


@dataclass(frozen=True)
class DicomMetadata:
    patient: PatientInfo
    study: StudyInfo
    geometry: ImageGeometry


# ---------------------------------------------------------------------------
# Field formatters
# ---------------------------------------------------------------------------

def format_patient_name(raw: str) -> str:
    """
    Reorder a PN value ``LAST^FIRST^MIDDLE`` into ``FIRST LAST``.

    Values without a caret are returned unchanged.  If reordering leaves
    nothing (e.g. ``"^"``) the raw value is kept.
    """
    raw = raw.strip()
    if "^" not in raw:
        return raw
    parts = raw.split("^")
    return f"{parts[1]} {parts[0]}".strip() or raw


def parse_dicom_date(raw: str) -> date:
    """
    Parse a DA value (``YYYYMMDD``) into a calendar date.

    Raises
    ------
    MalformedDate
        If the value is not eight digits forming a real date.
    """
    value = raw.strip()
    if len(value) < 8 or not value[:8].isdigit():
        raise MalformedDate(raw)
    try:
        return datetime.strptime(value[:8], "%Y%m%d").date()
    except ValueError as exc:
        raise MalformedDate(raw) from exc


def _soft_date(raw: Optional[str], field_name: str) -> Optional[date]:
    if not raw:
        return None
    try:
        return parse_dicom_date(raw)
    except MalformedDate as exc:
        logger.warning("%s left unset: %s", field_name, exc)
        return None


def map_sex(raw: Optional[str]) -> Optional[str]:
    """Map a Patient's Sex code; unknown codes become "other", absent stays None."""
    if not raw:
        return None
    return _SEX_CODES.get(raw.strip().upper(), "other")


def parse_pixel_spacing(reader: TagReader) -> Optional[tuple[float, float]]:
    numbers = reader.get_numbers("PixelSpacing")
    if numbers is None:
        return None
    values = [float(v) for v in numbers.values]
    if len(values) == 1:
        # A lone value is taken as isotropic
        values = values * 2
    row, col = values[0], values[1]
    if row <= 0 or col <= 0:
        logger.warning("Ignoring non-positive pixel spacing %r", numbers.values)
        return None
    return row, col


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

def _text(reader: TagReader, keyword: str) -> str:
    return reader.get_string(keyword) or ""


def extract_patient(reader: TagReader) -> PatientInfo:
    return PatientInfo(
        name=format_patient_name(_text(reader, "PatientName")),
        patient_id=_text(reader, "PatientID"),
        birth_date=_soft_date(reader.get_string("PatientBirthDate"), "PatientBirthDate"),
        sex=map_sex(reader.get_string("PatientSex")),
        age=_text(reader, "PatientAge"),
    )


def extract_study(reader: TagReader) -> StudyInfo:
    return StudyInfo(
        study_date=_soft_date(reader.get_string("StudyDate"), "StudyDate"),
        study_time=_text(reader, "StudyTime"),
        description=_text(reader, "StudyDescription"),
        study_instance_uid=_text(reader, "StudyInstanceUID"),
        series_instance_uid=_text(reader, "SeriesInstanceUID"),
        series_description=_text(reader, "SeriesDescription"),
        body_part=_text(reader, "BodyPartExamined"),
        institution=_text(reader, "InstitutionName"),
        manufacturer=_text(reader, "Manufacturer"),
        model_name=_text(reader, "ManufacturerModelName"),
    )


def _first(reader: TagReader, keyword: str, default):
    numbers = reader.get_numbers(keyword)
    if numbers is None:
        return default
    return numbers.first_or_default(default)


def extract_geometry(reader: TagReader) -> ImageGeometry:
    bits_allocated = reader.get_uint16("BitsAllocated") or 16
    bits_stored = reader.get_uint16("BitsStored") or bits_allocated
    high_bit = reader.get_uint16("HighBit")
    if high_bit is None:
        high_bit = bits_stored - 1

    window_width = float(_first(reader, "WindowWidth", DEFAULT_WINDOW_WIDTH))
    if window_width <= 0:
        logger.warning("Window width %s in header is not positive; using %s", window_width, DEFAULT_WINDOW_WIDTH)
        window_width = DEFAULT_WINDOW_WIDTH

    return ImageGeometry(
        width=reader.get_uint16("Columns") or DEFAULT_DIMENSION,
        height=reader.get_uint16("Rows") or DEFAULT_DIMENSION,
        bits_allocated=bits_allocated,
        bits_stored=bits_stored,
        high_bit=high_bit,
        samples_per_pixel=reader.get_uint16("SamplesPerPixel") or 1,
        photometric_interpretation=reader.get_string("PhotometricInterpretation") or "MONOCHROME2",
        pixel_representation=reader.get_uint16("PixelRepresentation") or 0,
        rescale_slope=float(_first(reader, "RescaleSlope", 1.0)),
        rescale_intercept=float(_first(reader, "RescaleIntercept", 0.0)),
        window_center=float(_first(reader, "WindowCenter", DEFAULT_WINDOW_CENTER)),
        window_width=window_width,
        pixel_spacing=parse_pixel_spacing(reader),
        modality=reader.get_string("Modality") or DEFAULT_MODALITY,
    )


def extract_metadata(reader: TagReader) -> DicomMetadata:
    """Read patient, study and geometry blocks from a parsed header."""
    return DicomMetadata(
        patient=extract_patient(reader),
        study=extract_study(reader),
        geometry=extract_geometry(reader),
    )
