"""
pixels.py - Pixel Data decoding and rescale to calibrated intensity.

Stored pixel values are plain integers.  Their meaning depends on three
header fields:

    Bits Allocated (0028,0100)       8 or 16 bits per sample
    Pixel Representation (0028,0103) 0 = unsigned, 1 = two's complement
    Transfer Syntax (0002,0010)      little or big endian byte order

Once reinterpreted, the modality LUT maps them to physical units
(Hounsfield Units for CT):

    calibrated = stored * RescaleSlope + RescaleIntercept

The decoded samples are owned by the DecodedImage and exposed read-only,
so the renderer and the measurement tools can share them safely.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from dicom_viewer.errors import (
    MalformedInput,
    MissingPixelData,
    UnsupportedBitDepth,
    UnsupportedFormat,
)
from dicom_viewer.metadata import (
    DEFAULT_PIXEL_SPACING,
    ImageGeometry,
    PatientInfo,
    StudyInfo,
    extract_metadata,
)
from dicom_viewer.tag_reader import PIXEL_DATA, TagReader

logger = logging.getLogger(__name__)

SUPPORTED_BIT_DEPTHS = (8, 16)


@dataclass(frozen=True, eq=False)
class DecodedImage:
    """One decoded grayscale slice.  Immutable once created."""
    width: int
    height: int
    bits_allocated: int
    bits_stored: int
    high_bit: int
    pixel_representation: int
    samples_per_pixel: int
    photometric_interpretation: str
    rescale_slope: float
    rescale_intercept: float
    window_center_default: float
    window_width_default: float
    pixel_spacing: Optional[tuple[float, float]]
    modality: str
    calibrated_samples: np.ndarray
    patient: PatientInfo
    study: StudyInfo
    source: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return self.pixel_representation == 1

    @property
    def spacing(self) -> tuple[float, float]:
        """(row, column) spacing in mm, 1.0/1.0 when the header has none."""
        return self.pixel_spacing or DEFAULT_PIXEL_SPACING

    def as_grid(self) -> np.ndarray:
        """Read-only (height, width) view of the calibrated samples."""
        return self.calibrated_samples.reshape(self.height, self.width)


def sample_dtype(bits_allocated: int, signed: bool, little_endian: bool) -> np.dtype:
    """numpy dtype matching the stored sample layout."""
    if bits_allocated not in SUPPORTED_BIT_DEPTHS:
        raise UnsupportedBitDepth(bits_allocated)
    kind = "i" if signed else "u"
    order = "<" if little_endian else ">"
    return np.dtype(f"{order}{kind}{bits_allocated // 8}")


def rescale(
    raw: np.ndarray,
    slope: float = 1.0,
    intercept: float = 0.0,
) -> np.ndarray:
    """
    Apply the modality rescale to stored sample values.

    Parameters
    ----------
    raw : np.ndarray
        Stored integer samples, any byte order.
    slope : float
        RescaleSlope from the header (default 1.0).
    intercept : float
        RescaleIntercept from the header (default 0.0).

    Returns
    -------
    np.ndarray
        Native-order float64 array, same shape as *raw*.
    """
    return raw.astype(np.float64) * slope + intercept


def decode_pixels(reader: TagReader, geometry: ImageGeometry) -> np.ndarray:
    """
    Slice the Pixel Data element and return calibrated, read-only samples.

    Raises
    ------
    MissingPixelData
        No (7FE0,0010) element.
    UnsupportedBitDepth
        Bits Allocated outside {8, 16}.
    UnsupportedFormat
        More than one sample per pixel.
    MalformedInput
        Sample count does not equal width * height.
    """
    raw = reader.value_bytes(PIXEL_DATA)
    if raw is None:
        raise MissingPixelData("Pixel data not found in DICOM file")

    dtype = sample_dtype(
        geometry.bits_allocated,
        signed=geometry.pixel_representation == 1,
        little_endian=reader.is_little_endian,
    )
    if geometry.samples_per_pixel != 1:
        raise UnsupportedFormat(
            f"Only single-sample grayscale is supported, got {geometry.samples_per_pixel} "
            f"samples per pixel ({geometry.photometric_interpretation})"
        )

    expected = geometry.width * geometry.height
    if geometry.bits_allocated == 8 and len(raw) == expected + 1:
        # Odd-length 8-bit data is padded to an even length with one byte
        raw = raw[:expected]
    if len(raw) % dtype.itemsize:
        raise MalformedInput(
            f"Pixel data length {len(raw)} is not a multiple of {dtype.itemsize} bytes"
        )

    stored = np.frombuffer(raw, dtype=dtype)
    if stored.size != expected:
        raise MalformedInput(
            f"Pixel data holds {stored.size} samples, expected "
            f"{geometry.width}x{geometry.height}={expected}"
        )

    calibrated = rescale(stored, geometry.rescale_slope, geometry.rescale_intercept)
    calibrated.setflags(write=False)
    logger.debug(
        "Decoded %d samples (%s, slope=%s, intercept=%s)",
        calibrated.size, dtype.str, geometry.rescale_slope, geometry.rescale_intercept,
    )
    return calibrated


def decode_bytes(
    buffer: Union[bytes, bytearray, memoryview],
    source: Optional[str] = None,
) -> DecodedImage:
    """
    Decode a complete DICOM byte stream into a DecodedImage.

    Parameters
    ----------
    buffer : bytes-like
        Raw file contents.
    source : str, optional
        Where the bytes came from, kept for log messages and reports.

    Raises
    ------
    DicomDecodeError
        Any of MalformedInput, UnsupportedFormat, UnsupportedBitDepth,
        MissingPixelData.
    """
    reader = TagReader(buffer)
    meta = extract_metadata(reader)
    geometry = meta.geometry
    samples = decode_pixels(reader, geometry)

    return DecodedImage(
        width=geometry.width,
        height=geometry.height,
        bits_allocated=geometry.bits_allocated,
        bits_stored=geometry.bits_stored,
        high_bit=geometry.high_bit,
        pixel_representation=geometry.pixel_representation,
        samples_per_pixel=geometry.samples_per_pixel,
        photometric_interpretation=geometry.photometric_interpretation,
        rescale_slope=geometry.rescale_slope,
        rescale_intercept=geometry.rescale_intercept,
        window_center_default=geometry.window_center,
        window_width_default=geometry.window_width,
        pixel_spacing=geometry.pixel_spacing,
        modality=geometry.modality,
        calibrated_samples=samples,
        patient=meta.patient,
        study=meta.study,
        source=source,
    )


def decode_file(path: str) -> DecodedImage:
    """Read *path* and decode it.  I/O errors propagate unchanged."""
    with open(path, "rb") as f:
        data = f.read()
    image = decode_bytes(data, source=str(path))
    logger.info(
        "Decoded %s: %dx%d, %d-bit %s, modality %s",
        path, image.width, image.height, image.bits_allocated,
        "signed" if image.is_signed else "unsigned", image.modality,
    )
    return image
