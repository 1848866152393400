"""Byte-level DICOM builders shared by the test modules."""

import struct

import numpy as np
import pytest
from pydicom.uid import ExplicitVRBigEndian, ExplicitVRLittleEndian

_LONG_VRS = {"OB", "OD", "OF", "OL", "OV", "OW", "SQ", "SV", "UC", "UN", "UR", "UT", "UV"}


def encode_element(group: int, elem: int, vr: str, value, little_endian: bool = True) -> bytes:
    """Encode one explicit-VR element.  *value* is bytes or a str."""
    order = "<" if little_endian else ">"
    if isinstance(value, str):
        data = value.encode("latin-1")
        if len(data) % 2:
            data += b"\0" if vr == "UI" else b" "
    else:
        data = bytes(value)

    header = struct.pack(order + "HH", group, elem) + vr.encode("ascii")
    if vr in _LONG_VRS:
        header += b"\0\0" + struct.pack(order + "I", len(data))
    else:
        header += struct.pack(order + "H", len(data))
    return header + data


def us(value: int, little_endian: bool = True) -> bytes:
    return struct.pack("<H" if little_endian else ">H", value)


def build_dicom(elements, transfer_syntax=ExplicitVRLittleEndian, preamble: bool = True) -> bytes:
    """
    Assemble a DICOM stream from ``(group, elem, vr, value)`` tuples.

    The meta group is written little endian; the dataset uses the byte
    order of *transfer_syntax*.  Pass ``transfer_syntax=None`` to omit
    the meta group entirely.
    """
    out = b""
    if preamble:
        out += b"\0" * 128 + b"DICM"
    if transfer_syntax is not None:
        out += encode_element(0x0002, 0x0010, "UI", str(transfer_syntax))
    little = transfer_syntax != ExplicitVRBigEndian
    for group, elem, vr, value in sorted(elements, key=lambda e: (e[0], e[1])):
        out += encode_element(group, elem, vr, value, little)
    return out


def image_elements(
    pixels: np.ndarray,
    little_endian: bool = True,
    signed: bool = False,
    extra=(),
):
    """Element list for a grayscale image holding *pixels*."""
    height, width = pixels.shape
    bits = pixels.dtype.itemsize * 8
    order = "<" if little_endian else ">"
    kind = "i" if signed else "u"
    pixel_bytes = pixels.astype(f"{order}{kind}{bits // 8}").tobytes()

    elements = [
        (0x0028, 0x0002, "US", us(1, little_endian)),
        (0x0028, 0x0004, "CS", "MONOCHROME2"),
        (0x0028, 0x0010, "US", us(height, little_endian)),
        (0x0028, 0x0011, "US", us(width, little_endian)),
        (0x0028, 0x0100, "US", us(bits, little_endian)),
        (0x0028, 0x0103, "US", us(1 if signed else 0, little_endian)),
        (0x7FE0, 0x0010, "OW" if bits == 16 else "OB", pixel_bytes),
    ]
    return elements + list(extra)


@pytest.fixture
def dicom_bytes():
    """Factory: ``dicom_bytes(pixels, big_endian=False, signed=False, extra=())``."""

    def _build(pixels: np.ndarray, big_endian: bool = False, signed: bool = False, extra=(), preamble=True):
        syntax = ExplicitVRBigEndian if big_endian else ExplicitVRLittleEndian
        return build_dicom(
            image_elements(pixels, little_endian=not big_endian, signed=signed, extra=extra),
            transfer_syntax=syntax,
            preamble=preamble,
        )

    return _build


def make_image(samples, window_center=50.0, window_width=400.0, pixel_spacing=None, source=None):
    """DecodedImage built straight from calibrated samples, skipping the decoder."""
    from dicom_viewer.metadata import PatientInfo, StudyInfo
    from dicom_viewer.pixels import DecodedImage

    grid = np.asarray(samples, dtype=np.float64)
    height, width = grid.shape
    flat = grid.ravel().copy()
    flat.setflags(write=False)
    return DecodedImage(
        width=width,
        height=height,
        bits_allocated=16,
        bits_stored=16,
        high_bit=15,
        pixel_representation=1,
        samples_per_pixel=1,
        photometric_interpretation="MONOCHROME2",
        rescale_slope=1.0,
        rescale_intercept=0.0,
        window_center_default=window_center,
        window_width_default=window_width,
        pixel_spacing=pixel_spacing,
        modality="CT",
        calibrated_samples=flat,
        patient=PatientInfo(),
        study=StudyInfo(),
        source=source,
    )
