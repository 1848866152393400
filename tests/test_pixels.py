"""Tests for dicom_viewer/pixels.py."""

import numpy as np
import pydicom
import pytest
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian

from conftest import build_dicom, image_elements, us
from dicom_viewer.errors import (
    MalformedInput,
    MissingPixelData,
    UnsupportedBitDepth,
    UnsupportedFormat,
)
from dicom_viewer.pixels import decode_bytes, decode_file, rescale, sample_dtype


def _write_dicom(path: str, pixels: np.ndarray, **attrs) -> None:
    """Write a minimal 16-bit DICOM file holding *pixels* to *path*."""
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.2")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.Modality = "CT"
    ds.Rows, ds.Columns = pixels.shape
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelData = pixels.astype(np.uint16).tobytes()
    for key, value in attrs.items():
        setattr(ds, key, value)
    ds.save_as(path)


def _with_replaced(pixels, tag, replacement):
    """image_elements() with the element at *tag* swapped for *replacement*."""
    return [
        replacement if (e[0], e[1]) == tag else e
        for e in image_elements(pixels)
    ]


class TestRescale:
    def test_known_conversion(self):
        raw = np.array([0, 100, 200, 1000], dtype=np.uint16)
        np.testing.assert_array_almost_equal(rescale(raw, 1.0, -1024.0), raw - 1024.0)

    def test_default_slope_intercept(self):
        raw = np.array([5, 10], dtype=np.int16)
        np.testing.assert_array_equal(rescale(raw), raw.astype(np.float64))

    def test_sample_dtype(self):
        assert sample_dtype(16, signed=True, little_endian=False) == np.dtype(">i2")
        assert sample_dtype(8, signed=False, little_endian=True) == np.dtype("u1")

    def test_sample_dtype_rejects_12_bit(self):
        with pytest.raises(UnsupportedBitDepth):
            sample_dtype(12, signed=False, little_endian=True)


class TestDecodeBytes:
    def test_pydicom_written_file(self, tmp_path):
        pixels = np.arange(12, dtype=np.uint16).reshape(3, 4)
        path = str(tmp_path / "slice.dcm")
        _write_dicom(
            path,
            pixels,
            PatientName="Doe^Jane",
            RescaleSlope=2.0,
            RescaleIntercept=-10.0,
            WindowCenter=40.0,
            WindowWidth=80.0,
            PixelSpacing=[0.5, 0.75],
        )
        image = decode_file(path)
        assert (image.width, image.height) == (4, 3)
        assert image.window_center_default == 40.0
        assert image.window_width_default == 80.0
        assert image.pixel_spacing == (0.5, 0.75)
        assert image.patient.name == "Jane Doe"
        np.testing.assert_array_almost_equal(
            image.calibrated_samples, pixels.ravel() * 2.0 - 10.0
        )

    def test_samples_are_read_only(self, dicom_bytes):
        image = decode_bytes(dicom_bytes(np.zeros((2, 2), dtype=np.uint16)))
        with pytest.raises(ValueError):
            image.calibrated_samples[0] = 1.0
        assert image.as_grid().shape == (2, 2)

    def test_signed_16_bit(self, dicom_bytes):
        pixels = np.array([[-1000, -1], [0, 1200]], dtype=np.int16)
        image = decode_bytes(dicom_bytes(pixels, signed=True))
        assert image.is_signed
        np.testing.assert_array_equal(image.calibrated_samples, [-1000, -1, 0, 1200])

    def test_big_endian_samples_are_swapped(self, dicom_bytes):
        pixels = np.array([[1, 256], [4095, 513]], dtype=np.uint16)
        image = decode_bytes(dicom_bytes(pixels, big_endian=True))
        np.testing.assert_array_equal(image.calibrated_samples, [1, 256, 4095, 513])

    def test_big_endian_signed(self, dicom_bytes):
        pixels = np.array([[-2, 300]], dtype=np.int16)
        image = decode_bytes(dicom_bytes(pixels, big_endian=True, signed=True))
        np.testing.assert_array_equal(image.calibrated_samples, [-2, 300])

    def test_unsigned_8_bit(self, dicom_bytes):
        pixels = np.array([[0, 128], [200, 255]], dtype=np.uint8)
        image = decode_bytes(dicom_bytes(pixels))
        assert image.bits_allocated == 8
        np.testing.assert_array_equal(image.calibrated_samples, [0, 128, 200, 255])

    def test_signed_8_bit(self, dicom_bytes):
        pixels = np.array([[-128, -1, 0, 127]], dtype=np.int8)
        image = decode_bytes(dicom_bytes(pixels, signed=True))
        np.testing.assert_array_equal(image.calibrated_samples, [-128, -1, 0, 127])

    def test_odd_8_bit_padding_trimmed(self):
        elements = _with_replaced(
            np.array([[1, 2, 3]], dtype=np.uint8),
            (0x7FE0, 0x0010),
            (0x7FE0, 0x0010, "OB", b"\x01\x02\x03\x00"),
        )
        image = decode_bytes(build_dicom(elements))
        np.testing.assert_array_equal(image.calibrated_samples, [1, 2, 3])

    def test_decoding_twice_is_identical(self, dicom_bytes):
        rng = np.random.default_rng(7)
        buffer = dicom_bytes(rng.integers(0, 4096, size=(8, 8)).astype(np.uint16))
        first = decode_bytes(buffer)
        second = decode_bytes(buffer)
        assert first.calibrated_samples.tobytes() == second.calibrated_samples.tobytes()


class TestDecodeErrors:
    def test_missing_pixel_data(self):
        elements = [e for e in image_elements(np.zeros((2, 2), dtype=np.uint16)) if e[0] != 0x7FE0]
        with pytest.raises(MissingPixelData):
            decode_bytes(build_dicom(elements))

    def test_unsupported_bit_depth(self):
        elements = _with_replaced(
            np.zeros((2, 2), dtype=np.uint16),
            (0x0028, 0x0100),
            (0x0028, 0x0100, "US", us(32)),
        )
        with pytest.raises(UnsupportedBitDepth, match="32"):
            decode_bytes(build_dicom(elements))

    def test_sample_count_mismatch(self):
        elements = _with_replaced(
            np.zeros((2, 2), dtype=np.uint16),
            (0x0028, 0x0010),
            (0x0028, 0x0010, "US", us(3)),
        )
        with pytest.raises(MalformedInput, match="expected"):
            decode_bytes(build_dicom(elements))

    def test_truncated_pixel_data(self, dicom_bytes):
        buffer = dicom_bytes(np.zeros((4, 4), dtype=np.uint16))
        with pytest.raises(MalformedInput):
            decode_bytes(buffer[:-10])

    def test_multi_sample_rejected(self):
        elements = _with_replaced(
            np.zeros((2, 2), dtype=np.uint16),
            (0x0028, 0x0002),
            (0x0028, 0x0002, "US", us(3)),
        )
        with pytest.raises(UnsupportedFormat):
            decode_bytes(build_dicom(elements))


class TestDecodeFile:
    def test_reads_from_disk(self, tmp_path, dicom_bytes):
        path = tmp_path / "scan.dcm"
        path.write_bytes(dicom_bytes(np.full((2, 2), 7, dtype=np.uint16)))
        image = decode_file(str(path))
        assert image.source == str(path)
        np.testing.assert_array_equal(image.calibrated_samples, [7, 7, 7, 7])

    def test_missing_file_raises_os_error(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            decode_file(str(tmp_path / "absent.dcm"))
