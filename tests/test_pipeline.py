"""Smoke tests for dicom_viewer/pipeline.py."""

from unittest.mock import patch

import numpy as np
import pydicom
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian

from dicom_viewer.pipeline import (
    BatchReport,
    build_records_payload,
    decode_batch,
    discover_files,
    is_dicom_candidate,
    load_series,
    process_folder,
)


def _write_dicom(path: str, patient_name: str = "Test^Patient", **attrs) -> None:
    """Write a minimal valid DICOM file to *path*."""
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.2")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.PatientName = patient_name
    ds.PatientID = "99999"
    ds.Modality = "CT"
    ds.Rows = 4
    ds.Columns = 4
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelData = np.zeros((4, 4), dtype=np.uint16).tobytes()
    for key, value in attrs.items():
        setattr(ds, key, value)
    ds.save_as(path)


def _truncate(path: str, n_bytes: int = 10) -> None:
    with open(path, "rb") as f:
        data = f.read()
    with open(path, "wb") as f:
        f.write(data[:-n_bytes])


class TestDiscovery:
    def test_accepted_extensions(self):
        for name in ("a.dcm", "b.DICOM", "c.ct", "d.mri", "e.xray"):
            assert is_dicom_candidate(name)
        assert not is_dicom_candidate("notes.txt")
        assert not is_dicom_candidate("scan")

    def test_missing_folder_returns_empty(self):
        assert discover_files("/nonexistent/path") == []

    def test_sorted_and_filtered(self, tmp_path):
        for name in ("b.dcm", "a.dcm", "readme.txt", ".hidden.dcm"):
            (tmp_path / name).write_bytes(b"")
        assert discover_files(str(tmp_path)) == [str(tmp_path / "a.dcm"), str(tmp_path / "b.dcm")]

    def test_max_files(self, tmp_path):
        for i in range(5):
            (tmp_path / f"scan{i}.dcm").write_bytes(b"")
        assert len(discover_files(str(tmp_path), max_files=2)) == 2


class TestDecodeBatch:
    def test_decodes_in_order(self, tmp_path):
        paths = []
        for name in ("Test^Alice", "Test^Bob"):
            path = str(tmp_path / f"{name[5:]}.dcm")
            _write_dicom(path, name)
            paths.append(path)

        report = decode_batch(paths)
        assert isinstance(report, BatchReport)
        assert (report.total_files, report.decoded, report.failed) == (2, 2, 0)
        assert [img.patient.name for img in report.images] == ["Alice Test", "Bob Test"]
        assert all(r.preview.shape == (4, 4, 4) for r in report.results)

    def test_truncated_file_does_not_stop_batch(self, tmp_path):
        bad = str(tmp_path / "a_bad.dcm")
        good = str(tmp_path / "b_good.dcm")
        _write_dicom(bad)
        _truncate(bad)
        _write_dicom(good, "Doe^Jane")

        report = decode_batch([bad, good])
        assert report.failed == 1
        assert report.decoded == 1
        assert report.results[0].error_type == "MalformedInput"
        assert report.results[0].image is None
        assert report.results[0].preview.shape == (512, 512, 4)
        assert report.results[1].image.patient.name == "Jane Doe"
        assert "a_bad.dcm" in report.summary()

    def test_io_error_recorded(self, tmp_path):
        with patch("dicom_viewer.pipeline.decode_file", side_effect=OSError("disk gone")):
            report = decode_batch([str(tmp_path / "scan.dcm")], render_previews=False)
        assert report.failed == 1
        assert report.results[0].error_type == "OSError"
        assert report.results[0].preview is None

    def test_progress_called_per_file(self, tmp_path):
        paths = []
        for i in range(3):
            path = str(tmp_path / f"scan{i}.dcm")
            _write_dicom(path)
            paths.append(path)

        seen = []
        decode_batch(paths, on_progress=lambda i, r: seen.append((i, r.filename, r.success)))
        assert seen == [(0, "scan0.dcm", True), (1, "scan1.dcm", True), (2, "scan2.dcm", True)]


class TestProcessFolder:
    def test_missing_folder_returns_empty_report(self):
        report = process_folder(input_folder="/nonexistent/path")
        assert report.total_files == 0

    def test_processes_dicom_files(self, tmp_path):
        _write_dicom(str(tmp_path / "scan1.dcm"))
        _write_dicom(str(tmp_path / "scan2.ct"))
        (tmp_path / "notes.txt").write_text("not an image")
        report = process_folder(input_folder=str(tmp_path))
        assert report.total_files == 2
        assert report.decoded == 2

    def test_load_series(self, tmp_path):
        for i in range(3):
            _write_dicom(str(tmp_path / f"scan{i}.dcm"))
        series, report = load_series(discover_files(str(tmp_path)), fps=5)
        assert len(series) == 3
        assert series.fps == 5
        assert series.current is report.images[0]


class TestRecordsPayload:
    def test_payload_from_first_image(self, tmp_path):
        path = str(tmp_path / "scan.dcm")
        _write_dicom(
            path,
            "Doe^John",
            PatientSex="M",
            PatientBirthDate="19800101",
            StudyDate="20230601",
            StudyDescription="Head CT",
            PixelSpacing=[0.5, 0.5],
        )
        report = decode_batch([path], render_previews=False)
        payload = build_records_payload(report.images[0])

        assert payload["patientInfo"]["name"] == "John Doe"
        assert payload["patientInfo"]["patientId"] == "99999"
        assert payload["patientInfo"]["gender"] == "male"
        assert payload["patientInfo"]["dateOfBirth"] == "1980-01-01"
        assert payload["studyInfo"]["studyDate"] == "2023-06-01"
        assert payload["studyInfo"]["studyDescription"] == "Head CT"
        assert payload["modality"] == "CT"
        assert payload["dimensions"] == {"width": 4, "height": 4}
        assert payload["pixelSpacing"] == [0.5, 0.5]

    def test_failed_first_image(self):
        payload = build_records_payload(None)
        assert payload["patientInfo"] == {}
        assert payload["studyInfo"] == {}
        assert payload["modality"] is None
        assert payload["dimensions"] is None
