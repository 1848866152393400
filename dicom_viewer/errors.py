"""
errors.py - Exceptions raised while decoding DICOM byte streams.

Every per-file decode failure derives from DicomDecodeError so the batch
loader can catch a single type, record the message and move on to the
next file.  MalformedDate is the odd one out: the metadata extractor
catches it itself and leaves the field unset.
"""


class DicomDecodeError(Exception):
    """Base class for errors that abort the decode of one file."""


class MalformedInput(DicomDecodeError):
    """The byte stream is truncated or a declared length runs past its end."""


class UnsupportedFormat(DicomDecodeError):
    """Implicit VR, deflated or compressed transfer syntax."""


class UnsupportedBitDepth(DicomDecodeError):
    """Bits Allocated is something other than 8 or 16."""

    def __init__(self, bits_allocated: int):
        super().__init__(f"Unsupported bits allocated: {bits_allocated}")
        self.bits_allocated = bits_allocated


class MissingPixelData(DicomDecodeError):
    """No (7FE0,0010) Pixel Data element in the dataset."""


class MalformedDate(ValueError):
    """A DA value that is not a valid YYYYMMDD calendar date."""

    def __init__(self, value: str):
        super().__init__(f"Malformed DICOM date: {value!r}")
        self.value = value
