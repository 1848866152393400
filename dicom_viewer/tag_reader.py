"""
tag_reader.py - Explicit-VR DICOM tag/length/value walker.

A DICOM file is a flat run of data elements, each one laid out as

    group (2 bytes) | element (2 bytes) | VR (2 chars) | length | value

Most VRs use a 16-bit length right after the VR.  The "long" VRs (OB, OW,
SQ, UN, UT, ...) are followed by two reserved bytes and a 32-bit length.
The file meta group (0002,xxxx) is always Explicit VR Little Endian; the
rest of the dataset uses the transfer syntax named in (0002,0010).

Only the two explicit, uncompressed syntaxes are accepted.  Everything
else is rejected with UnsupportedFormat before any value is read.

The reader records the byte offset and length of every top-level element
and decodes values lazily, on request, through the typed accessors.

References
----------
- DICOM PS3.5 section 7.1.2: Data Element Structure with Explicit VR
- DICOM PS3.10 section 7.1: DICOM File Meta Information
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional, Union

from pydicom.charset import python_encoding
from pydicom.datadict import keyword_for_tag
from pydicom.tag import BaseTag, Tag
from pydicom.uid import (
    UID,
    ExplicitVRBigEndian,
    ExplicitVRLittleEndian,
    ImplicitVRLittleEndian,
)

from dicom_viewer.errors import MalformedInput, UnsupportedFormat

logger = logging.getLogger(__name__)

TagLike = Union[int, str, tuple[int, int]]

PREAMBLE_LENGTH = 128
MAGIC = b"DICM"
UNDEFINED_LENGTH = 0xFFFFFFFF

# Well-known tags used by the reader itself
TRANSFER_SYNTAX_UID = Tag(0x0002, 0x0010)
SPECIFIC_CHARACTER_SET = Tag(0x0008, 0x0005)
PIXEL_DATA = Tag(0x7FE0, 0x0010)

_ITEM = Tag(0xFFFE, 0xE000)
_ITEM_DELIMITER = Tag(0xFFFE, 0xE00D)
_SEQUENCE_DELIMITER = Tag(0xFFFE, 0xE0DD)

# PS3.5 Table 7.1-1: VRs with 2 reserved bytes and a 32-bit length field
VR_LENGTH_32 = frozenset(
    {"OB", "OD", "OF", "OL", "OV", "OW", "SQ", "SV", "UC", "UN", "UR", "UT", "UV"}
)
# PS3.5 Table 7.1-2: VRs with a 16-bit length field
VR_LENGTH_16 = frozenset(
    {
        "AE", "AS", "AT", "CS", "DA", "DS", "DT", "FL", "FD", "IS",
        "LO", "LT", "PN", "SH", "SL", "SS", "ST", "TM", "UI", "UL", "US",
    }
)

# struct codes for fixed-width binary numeric VRs
_BINARY_FORMATS: dict[str, str] = {
    "US": "H",
    "SS": "h",
    "UL": "I",
    "SL": "i",
    "FL": "f",
    "FD": "d",
}


@dataclass(frozen=True)
class Element:
    """Location of one data element's value inside the source buffer."""
    tag: BaseTag
    vr: str
    offset: int
    length: int
    little_endian: bool = True

    @property
    def keyword(self) -> str:
        return keyword_for_tag(self.tag) or str(self.tag)


@dataclass(frozen=True)
class NumericValue:
    """
    A numeric element that may carry one value or several.

    Window Center, Window Width and Pixel Spacing are all allowed to be
    multi-valued.  Callers that only need one number use
    ``first_or_default`` instead of checking the length themselves.
    """
    values: tuple[Union[int, float], ...]

    @property
    def is_multiple(self) -> bool:
        return len(self.values) > 1

    def first_or_default(self, default=None):
        return self.values[0] if self.values else default


def _parse_number(text: str) -> Union[int, float]:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


class TagReader:
    """
    Parse a DICOM byte stream and expose its elements by tag.

    The element walk is done here rather than through pydicom.dcmread so a
    truncated stream raises MalformedInput instead of being read leniently.

    Tags can be passed as ints (``0x00280010``), ``(group, element)``
    tuples or pydicom keywords (``"Rows"``).  Every accessor returns
    ``None`` when the tag is absent so callers can apply their own
    defaults.

    Raises
    ------
    UnsupportedFormat
        Implicit VR, deflated or compressed transfer syntax, or
        encapsulated pixel data.
    MalformedInput
        The buffer ends mid-element or a declared length runs past the
        end of the buffer.
    """

    def __init__(self, buffer: Union[bytes, bytearray, memoryview]):
        self._buffer = bytes(buffer)
        self._elements: dict[BaseTag, Element] = {}
        self._encoding: Optional[str] = None
        self.transfer_syntax: Optional[UID] = None
        self.is_little_endian = True
        self._parse()

    # ------------------------------------------------------------------
    # Structure walking
    # ------------------------------------------------------------------

    def _parse(self) -> None:
        buf = self._buffer
        if not buf:
            raise MalformedInput("Empty buffer")
        pos = 0
        if buf[PREAMBLE_LENGTH:PREAMBLE_LENGTH + 4] == MAGIC:
            pos = PREAMBLE_LENGTH + 4
        elif buf[:4] == MAGIC:
            # Some writers drop the preamble but keep the prefix
            pos = 4

        pos = self._read_file_meta(pos)
        self._resolve_transfer_syntax(pos)
        self._walk(pos, self.is_little_endian)
        logger.debug(
            "Parsed %d elements (%s)", len(self._elements), self.transfer_syntax.name
        )

    def _read_file_meta(self, pos: int) -> int:
        """Walk group 0002, which is always explicit VR little endian."""
        buf = self._buffer
        while pos + 4 <= len(buf):
            (group,) = struct.unpack_from("<H", buf, pos)
            if group != 0x0002:
                break
            pos = self._read_element(pos, little_endian=True)
        return pos

    def _resolve_transfer_syntax(self, pos: int) -> None:
        syntax = self.get_string(TRANSFER_SYNTAX_UID)
        if not syntax:
            if not self._looks_explicit(pos):
                raise UnsupportedFormat(
                    "No file meta information and the dataset is not explicit VR; "
                    "implicit VR streams are not supported"
                )
            logger.debug("No transfer syntax in file meta; assuming explicit VR little endian")
            syntax = ExplicitVRLittleEndian

        uid = UID(syntax)
        if uid == ExplicitVRLittleEndian:
            self.is_little_endian = True
        elif uid == ExplicitVRBigEndian:
            self.is_little_endian = False
        elif uid == ImplicitVRLittleEndian:
            raise UnsupportedFormat("Implicit VR Little Endian is not supported")
        else:
            raise UnsupportedFormat(
                f"Transfer syntax {uid} ({uid.name}) is not supported; "
                "only uncompressed explicit VR little/big endian can be decoded"
            )
        self.transfer_syntax = uid

    def _looks_explicit(self, pos: int) -> bool:
        vr = self._buffer[pos + 4:pos + 6]
        if len(vr) < 2:
            # Nothing after the meta group; let the walker decide
            return True
        return vr.decode("ascii", errors="replace") in VR_LENGTH_16 | VR_LENGTH_32

    def _read_header(self, pos: int, little_endian: bool) -> tuple[BaseTag, Optional[str], int, int]:
        """Return (tag, vr, length, value_offset) for the element at *pos*."""
        buf = self._buffer
        order = "<" if little_endian else ">"
        if pos + 8 > len(buf):
            raise MalformedInput(f"Truncated element header at offset {pos}")

        group, elem = struct.unpack_from(order + "HH", buf, pos)
        tag = Tag(group, elem)

        # Items and delimiters carry no VR, just a 32-bit length
        if group == 0xFFFE:
            (length,) = struct.unpack_from(order + "I", buf, pos + 4)
            return tag, None, length, pos + 8

        vr = buf[pos + 4:pos + 6].decode("ascii", errors="replace")
        if vr in VR_LENGTH_32:
            if pos + 12 > len(buf):
                raise MalformedInput(f"Truncated element header for {tag} at offset {pos}")
            (length,) = struct.unpack_from(order + "I", buf, pos + 8)
            return tag, vr, length, pos + 12
        if vr in VR_LENGTH_16:
            (length,) = struct.unpack_from(order + "H", buf, pos + 6)
            return tag, vr, length, pos + 8

        raise MalformedInput(f"Invalid value representation {vr!r} for {tag} at offset {pos}")

    def _read_element(self, pos: int, little_endian: bool) -> int:
        """Record the element at *pos* and return the offset just past it."""
        tag, vr, length, value_offset = self._read_header(pos, little_endian)

        if length == UNDEFINED_LENGTH:
            if tag == PIXEL_DATA:
                raise UnsupportedFormat("Encapsulated (compressed) pixel data is not supported")
            if vr != "SQ":
                raise UnsupportedFormat(f"Undefined length is not supported for {vr} element {tag}")
            return self._skip_sequence(value_offset, little_endian)

        end = value_offset + length
        if end > len(self._buffer):
            raise MalformedInput(
                f"{keyword_for_tag(tag) or tag} declares {length} bytes but only "
                f"{len(self._buffer) - value_offset} remain"
            )

        # Keep the first occurrence; sequences are skipped, not indexed
        if vr != "SQ" and tag not in self._elements:
            self._elements[tag] = Element(tag, vr, value_offset, length, little_endian)
        return end

    def _walk(self, pos: int, little_endian: bool) -> None:
        while pos < len(self._buffer):
            pos = self._read_element(pos, little_endian)

    def _skip_sequence(self, pos: int, little_endian: bool) -> int:
        """Skip the items of an undefined-length sequence."""
        while True:
            tag, _, length, value_offset = self._read_header(pos, little_endian)
            if tag == _SEQUENCE_DELIMITER:
                return value_offset
            if tag != _ITEM:
                raise MalformedInput(f"Expected a sequence item at offset {pos}, found {tag}")
            if length == UNDEFINED_LENGTH:
                pos = self._skip_item(value_offset, little_endian)
            else:
                pos = self._bounded(value_offset + length, tag)

    def _skip_item(self, pos: int, little_endian: bool) -> int:
        """Skip the elements of an undefined-length item."""
        while True:
            tag, _, length, value_offset = self._read_header(pos, little_endian)
            if tag == _ITEM_DELIMITER:
                return value_offset
            if length == UNDEFINED_LENGTH:
                pos = self._skip_sequence(value_offset, little_endian)
            else:
                pos = self._bounded(value_offset + length, tag)

    def _bounded(self, end: int, tag: BaseTag) -> int:
        if end > len(self._buffer):
            raise MalformedInput(f"{tag} runs past the end of the buffer")
        return end

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def buffer(self) -> bytes:
        return self._buffer

    def __contains__(self, tag: TagLike) -> bool:
        return Tag(tag) in self._elements

    def __len__(self) -> int:
        return len(self._elements)

    def element(self, tag: TagLike) -> Optional[Element]:
        """Return the element header for *tag*, or None if absent."""
        return self._elements.get(Tag(tag))

    def value_bytes(self, tag: TagLike) -> Optional[bytes]:
        """Return the raw value bytes of *tag*, or None if absent."""
        el = self.element(tag)
        if el is None:
            return None
        return self._buffer[el.offset:el.offset + el.length]

    @property
    def encoding(self) -> str:
        """Python codec for text values, from Specific Character Set."""
        if self._encoding is None:
            raw = self.value_bytes(SPECIFIC_CHARACTER_SET) or b""
            term = raw.decode("ascii", errors="replace").split("\\")[0].strip(" \x00")
            self._encoding = python_encoding.get(term, "latin_1")
        return self._encoding

    def get_string(self, tag: TagLike) -> Optional[str]:
        """Decode a text element, trimming padding spaces and NULs."""
        raw = self.value_bytes(tag)
        if raw is None:
            return None
        return raw.decode(self.encoding, errors="replace").strip(" \x00")

    def get_numbers(self, tag: TagLike) -> Optional[NumericValue]:
        """
        Return every numeric value of *tag*.

        Binary VRs (US, SS, UL, SL, FL, FD) are unpacked in the element's
        byte order; DS and IS strings are split on backslash.  Returns
        None when the tag is absent, empty or unparseable.
        """
        el = self.element(tag)
        if el is None:
            return None

        if el.vr in _BINARY_FORMATS:
            code = _BINARY_FORMATS[el.vr]
            count = el.length // struct.calcsize(code)
            order = "<" if el.little_endian else ">"
            values = struct.unpack_from(f"{order}{count}{code}", self._buffer, el.offset)
        else:
            text = self.get_string(tag)
            if not text:
                return None
            try:
                values = tuple(_parse_number(part) for part in text.split("\\") if part.strip())
            except ValueError:
                logger.warning("Could not parse numeric value %r for %s", text, el.keyword)
                return None

        if not values:
            return None
        return NumericValue(tuple(values))

    def get_uint16(self, tag: TagLike) -> Optional[int]:
        """First value of *tag* as an int (US elements, or IS strings)."""
        numbers = self.get_numbers(tag)
        if numbers is None:
            return None
        return int(numbers.first_or_default())

    def get_float_or_int(self, tag: TagLike) -> Optional[Union[int, float]]:
        """First value of a possibly multi-valued numeric element."""
        numbers = self.get_numbers(tag)
        if numbers is None:
            return None
        return numbers.first_or_default()
