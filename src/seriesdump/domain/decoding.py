from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Union

from .errors import IllegalDataError, MalformedColumnError
from .models import Column
from .value_types import (
    ANNOTATION_PREFIX, COMPACT_TRAILERS, FLAG_BITS, FLAG_FLOAT, FLAGS_MASK, LENGTH_MASK,
    MS_BYTE_FLAG, MS_FLAG, MS_FLAG_BITS, MS_OFFSET_MASK, SECOND_MASK,
)


# ---------- qualifier helpers -------------------------------------------------

def in_milliseconds(qualifier: bytes, offset: int = 0) -> bool:
    return (qualifier[offset] & MS_BYTE_FLAG) == MS_BYTE_FLAG

def offset_ms(qualifier: bytes, offset: int = 0) -> int:
    """Offset from the row base time, always in milliseconds."""
    if in_milliseconds(qualifier, offset):
        raw = int.from_bytes(qualifier[offset:offset + 4], "big")
        return (raw & MS_OFFSET_MASK) >> MS_FLAG_BITS
    return (int.from_bytes(qualifier[offset:offset + 2], "big") >> FLAG_BITS) * 1000

def qualifier_flags(qualifier: bytes, offset: int = 0) -> int:
    if in_milliseconds(qualifier, offset):
        return qualifier[offset + 3] & FLAGS_MASK
    return qualifier[offset + 1] & FLAGS_MASK

def value_length(flags: int) -> int:
    return (flags & LENGTH_MASK) + 1

def build_qualifier(offset: int, flags: int, milliseconds: bool = False) -> bytes:
    """Encode a point qualifier; `offset` is seconds, or milliseconds when `milliseconds`."""
    if milliseconds:
        if not 0 <= offset < (1 << 22):
            raise ValueError(f"millisecond offset out of range: {offset}")
        return (MS_FLAG | (offset << MS_FLAG_BITS) | (flags & FLAGS_MASK)).to_bytes(4, "big")
    if not 0 <= offset < (1 << 12):
        raise ValueError(f"second offset out of range: {offset}")
    return ((offset << FLAG_BITS) | (flags & FLAGS_MASK)).to_bytes(2, "big")

def flags_for(value: bytes, is_float: bool = False) -> int:
    return ((len(value) - 1) & LENGTH_MASK) | (FLAG_FLOAT if is_float else 0)

def fix_floating_point_value(flags: int, value: bytes) -> bytes:
    """Old writers stored 4-byte floats as 8 bytes with 4 leading zeros; keep the last 4."""
    if flags & FLAG_FLOAT and (flags & LENGTH_MASK) == 0x3 and len(value) == 8:
        if value[:4] == b"\x00\x00\x00\x00":
            return value[4:]
        raise IllegalDataError(f"Corrupted floating point value: {list(value)}")
    return value


# ---------- cells -------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class Cell:
    qualifier: bytes
    value: bytes

    @property
    def in_milliseconds(self) -> bool: return in_milliseconds(self.qualifier)
    @property
    def offset_ms(self) -> int: return offset_ms(self.qualifier)
    @property
    def flags(self) -> int: return qualifier_flags(self.qualifier)
    @property
    def is_integer(self) -> bool: return not self.flags & FLAG_FLOAT
    @property
    def value_length(self) -> int: return value_length(self.flags)

    def absolute_timestamp(self, base_time: int) -> int:
        if self.in_milliseconds:
            return base_time * 1000 + self.offset_ms
        return base_time + self.offset_ms // 1000

    def display_offset(self, base_time: int) -> int:
        # presentation only: seconds unless the timestamp is in milliseconds
        if self.absolute_timestamp(base_time) & SECOND_MASK:
            return self.offset_ms
        return self.offset_ms // 1000

    def parse_value(self) -> int | float:
        n = len(self.value)
        if self.is_integer:
            if n not in (1, 2, 4, 8):
                raise IllegalDataError(f"Invalid integer value length {n}: {list(self.value)}")
            return int.from_bytes(self.value, "big", signed=True)
        if n == 4:
            return struct.unpack(">f", self.value)[0]
        if n == 8:
            return struct.unpack(">d", self.value)[0]
        raise IllegalDataError(f"Invalid floating point value length {n}: {list(self.value)}")


# ---------- decoded column variants ------------------------------------------

@dataclass(slots=True, frozen=True)
class SinglePoint:
    qualifier: bytes
    value: bytes
    cell: Cell

@dataclass(slots=True, frozen=True)
class CompactedPoints:
    qualifier: bytes
    value: bytes
    cells: tuple[Cell, ...]
    trailer: bytes = b""

    def flatten(self) -> tuple[bytes, bytes]:
        """Re-join the cells into (qualifier, value) buffers."""
        return (b"".join(c.qualifier for c in self.cells),
                b"".join(c.value for c in self.cells) + self.trailer)

@dataclass(slots=True, frozen=True)
class AnnotationNote:
    qualifier: bytes
    value: bytes

    @property
    def in_milliseconds(self) -> bool:
        return len(self.qualifier) >= 5

    @property
    def offset_ms(self) -> int:
        # the offset follows the prefix byte; a bare prefix carries none
        body = self.qualifier[1:]
        if len(body) >= 4:
            return (int.from_bytes(body[:4], "big") & MS_OFFSET_MASK) >> MS_FLAG_BITS
        if len(body) >= 2:
            return (int.from_bytes(body[:2], "big") >> FLAG_BITS) * 1000
        return 0

    def timestamp(self, base_time: int) -> int:
        if self.in_milliseconds:
            return base_time * 1000 + self.offset_ms
        return base_time + self.offset_ms // 1000

    @property
    def text(self) -> str:
        return self.value.decode("iso-8859-1")

@dataclass(slots=True, frozen=True)
class OpaqueColumn:
    qualifier: bytes
    value: bytes

@dataclass(slots=True, frozen=True)
class MalformedColumn:
    qualifier: bytes
    value: bytes
    reason: str
    single: bool

DecodedColumn = Union[SinglePoint, CompactedPoints, AnnotationNote, OpaqueColumn, MalformedColumn]


# ---------------------------- public API --------------------------------------

def is_single_point(qualifier: bytes) -> bool:
    return len(qualifier) == 2 or (len(qualifier) == 4 and in_milliseconds(qualifier))

def extract_cells(column: Column) -> tuple[tuple[Cell, ...], bytes]:
    """
    Peel sub-qualifiers and sub-values off a compacted column, in stored order.
    Returns (cells, trailer). Both buffers must be consumed exactly, save for one
    trailing compaction metadata byte. Anything else raises MalformedColumnError.
    """
    q, v = column.qualifier, column.value
    if not q:
        raise MalformedColumnError("empty qualifier")
    cells: list[Cell] = []
    qi = vi = 0
    while qi < len(q):
        width = 4 if in_milliseconds(q, qi) else 2
        if qi + width > len(q):
            raise MalformedColumnError(
                f"truncated sub-qualifier at byte {qi} of a {len(q)}-byte qualifier")
        sub_q = q[qi:qi + width]
        qi += width
        vlen = value_length(qualifier_flags(sub_q))
        if vi + vlen > len(v):
            raise MalformedColumnError(
                f"cell #{len(cells)} declares {vlen} value bytes but only {len(v) - vi} remain")
        cells.append(Cell(sub_q, v[vi:vi + vlen]))
        vi += vlen
    rest = v[vi:]
    if rest and not (len(rest) == 1 and rest[0] in COMPACT_TRAILERS):
        raise MalformedColumnError(
            f"{len(rest)} value bytes left over after {len(cells)} cells")
    return tuple(cells), rest

def _decode_single(column: Column) -> SinglePoint | MalformedColumn:
    q = column.qualifier
    flags = qualifier_flags(q)
    try:
        v = fix_floating_point_value(flags, column.value)
    except IllegalDataError as e:
        return MalformedColumn(q, column.value, str(e), single=True)
    if len(v) != value_length(flags):
        return MalformedColumn(
            q, column.value,
            f"value is {len(v)} bytes but the qualifier declares {value_length(flags)}",
            single=True)
    return SinglePoint(q, column.value, Cell(q, v))

def decode_column(column: Column) -> DecodedColumn:
    """
    Classify a column by qualifier shape and decode it:
    odd length -> annotation or opaque object; 2 bytes (or 4 with the ms nibble)
    -> single point; anything else -> compacted column.
    """
    q = column.qualifier
    if len(q) % 2:
        if q[0] == ANNOTATION_PREFIX:
            return AnnotationNote(q, column.value)
        return OpaqueColumn(q, column.value)
    if is_single_point(q):
        return _decode_single(column)
    try:
        cells, trailer = extract_cells(column)
    except MalformedColumnError as e:
        return MalformedColumn(q, column.value, str(e), single=False)
    return CompactedPoints(q, column.value, cells, trailer)
