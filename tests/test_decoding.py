import struct

import pytest

from seriesdump.domain.decoding import (
    AnnotationNote, Cell, CompactedPoints, MalformedColumn, OpaqueColumn, SinglePoint,
    build_qualifier, decode_column, extract_cells, flags_for,
)
from seriesdump.domain.errors import IllegalDataError, MalformedColumnError
from seriesdump.domain.models import Column
from seriesdump.domain.value_types import FLAG_FLOAT
from tests.helpers.fakes import BASE


def point(offset, value, *, is_float=False, ms=False):
    return Column(build_qualifier(offset, flags_for(value, is_float), milliseconds=ms), value)


def compact(*columns, trailer=b""):
    return Column(b"".join(c.qualifier for c in columns), b"".join(c.value for c in columns) + trailer)


# ---------- single points ----------

def test_second_point():
    d = decode_column(point(10, b"\x2a"))
    assert isinstance(d, SinglePoint)
    assert not d.cell.in_milliseconds
    assert d.cell.absolute_timestamp(BASE) == BASE + 10
    assert d.cell.parse_value() == 42


def test_millisecond_point():
    d = decode_column(point(1500, b"\x00\x07", ms=True))
    assert isinstance(d, SinglePoint)
    assert d.cell.in_milliseconds
    assert d.cell.offset_ms == 1500
    assert d.cell.absolute_timestamp(BASE) == BASE * 1000 + 1500
    assert d.cell.parse_value() == 7


def test_same_instant_differs_by_factor_1000():
    s = decode_column(point(10, b"\x01")).cell
    ms = decode_column(point(10_000, b"\x01", ms=True)).cell
    assert ms.absolute_timestamp(BASE) == s.absolute_timestamp(BASE) * 1000


def test_display_offset_follows_timestamp_unit():
    assert decode_column(point(10, b"\x01")).cell.display_offset(BASE) == 10
    assert decode_column(point(10_000, b"\x01", ms=True)).cell.display_offset(BASE) == 10_000


@pytest.mark.parametrize("value", [b"\xff", b"\xff\xfe", b"\x80\x00\x00\x00", b"\x00" * 7 + b"\x01"])
def test_signed_integers(value):
    cell = decode_column(point(0, value)).cell
    assert cell.is_integer
    assert cell.parse_value() == int.from_bytes(value, "big", signed=True)


def test_floats():
    f32 = decode_column(point(0, struct.pack(">f", 1.5), is_float=True)).cell
    f64 = decode_column(point(0, struct.pack(">d", 0.1), is_float=True)).cell
    assert not f32.is_integer
    assert f32.parse_value() == 1.5
    assert f64.parse_value() == 0.1


def test_legacy_eight_byte_float_is_shortened():
    value = b"\x00\x00\x00\x00" + struct.pack(">f", 2.5)
    d = decode_column(Column(build_qualifier(0, FLAG_FLOAT | 0x3), value))
    assert isinstance(d, SinglePoint)
    assert d.cell.value == struct.pack(">f", 2.5)
    assert d.cell.parse_value() == 2.5


def test_legacy_float_with_garbage_is_malformed():
    value = b"\x00\x00\x00\x01" + struct.pack(">f", 2.5)
    d = decode_column(Column(build_qualifier(0, FLAG_FLOAT | 0x3), value))
    assert isinstance(d, MalformedColumn)
    assert d.single


def test_value_length_mismatch_is_malformed():
    d = decode_column(Column(build_qualifier(0, 0x1), b"\x01"))
    assert isinstance(d, MalformedColumn)
    assert d.single
    assert "declares 2" in d.reason


def test_odd_integer_width_fails_on_parse():
    d = decode_column(Column(build_qualifier(0, 0x2), b"\x00\x00\x01"))
    assert isinstance(d, SinglePoint)
    with pytest.raises(IllegalDataError):
        d.cell.parse_value()


def test_single_point_rebuilds_its_qualifier():
    col = point(3599, b"\x00\x00\x00\x05")
    d = decode_column(col)
    assert build_qualifier(d.cell.offset_ms // 1000, d.cell.flags) == col.qualifier


def test_build_qualifier_range():
    with pytest.raises(ValueError):
        build_qualifier(4096, 0)
    with pytest.raises(ValueError):
        build_qualifier(1 << 22, 0, milliseconds=True)


# ---------- compacted columns ----------

def test_compacted_column():
    col = compact(point(0, b"\x01"), point(10, b"\x00\x02"), point(20, struct.pack(">f", 0.5), is_float=True))
    d = decode_column(col)
    assert isinstance(d, CompactedPoints)
    assert [c.offset_ms for c in d.cells] == [0, 10_000, 20_000]
    assert [c.parse_value() for c in d.cells] == [1, 2, 0.5]
    assert d.flatten() == (col.qualifier, col.value)


def test_compacted_mixed_resolution():
    col = compact(point(1, b"\x01"), point(1500, b"\x02", ms=True))
    d = decode_column(col)
    assert isinstance(d, CompactedPoints)
    assert [c.absolute_timestamp(BASE) for c in d.cells] == [BASE + 1, BASE * 1000 + 1500]
    assert d.flatten() == (col.qualifier, col.value)


@pytest.mark.parametrize("trailer", [b"\x00", b"\x01"])
def test_compacted_trailing_meta_byte(trailer):
    col = compact(point(0, b"\x01"), point(10, b"\x02"), trailer=trailer)
    d = decode_column(col)
    assert isinstance(d, CompactedPoints)
    assert len(d.cells) == 2
    assert d.trailer == trailer
    assert d.flatten() == (col.qualifier, col.value)


def test_compacted_leftover_bytes_are_malformed():
    col = compact(point(0, b"\x01"), point(10, b"\x02"), trailer=b"\x07")
    d = decode_column(col)
    assert isinstance(d, MalformedColumn)
    assert not d.single


def test_compacted_value_overrun():
    col = Column(point(0, b"\x01").qualifier + point(10, b"\x00\x02").qualifier, b"\x01\x00")
    with pytest.raises(MalformedColumnError, match="remain"):
        extract_cells(col)


def test_truncated_millisecond_sub_qualifier():
    col = Column(point(0, b"\x01").qualifier + b"\xf0\x00", b"\x01\x02")
    with pytest.raises(MalformedColumnError, match="truncated"):
        extract_cells(col)


# ---------- non-point columns ----------

def test_annotation_is_never_a_number():
    d = decode_column(Column(b"\x01\x00\xa0", b'{"description":"deploy"}'))
    assert isinstance(d, AnnotationNote)
    assert d.offset_ms == 10_000
    assert d.timestamp(BASE) == BASE + 10
    assert d.text == '{"description":"deploy"}'


def test_millisecond_annotation():
    q = b"\x01" + build_qualifier(1500, 0, milliseconds=True)
    d = decode_column(Column(q, b"x"))
    assert isinstance(d, AnnotationNote)
    assert d.in_milliseconds
    assert d.timestamp(BASE) == BASE * 1000 + 1500


def test_bare_annotation_prefix():
    d = decode_column(Column(b"\x01", b"note"))
    assert isinstance(d, AnnotationNote)
    assert d.offset_ms == 0
    assert d.timestamp(BASE) == BASE


def test_other_odd_qualifier_is_opaque():
    d = decode_column(Column(b"\x02\x00\x00", b"\x00\x01"))
    assert isinstance(d, OpaqueColumn)


def test_cell_flags():
    cell = Cell(build_qualifier(5, FLAG_FLOAT | 0x7), b"\x00" * 8)
    assert cell.value_length == 8
    assert not cell.is_integer
