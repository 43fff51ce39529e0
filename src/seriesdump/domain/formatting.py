from __future__ import annotations

import math
import struct
from datetime import datetime
from typing import TYPE_CHECKING

from .decoding import (
    AnnotationNote, Cell, DecodedColumn, MalformedColumn, OpaqueColumn, SinglePoint, decode_column,
)
from .errors import IllegalDataError, MalformedColumnError, ResolutionError
from .models import Column, KeyLayout, Row
from .rowkey import base_time, decode_row_key, metric_uid, resolve_tags
from .value_types import SECOND_MASK

if TYPE_CHECKING:
    from ..ports.uid import UidResolver


# ---------- scalar rendering --------------------------------------------------

def signed_bytes(b: bytes) -> str:
    """Render bytes as a list of signed values, e.g. [0, -1, 42]."""
    return "[" + ", ".join(str(x - 256 if x > 127 else x) for x in b) + "]"

def human_date(timestamp: int) -> str:
    """Local date for a seconds timestamp, or a milliseconds one if it has bits above 32."""
    seconds = timestamp / 1000 if timestamp & SECOND_MASK else timestamp
    return datetime.fromtimestamp(seconds).astimezone().strftime("%a %b %d %H:%M:%S %Z %Y")

def _float32_text(v: float) -> str:
    """Shortest decimal text that reads back to the same 32-bit float."""
    if math.isnan(v) or math.isinf(v):
        return repr(v)
    for digits in range(1, 10):
        s = f"{v:.{digits}g}"
        try:
            if struct.unpack(">f", struct.pack(">f", float(s)))[0] == v:
                return repr(float(s))
        except OverflowError:
            continue
    return repr(v)

def format_value(cell: Cell) -> str:
    v = cell.parse_value()
    if cell.is_integer:
        return str(v)
    return _float32_text(v) if len(cell.value) == 4 else repr(v)


# ---------- per-cell / per-column lines --------------------------------------

def format_raw_cell(cell: Cell, base_time: int) -> str:
    ts = cell.absolute_timestamp(base_time)
    return (f"{signed_bytes(cell.qualifier)}\t{signed_bytes(cell.value)}\t"
            f"{cell.display_offset(base_time)}\t{'l' if cell.is_integer else 'f'}\t"
            f"{ts}\t({human_date(ts)})")

def format_import_cell(metric: str, cell: Cell, base_time: int, tags: str) -> str:
    return f"{metric} {cell.absolute_timestamp(base_time)} {format_value(cell)}{tags}"

def format_annotation(note: AnnotationNote, base_time: int) -> str:
    ts = note.timestamp(base_time)
    return (f"{signed_bytes(note.qualifier)}\t{signed_bytes(note.value)}\t"
            f"{note.offset_ms // 1000}\t{note.text}\t{ts}\t({human_date(ts)})")

def _where(key: bytes, column: Column | None = None) -> str:
    if column is None:
        return f"row key {signed_bytes(key)}"
    return (f"row key {signed_bytes(key)}, column "
            f"{signed_bytes(column.qualifier)}={signed_bytes(column.value)}")

def _render(decoded: DecodedColumn, *, base_time: int, metric: str, tags: str, import_format: bool) -> str:
    if isinstance(decoded, AnnotationNote):
        return "" if import_format else format_annotation(decoded, base_time)

    if isinstance(decoded, OpaqueColumn):
        return "" if import_format else f"{signed_bytes(decoded.value)}\t[Not a data point]"

    if isinstance(decoded, SinglePoint):
        if import_format:
            return format_import_cell(metric, decoded.cell, base_time, tags)
        return format_raw_cell(decoded.cell, base_time)

    # compacted column
    if import_format:
        return "\n".join(format_import_cell(metric, c, base_time, tags) for c in decoded.cells)
    lines = [f"{signed_bytes(decoded.qualifier)}\t{signed_bytes(decoded.value)}"
             f" = {len(decoded.cells)} values:"]
    lines.extend(f"    {format_raw_cell(c, base_time)}" for c in decoded.cells)
    return "\n".join(lines)

def format_column(column: Column, *, key: bytes, base_time: int, metric: str,
                  tags: str = "", import_format: bool = False) -> str:
    """
    Render one column. Import format yields one line per data point and nothing
    for annotations or other non-point objects. A malformed single point or an
    unparseable value raises IllegalDataError and a malformed compacted column
    raises MalformedColumnError; either way the message names the row and column.
    """
    decoded = decode_column(column)

    if isinstance(decoded, MalformedColumn):
        context = f"{_where(key, column)}: {decoded.reason}"
        if decoded.single:
            raise IllegalDataError(f"Unable to parse row: {context}")
        raise MalformedColumnError(f"Malformed compacted column in {context}")

    try:
        return _render(decoded, base_time=base_time, metric=metric, tags=tags, import_format=import_format)
    except IllegalDataError as e:
        raise type(e)(f"Unable to parse row: {_where(key, column)}: {e}") from e


# ---------------------------- public API --------------------------------------

async def format_row(row: Row, *, uids: "UidResolver", layout: KeyLayout = KeyLayout(),
                     import_format: bool = False) -> str:
    """Render a whole row, newline-terminated, ready to be written and flushed at once."""
    key = row.key
    lines: list[str] = []

    try:
        if import_format:
            series = await decode_row_key(key, uids, layout)
            metric, ts = series.metric, series.base_time
        else:
            metric, ts = await uids.metric_name(metric_uid(key, layout)), base_time(key, layout)
    except (IllegalDataError, ResolutionError) as e:
        raise type(e)(f"{e} ({_where(key)})") from e

    if import_format:
        tags = "".join(f" {k}={v}" for k, v in series.tags)
    else:
        tags = ""
        header = f"{signed_bytes(key)} {metric} {ts} ({human_date(ts)}) "
        try:
            pairs = await resolve_tags(key, uids, layout)
            header += "{" + ", ".join(f"{k}={v}" for k, v in pairs) + "}"
        except (IllegalDataError, ResolutionError) as e:
            header += f"{type(e).__name__}: {e}"
        lines.append(header)

    for column in row.columns:
        text = format_column(column, key=key, base_time=ts, metric=metric,
                             tags=tags, import_format=import_format)
        if text:
            lines.append(text if import_format else "  " + text)

    return "".join(line + "\n" for line in lines)
