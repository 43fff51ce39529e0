from __future__ import annotations
from typing import TYPE_CHECKING

from .errors import IllegalDataError
from .models import KeyLayout, SeriesKey
from .value_types import MetricUID

if TYPE_CHECKING:
    from ..ports.uid import UidResolver

_DEFAULT_LAYOUT = KeyLayout()


def metric_uid(key: bytes, layout: KeyLayout = _DEFAULT_LAYOUT) -> MetricUID:
    return MetricUID(key[:layout.metric_width])

def base_time(key: bytes, layout: KeyLayout = _DEFAULT_LAYOUT) -> int:
    """Base timestamp (seconds) of the row; unsigned big-endian after the metric UID."""
    return int.from_bytes(key[layout.metric_width:layout.prefix_width], "big")

def split_row_key(key: bytes, layout: KeyLayout = _DEFAULT_LAYOUT) -> tuple[bytes, int, list[tuple[bytes, bytes]]]:
    """
    Split a raw row key into (metric uid, base time, [(tagk uid, tagv uid), ...]).
    Tag pairs are fixed width and contiguous after the metric+timestamp prefix.
    """
    if len(key) < layout.prefix_width:
        raise IllegalDataError(f"Row key too short ({len(key)} bytes): {key!r}")
    tail = len(key) - layout.prefix_width
    if tail % layout.tag_width:
        raise IllegalDataError(
            f"Row key tag section is {tail} bytes, not a multiple of {layout.tag_width}: {key!r}")
    tags: list[tuple[bytes, bytes]] = []
    for i in range(layout.prefix_width, len(key), layout.tag_width):
        tags.append((key[i:i + layout.tagk_width], key[i + layout.tagk_width:i + layout.tag_width]))
    return metric_uid(key, layout), base_time(key, layout), tags


async def resolve_tags(key: bytes, uids: "UidResolver",
                       layout: KeyLayout = _DEFAULT_LAYOUT) -> list[tuple[str, str]]:
    """Resolve every tag pair of the key, in row-key order. Unknown UIDs raise ResolutionError."""
    _, _, pairs = split_row_key(key, layout)
    return [await uids.tag_pair(k, v) for k, v in pairs]

async def decode_row_key(key: bytes, uids: "UidResolver",
                         layout: KeyLayout = _DEFAULT_LAYOUT) -> SeriesKey:
    m_uid, ts, _ = split_row_key(key, layout)
    metric = await uids.metric_name(m_uid)
    tags = await resolve_tags(key, uids, layout)
    return SeriesKey(metric=metric, base_time=ts, tags=tuple(tags))
