from __future__ import annotations
from dataclasses import dataclass
from .value_types import (
    MAX_TIMESPAN, METRICS_WIDTH, TAG_NAME_WIDTH, TAG_VALUE_WIDTH, TIMESTAMP_BYTES, Status,
)

@dataclass(slots=True, frozen=True)
class KeyLayout:
    metric_width: int = METRICS_WIDTH
    tagk_width: int = TAG_NAME_WIDTH
    tagv_width: int = TAG_VALUE_WIDTH
    timestamp_bytes: int = TIMESTAMP_BYTES

    @property
    def prefix_width(self) -> int: return self.metric_width + self.timestamp_bytes
    @property
    def tag_width(self) -> int: return self.tagk_width + self.tagv_width

@dataclass(slots=True, frozen=True)
class Column:
    qualifier: bytes
    value: bytes

@dataclass(slots=True, frozen=True)
class Row:
    key: bytes
    columns: tuple[Column, ...]

    def merge(self, other: "Row") -> "Row":
        """Join two halves of a row split across scanner pages."""
        return Row(key=self.key, columns=self.columns + other.columns)

@dataclass(slots=True, frozen=True)
class SeriesKey:
    metric: str
    base_time: int
    tags: tuple[tuple[str, str], ...]

@dataclass(slots=True, frozen=True)
class TagFilter:
    tagk: str
    tagk_uid: bytes
    values: frozenset[bytes] | None = None     # None matches any value

@dataclass(slots=True, frozen=True)
class ScanQuery:
    metric: str
    metric_uid: bytes
    start_time: int                            # seconds
    end_time: int                              # seconds
    aggregator: str = "sum"
    rate: bool = False
    downsample: tuple[int, str] | None = None  # (interval seconds, aggregator)
    tag_filters: tuple[TagFilter, ...] = ()
    layout: KeyLayout = KeyLayout()

    def _sample_interval(self) -> int:
        return self.downsample[0] if self.downsample else 0

    def scan_start_time(self) -> int:
        # one row before the start can still hold points inside the range
        ts = self.start_time - MAX_TIMESPAN * 2 - self._sample_interval()
        return ts if ts > 0 else 0

    def scan_end_time(self) -> int:
        return self.end_time + MAX_TIMESPAN + 1 + self._sample_interval()

    @property
    def start_row(self) -> bytes:
        return self.metric_uid + self.scan_start_time().to_bytes(self.layout.timestamp_bytes, "big")

    @property
    def stop_row(self) -> bytes:
        end = min(self.scan_end_time(), (1 << (8 * self.layout.timestamp_bytes)) - 1)
        return self.metric_uid + end.to_bytes(self.layout.timestamp_bytes, "big")

    def matches(self, key: bytes) -> bool:
        """True if the row key belongs to this metric and satisfies every tag filter."""
        lay = self.layout
        if key[:lay.metric_width] != self.metric_uid:
            return False
        if not self.tag_filters:
            return True
        pairs: dict[bytes, bytes] = {}
        for i in range(lay.prefix_width, len(key), lay.tag_width):
            pairs[key[i:i + lay.tagk_width]] = key[i + lay.tagk_width:i + lay.tag_width]
        for flt in self.tag_filters:
            v = pairs.get(flt.tagk_uid)
            if v is None:
                return False
            if flt.values is not None and v not in flt.values:
                return False
        return True

@dataclass(slots=True, frozen=True)
class MetricRec:
    metric: str
    status: Status = "started"
    rows: int = 0
    elapsed_ms: int = 0
    error: str | None = None
    updated_at: float = 0.0
