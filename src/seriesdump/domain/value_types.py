from __future__ import annotations
from typing import NewType, Literal

MetricUID = NewType("MetricUID", bytes)
TagUID    = NewType("TagUID", bytes)
UidKind   = Literal["metrics", "tagk", "tagv"]
Status    = Literal["started", "done", "failed"]

# Row key layout (OpenTSDB 2.x defaults)
TIMESTAMP_BYTES = 4
METRICS_WIDTH   = 3
TAG_NAME_WIDTH  = 3
TAG_VALUE_WIDTH = 3
MAX_TIMESPAN    = 3600                # seconds covered by one row

# Timestamps with any of these bits set are in milliseconds
SECOND_MASK = 0xFFFFFFFF00000000

# Qualifier flags
FLAG_BITS    = 4
FLAG_FLOAT   = 0x8
LENGTH_MASK  = 0x7
FLAGS_MASK   = FLAG_FLOAT | LENGTH_MASK

# Millisecond qualifiers: 4 bytes, top nibble set, 22 bits of offset, 2 reserved, 4 flags
MS_FLAG_BITS  = 6
MS_BYTE_FLAG  = 0xF0
MS_FLAG       = 0xF0000000
MS_OFFSET_MASK = 0x0FFFFFC0

# Trailing metadata byte values a compacted value may carry
MS_MIXED_COMPACT = 1
COMPACT_TRAILERS = (0, MS_MIXED_COMPACT)

ANNOTATION_PREFIX = 0x01
