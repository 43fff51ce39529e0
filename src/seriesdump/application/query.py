# seriesdump/application/query.py
from __future__ import annotations

import re, time
from datetime import datetime
from typing import Sequence

from ..domain.errors import QueryError
from ..domain.models import KeyLayout, ScanQuery, TagFilter
from ..ports.uid import UidResolver

AGGREGATORS = frozenset({"sum", "min", "max", "avg", "dev", "zimsum", "mimmin", "mimmax"})

# unit -> seconds; "n" is a 30-day month
UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 7 * 86400, "n": 30 * 86400, "y": 365 * 86400}
_DURATION = re.compile(r"^(\d+)(ms|[smhdwny])$")
_DATE_FORMATS = ("%Y/%m/%d-%H:%M:%S", "%Y/%m/%d-%H:%M", "%Y/%m/%d %H:%M:%S", "%Y/%m/%d")


def _duration_ms(text: str) -> int:
    m = _DURATION.match(text)
    if not m:
        raise QueryError(f"Invalid duration (need <number><unit>, unit one of ms s m h d w n y): {text!r}")
    n, unit = int(m.group(1)), m.group(2)
    return n if unit == "ms" else n * UNITS[unit] * 1000


def parse_duration(text: str) -> int:
    """'10m' -> 600. Sub-second durations are rejected."""
    seconds = _duration_ms(text) // 1000
    if seconds <= 0:
        raise QueryError(f"Duration must be at least one second: {text!r}")
    return seconds


def parse_date(text: str, now: float | None = None) -> int:
    """
    Parse a CLI date into epoch seconds. Accepts 'now', '<n><unit>-ago',
    a plain epoch in seconds or milliseconds, and yyyy/MM/dd[-HH:mm[:ss]]
    in local time.
    """
    text = text.strip()
    if now is None:
        now = time.time()
    if text == "now":
        return int(now)
    if text.endswith("-ago"):
        return int(now - _duration_ms(text[:-4]) / 1000)
    if text.isdigit():
        # 13-digit epochs are milliseconds
        return int(text) // 1000 if len(text) > 10 else int(text)
    for fmt in _DATE_FORMATS:
        try:
            return int(datetime.strptime(text, fmt).timestamp())
        except ValueError:
            continue
    raise QueryError(f"Invalid date: {text!r}")


def _take(args: Sequence[str], i: int, what: str) -> str:
    if i >= len(args):
        raise QueryError(f"Missing {what} at the end of the query")
    return args[i]


def _aggregator(name: str) -> str:
    if name not in AGGREGATORS:
        raise QueryError(f"Unknown aggregator {name!r}, expected one of {', '.join(sorted(AGGREGATORS))}")
    return name


async def _tag_filter(token: str, uids: UidResolver) -> TagFilter:
    tagk, _, values = token.partition("=")
    if not tagk or not values:
        raise QueryError(f"Invalid tag filter {token!r}, expected tagk=value")
    tagk_uid = await uids.tagk_id(tagk)
    if values == "*":
        return TagFilter(tagk, tagk_uid, None)
    return TagFilter(tagk, tagk_uid, frozenset([await uids.tagv_id(v) for v in values.split("|")]))


# ---------------------------- public API --------------------------------------

async def parse_query(args: Sequence[str], uids: UidResolver, *,
                      layout: KeyLayout = KeyLayout(), now: float | None = None) -> list[ScanQuery]:
    """
    START [END] (AGG [rate] [downsample INTERVAL AGG] METRIC [tagk=v|v2|*]...)+

    Names are resolved to UIDs through `uids`; unknown ones raise ResolutionError.
    A malformed token layout raises QueryError.
    """
    if not args:
        raise QueryError("Missing start date")
    if now is None:
        now = time.time()
    start = parse_date(args[0], now)
    i = 1
    if i < len(args) and args[i] not in AGGREGATORS:
        end = parse_date(args[i], now)
        i += 1
    else:
        end = int(now)
    if end < start:
        raise QueryError(f"End time {end} is before start time {start}")
    if i >= len(args):
        raise QueryError("Missing query: expected AGG METRIC after the dates")

    queries: list[ScanQuery] = []
    while i < len(args):
        agg = _aggregator(args[i]); i += 1
        rate = _take(args, i, "metric") == "rate"
        if rate:
            i += 1
        downsample = None
        if _take(args, i, "metric") == "downsample":
            interval = parse_duration(_take(args, i + 1, "downsample interval"))
            downsample = (interval, _aggregator(_take(args, i + 2, "downsample aggregator")))
            i += 3
        metric = _take(args, i, "metric"); i += 1
        filters: list[TagFilter] = []
        while i < len(args) and "=" in args[i]:
            filters.append(await _tag_filter(args[i], uids)); i += 1
        queries.append(ScanQuery(
            metric=metric, metric_uid=await uids.metric_id(metric),
            start_time=start, end_time=end,
            aggregator=agg, rate=rate, downsample=downsample,
            tag_filters=tuple(filters), layout=layout,
        ))
    return queries
