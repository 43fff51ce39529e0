# seriesdump/ports/uid.py
from __future__ import annotations

from typing import Protocol
from ..domain.value_types import MetricUID, TagUID


class UidResolver(Protocol):
    """Port for the bidirectional UID <-> name service. Unknown entries raise ResolutionError."""

    async def metric_name(self, uid: MetricUID) -> str:
        """Return the metric name for a metric UID."""

    async def tag_pair(self, tagk_uid: TagUID, tagv_uid: TagUID) -> tuple[str, str]:
        """Return (tag key, tag value) names for a pair of tag UIDs."""

    async def metric_id(self, name: str) -> MetricUID:
        """Return the UID of a metric name."""

    async def tagk_id(self, name: str) -> TagUID:
        """Return the UID of a tag key name."""

    async def tagv_id(self, name: str) -> TagUID:
        """Return the UID of a tag value name."""

    async def suggest_metrics(self, prefix: str, max_results: int | None = None) -> list[str]:
        """Return metric names starting with prefix, sorted; all of them when max_results is None."""
