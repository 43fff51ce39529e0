# seriesdump/ports/storage.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import MetricRec


class ManifestSink(Protocol):
    """Port for appending batch-delete status records (e.g., JSONL manifest)."""

    async def append(self, rec: MetricRec) -> None:
        """Append a manifest record atomically (callers handle ordering/locking)."""
