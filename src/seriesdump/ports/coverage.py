# seriesdump/ports/coverage.py
from __future__ import annotations
from typing import Protocol

class Coverage(Protocol):
    async def completed_metrics(self) -> set[str]:
        """Return metric names a previous batch delete already finished."""
