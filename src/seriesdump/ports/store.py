# seriesdump/ports/store.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import Row, ScanQuery


class Cursor(Protocol):
    """Paged scanner over the rows matched by one query."""

    async def next_rows(self) -> list[Row] | None:
        """Return the next non-empty page of whole rows, or None once the scan is exhausted."""

    async def close(self) -> None:
        """Release the server-side scanner. Safe to call more than once."""


class StoreClient(Protocol):
    """Port defining the contract for the data table of the time-series store."""

    async def open_scanner(self, query: ScanQuery) -> Cursor:
        """Open a cursor over [query.start_row, query.stop_row) yielding rows that match the query."""

    async def delete_row(self, key: bytes) -> None:
        """Delete every column of the row with this key."""

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
