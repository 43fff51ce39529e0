from __future__ import annotations
import asyncio, base64, logging, httpx
from typing import Callable, Sequence
from urllib.parse import quote

from ..config import StoreConfig
from ..domain.errors import StoreError
from ..domain.models import Column, Row, ScanQuery
from ..ports.store import Cursor, StoreClient

logger = logging.getLogger(__name__)

ACCEPT_JSON = {"Accept": "application/json"}
RETRY_STATUS = (429, 503)

def _b64(b: bytes) -> str: return base64.b64encode(b).decode("ascii")
def _unb64(s: str) -> bytes: return base64.b64decode(s) if s else b""

def _path_key(key: bytes) -> str:
    """
    Percent-encode a row key for a URL path. The gateway decodes the segment as
    UTF-8 and treats a trailing '*' as a suffix glob, so only keys that are valid
    UTF-8 and do not end in '*' come back as the same bytes.
    """
    try:
        key.decode("utf-8")
    except UnicodeDecodeError:
        raise StoreError(f"Row key {list(key)} is not addressable through the REST gateway (not UTF-8)") from None
    if key.endswith(b"*"):
        raise StoreError(f"Row key {list(key)} is not addressable through the REST gateway (ends in '*')")
    return quote(key, safe="")

def make_client(config: StoreConfig) -> httpx.AsyncClient:
    """One pooled client shared by the store, the UID resolver and every worker."""
    return httpx.AsyncClient(
        base_url=config.rest_url,
        http2=True,
        timeout=httpx.Timeout(config.timeout_s),
        limits=httpx.Limits(max_connections=config.max_connections,
                            max_keepalive_connections=config.max_connections // 2),
    )

async def request(client: httpx.AsyncClient, method: str, url: str, **kw) -> httpx.Response:
    # retry on 429/503 with simple backoff
    for attempt in range(3):
        r = await client.request(method, url, **kw)
        if r.status_code in RETRY_STATUS:
            ra = r.headers.get("Retry-After")
            delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
            logger.debug("%s %s -> %d, retrying in %.1fs", method, url, r.status_code, delay)
            await asyncio.sleep(delay); continue
        return r
    raise StoreError(f"Retries exhausted for {method} {url}")

def parse_rows(payload: dict, family: bytes | None = None) -> list[Row]:
    """Decode a REST CellSet ({"Row": [{"key", "Cell": [{"column", "$"}]}]}) into Rows."""
    out: list[Row] = []
    for r in payload.get("Row", []):
        columns: list[Column] = []
        for c in r.get("Cell", []):
            fam, _, qualifier = _unb64(c["column"]).partition(b":")
            if family is not None and fam != family:
                continue
            columns.append(Column(qualifier=qualifier, value=_unb64(c.get("$", ""))))
        out.append(Row(key=_unb64(r["key"]), columns=tuple(columns)))
    return out


class RestCursor(Cursor):
    """
    Pages through a REST scanner. The gateway batches by cell count, so a row
    may straddle two pages: the last row of each page is held back and merged
    with the head of the next one before it is handed out.
    """
    def __init__(self, client: httpx.AsyncClient, location: str, *,
                 family: bytes | None = None,
                 accept: Callable[[bytes], bool] | None = None) -> None:
        self.client = client
        self.location = location
        self.family = family
        self.accept = accept
        self._pending: Row | None = None
        self._done = False
        self._closed = False

    def _keep(self, rows: list[Row]) -> list[Row]:
        return rows if self.accept is None else [r for r in rows if self.accept(r.key)]

    async def next_rows(self) -> list[Row] | None:
        while not self._done:
            r = await request(self.client, "GET", self.location, headers=ACCEPT_JSON)
            if r.status_code == 204:
                self._done = True
                break
            r.raise_for_status()
            rows = parse_rows(r.json(), self.family)
            if self._pending is not None:
                if rows and rows[0].key == self._pending.key:
                    rows[0] = self._pending.merge(rows[0])
                else:
                    rows.insert(0, self._pending)
            self._pending = rows.pop() if rows else None
            out = self._keep(rows)
            if out:
                return out
        if self._pending is not None:
            last, self._pending = self._pending, None
            out = self._keep([last])
            if out:
                return out
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        r = await self.client.delete(self.location)
        if r.status_code not in (200, 404):
            logger.warning("Failed to release scanner %s: HTTP %d", self.location, r.status_code)


async def open_rest_scanner(client: httpx.AsyncClient, table: str, *,
                            start_row: bytes, stop_row: bytes,
                            columns: Sequence[bytes], batch: int,
                            accept: Callable[[bytes], bool] | None = None) -> RestCursor:
    body = {
        "startRow": _b64(start_row),
        "endRow": _b64(stop_row),
        "batch": batch,
        "column": [_b64(c) for c in columns],
    }
    r = await request(client, "POST", f"/{table}/scanner", json=body, headers=ACCEPT_JSON)
    r.raise_for_status()
    location = r.headers.get("Location")
    if not location:
        raise StoreError(f"Scanner on {table} created without a Location header (HTTP {r.status_code})")
    family = columns[0].partition(b":")[0] if len(columns) == 1 else None
    return RestCursor(client, location, family=family, accept=accept)


class HbaseRestStore(StoreClient):
    def __init__(self, client: httpx.AsyncClient, table: str = "tsdb", *,
                 family: str = "t", batch: int = 128) -> None:
        self.client = client
        self.table = table
        self.family = family.encode()
        self.batch = batch

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, config: StoreConfig) -> "HbaseRestStore":
        return cls(client, config.data_table, family=config.family, batch=config.scan_batch)

    async def open_scanner(self, query: ScanQuery) -> RestCursor:
        logger.debug("Scanning %s from %s to %s", self.table, query.start_row.hex(), query.stop_row.hex())
        return await open_rest_scanner(
            self.client, self.table,
            start_row=query.start_row, stop_row=query.stop_row,
            columns=[self.family], batch=self.batch, accept=query.matches,
        )

    async def delete_row(self, key: bytes) -> None:
        r = await request(self.client, "DELETE", f"/{self.table}/{_path_key(key)}")
        r.raise_for_status()

    async def aclose(self) -> None:
        await self.client.aclose()
