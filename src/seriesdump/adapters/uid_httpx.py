from __future__ import annotations
import logging, httpx

from ..config import StoreConfig
from ..domain.errors import ResolutionError
from ..domain.value_types import MetricUID, TagUID, UidKind
from ..ports.uid import UidResolver
from .rpc_httpx import open_rest_scanner

logger = logging.getLogger(__name__)

CHARSET = "iso-8859-1"
ID_FAMILY = "id"
NAME_FAMILY = "name"
# bounds of the printable name space, used when the suggest prefix is empty
START_ROW = b"!"
END_ROW = b"~"

def _next_prefix(prefix: bytes) -> bytes:
    """Smallest key greater than every key starting with prefix."""
    p = bytearray(prefix)
    while p and p[-1] == 0xFF:
        p.pop()
    if not p:
        return b""
    p[-1] += 1
    return bytes(p)


class RestUidResolver(UidResolver):
    """
    Resolves UIDs through the UID table on the REST gateway:
      row=<uid>  family "name", qualifier <kind> -> name
      row=<name> family "id",   qualifier <kind> -> uid
    Answers are cached for the lifetime of the resolver; the cache is only
    touched from the event loop so it needs no lock.
    """
    def __init__(self, client: httpx.AsyncClient, table: str = "tsdb-uid", *, batch: int = 128) -> None:
        self.client = client
        self.table = table
        self.batch = batch
        self._names: dict[tuple[UidKind, bytes], str] = {}
        self._ids: dict[tuple[UidKind, str], bytes] = {}

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, config: StoreConfig) -> "RestUidResolver":
        return cls(client, config.uid_table, batch=config.scan_batch)

    async def _get_cell(self, row: bytes, family: str, qualifier: str) -> bytes | None:
        # a one-row scan; row keys travel base64 in the body instead of the URL path
        cursor = await open_rest_scanner(
            self.client, self.table, start_row=row, stop_row=row + b"\x00",
            columns=[f"{family}:{qualifier}".encode()], batch=1,
        )
        want = qualifier.encode()
        try:
            while True:
                rows = await cursor.next_rows()
                if rows is None:
                    return None
                for r in rows:
                    if r.key != row:
                        continue
                    for c in r.columns:
                        if c.qualifier == want:
                            return c.value
        finally:
            await cursor.close()

    async def _name(self, kind: UidKind, uid: bytes) -> str:
        cached = self._names.get((kind, uid))
        if cached is not None:
            return cached
        raw = await self._get_cell(uid, NAME_FAMILY, kind)
        if raw is None:
            raise ResolutionError(f"No such unique ID for '{kind}': {list(uid)}")
        name = raw.decode(CHARSET)
        self._names[(kind, uid)] = name
        self._ids[(kind, name)] = uid
        return name

    async def _id(self, kind: UidKind, name: str) -> bytes:
        cached = self._ids.get((kind, name))
        if cached is not None:
            return cached
        uid = await self._get_cell(name.encode(CHARSET), ID_FAMILY, kind)
        if uid is None:
            raise ResolutionError(f"No such name for '{kind}': '{name}'")
        self._ids[(kind, name)] = uid
        self._names[(kind, uid)] = name
        return uid

    async def metric_name(self, uid: MetricUID) -> str:
        return await self._name("metrics", uid)

    async def tag_pair(self, tagk_uid: TagUID, tagv_uid: TagUID) -> tuple[str, str]:
        return await self._name("tagk", tagk_uid), await self._name("tagv", tagv_uid)

    async def metric_id(self, name: str) -> MetricUID:
        return MetricUID(await self._id("metrics", name))

    async def tagk_id(self, name: str) -> TagUID:
        return TagUID(await self._id("tagk", name))

    async def tagv_id(self, name: str) -> TagUID:
        return TagUID(await self._id("tagv", name))

    async def suggest_metrics(self, prefix: str, max_results: int | None = None) -> list[str]:
        return await self._suggest("metrics", prefix, max_results)

    async def _suggest(self, kind: UidKind, prefix: str,
                       max_results: int | None) -> list[str]:
        raw = prefix.encode(CHARSET)
        start, stop = (raw, _next_prefix(raw)) if raw else (START_ROW, END_ROW)
        cursor = await open_rest_scanner(
            self.client, self.table, start_row=start, stop_row=stop,
            columns=[f"{ID_FAMILY}:{kind}".encode()], batch=self.batch,
        )
        names: list[str] = []
        try:
            while max_results is None or len(names) < max_results:
                rows = await cursor.next_rows()
                if rows is None:
                    break
                for row in rows:
                    if not row.columns:
                        continue
                    name = row.key.decode(CHARSET)
                    names.append(name)
                    self._ids[(kind, name)] = row.columns[0].value
                    if max_results is not None and len(names) >= max_results:
                        break
        finally:
            await cursor.close()
        logger.debug("Prefix %r matched %d %s", prefix, len(names), kind)
        return names
