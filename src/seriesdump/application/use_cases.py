from __future__ import annotations
import sys, asyncio, logging, time
from typing import Callable, Sequence, TextIO

from ..domain.formatting import format_row
from ..domain.models import KeyLayout, MetricRec, ScanQuery
from ..domain.value_types import Status
from ..ports.coverage import Coverage
from ..ports.storage import ManifestSink
from ..ports.store import StoreClient
from ..ports.uid import UidResolver
from .query import parse_query
from .utils import elapsed_ms

logger = logging.getLogger(__name__)

DELETE_WORKERS = 16
PROGRESS_INTERVAL_S = 60.0


async def dump_series(
    *,
    store: StoreClient,
    uids: UidResolver,
    queries: Sequence[ScanQuery],
    delete: bool = False,
    import_format: bool = False,
    quiet: bool = False,
    layout: KeyLayout = KeyLayout(),
    out: TextIO | None = None,
    label: str | None = None,
    progress_interval_s: float = PROGRESS_INTERVAL_S,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Scan every query in order, printing and/or deleting each row.
    Each row is written and flushed whole before it is deleted, so a failure
    leaves every earlier row on the output. Returns the number of rows touched.
    """
    out = out if out is not None else sys.stdout
    label = label or (queries[0].metric if queries else "")
    rows = ticks = 0
    next_tick = clock() + progress_interval_s

    for query in queries:
        cursor = await store.open_scanner(query)
        try:
            while True:
                page = await cursor.next_rows()
                if page is None:
                    break
                for row in page:
                    rows += 1
                    if not quiet:
                        out.write(await format_row(row, uids=uids, layout=layout, import_format=import_format))
                        out.flush()
                    if delete:
                        if clock() > next_tick:
                            ticks += 1
                            logger.info("Still (%d) deleting %s rows touched = %d", ticks, label, rows)
                            next_tick = clock() + progress_interval_s
                        await store.delete_row(row.key)
        finally:
            await cursor.close()
    return rows


async def batch_delete(
    *,
    store: StoreClient,
    uids: UidResolver,
    end_time: str,
    metric_prefix: str,
    layout: KeyLayout = KeyLayout(),
    workers: int = DELETE_WORKERS,
    manifest: ManifestSink | None = None,
    coverage: Coverage | None = None,
) -> dict[str, int]:
    """
    Delete every row older than `end_time` for all metrics starting with
    `metric_prefix`, with `workers` tasks draining a shared queue. A metric
    that fails is logged and recorded; its worker moves on to the next one.
    """
    metrics = await uids.suggest_metrics(metric_prefix, None)
    done = await coverage.completed_metrics() if coverage is not None else set()
    todo = [m for m in metrics if m not in done]
    skipped = len(metrics) - len(todo)
    total = len(todo)
    logger.info("Found %d metrics matching %r, %d already done", len(metrics), metric_prefix, skipped)

    queue: asyncio.Queue[str] = asyncio.Queue()
    for m in todo:
        queue.put_nowait(m)

    claimed = processed_ok = processed_failed = rows_touched = 0

    async def record(metric: str, status: Status, rows: int = 0, ms: int = 0, err: str | None = None) -> None:
        if manifest is not None:
            await manifest.append(MetricRec(metric=metric, status=status, rows=rows,
                                            elapsed_ms=ms, error=err, updated_at=time.time()))

    async def worker(wid: int) -> None:
        nonlocal claimed, processed_ok, processed_failed, rows_touched
        while True:
            try:
                metric = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            claimed += 1
            logger.info("[%d] Issue batch delete for metric: %s... (%d/%d)", wid, metric, claimed, total)
            await record(metric, "started")
            t0 = time.monotonic()
            try:
                queries = await parse_query(["0", end_time, "sum", metric], uids, layout=layout)
                cnt = await dump_series(store=store, uids=uids, queries=queries, delete=True,
                                        import_format=False, quiet=True, layout=layout, label=metric)
            except Exception as e:
                processed_failed += 1
                logger.exception("[%d] Batch delete failed for metric: %s", wid, metric)
                await record(metric, "failed", ms=elapsed_ms(t0), err=f"{type(e).__name__}: {e}")
                continue
            ms = elapsed_ms(t0)
            processed_ok += 1
            rows_touched += cnt
            logger.info("[%d] Done batch delete for metric: %s. Touched %d rows in %dms", wid, metric, cnt, ms)
            await record(metric, "done", cnt, ms)

    results = await asyncio.gather(*(asyncio.create_task(worker(w)) for w in range(workers)),
                                   return_exceptions=True)
    for wid, res in enumerate(results):
        if isinstance(res, BaseException):
            logger.error("Worker [%d] died with: %s", wid, res, exc_info=res)

    return {
        "metrics": len(metrics),
        "processed_ok": processed_ok,
        "processed_failed": processed_failed,
        "skipped": skipped,
        "rows_touched": rows_touched,
    }
