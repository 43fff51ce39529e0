from __future__ import annotations
import os, json, asyncio
from dataclasses import asdict
from ..ports.storage import ManifestSink
from ..domain.models import MetricRec

class JSONLManifest(ManifestSink):
    """
    Progress log of a --batch-delete-older run: one MetricRec per line, a
    "started" record when a worker claims a metric and a "done" or "failed"
    one when it finishes. LocalManifestCoverage reads the same file back so a
    rerun skips finished metrics. All workers share one instance; the lock
    keeps their lines whole and every line is fsynced.
    """
    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = asyncio.Lock()

    async def append(self, rec: MetricRec) -> None:
        line = json.dumps(asdict(rec), separators=(",", ":")) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write_line, line)

    def _write_line(self, line: str) -> None:
        with open(self.path, "a") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
