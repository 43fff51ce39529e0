# seriesdump/adapters/coverage_local.py
from __future__ import annotations

import os, json, asyncio, logging
from typing import Set

from ..ports.coverage import Coverage

logger = logging.getLogger(__name__)


class LocalManifestCoverage(Coverage):
    """
    Reads a batch-delete JSONL manifest and reports the metrics whose latest
    record is "done", so a rerun can skip them. A metric that failed after an
    earlier success is scanned again. The file is read once, off the event
    loop, on the first call; records appended after that are not seen.
    """
    def __init__(self, manifest_path: str) -> None:
        self.manifest_path = manifest_path
        self._done: Set[str] | None = None

    def _load(self) -> Set[str]:
        if not os.path.isfile(self.manifest_path):
            return set()
        latest: dict[str, str] = {}
        with open(self.manifest_path, "r") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rec = json.loads(line)
                    latest[rec["metric"]] = rec["status"]
                except (json.JSONDecodeError, KeyError, TypeError):
                    # a torn last line from an interrupted run
                    logger.warning("Skipping unreadable manifest line %d in %s", lineno, self.manifest_path)
        return {m for m, status in latest.items() if status == "done"}

    async def completed_metrics(self) -> set[str]:
        if self._done is None:
            self._done = await asyncio.to_thread(self._load)
        return set(self._done)
