"""Storage configuration for seriesdump.

Values resolve in three layers: model defaults < properties file < CLI options.
The properties file uses the OpenTSDB ``key = value`` syntax so an existing
``opentsdb.conf`` can be pointed at directly; keys this tool does not use are
ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from seriesdump.domain.models import KeyLayout

logger = logging.getLogger(__name__)

# properties-file key -> StoreConfig field
PROPERTY_KEYS = {
    "tsd.storage.hbase.rest_url": "rest_url",
    "tsd.storage.hbase.data_table": "data_table",
    "tsd.storage.hbase.uid_table": "uid_table",
    "tsd.storage.uid.width.metric": "metric_width",
    "tsd.storage.uid.width.tagk": "tagk_width",
    "tsd.storage.uid.width.tagv": "tagv_width",
}


class StoreConfig(BaseModel):
    """Connection and layout settings for the HBase REST gateway.

    Attributes:
        rest_url: Base URL of the HBase REST gateway
        data_table: Table holding the data points
        uid_table: Table holding the UID <-> name mappings
        family: Column family of the data points
        metric_width / tagk_width / tagv_width: UID widths in bytes
        scan_batch: Cells requested per scanner page
        timeout_s: HTTP timeout in seconds
        max_connections: HTTP connection pool size, shared by all workers
        log_level: Root log level for the CLI
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    rest_url: str = "http://localhost:8080"
    data_table: str = "tsdb"
    uid_table: str = "tsdb-uid"
    family: str = "t"
    metric_width: int = Field(3, ge=1, le=8)
    tagk_width: int = Field(3, ge=1, le=8)
    tagv_width: int = Field(3, ge=1, le=8)
    scan_batch: int = Field(128, ge=1)
    timeout_s: int = Field(20, gt=0)
    max_connections: int = Field(64, ge=16)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @property
    def layout(self) -> KeyLayout:
        return KeyLayout(metric_width=self.metric_width,
                         tagk_width=self.tagk_width,
                         tagv_width=self.tagv_width)


def read_properties(path: str | Path) -> dict[str, str]:
    """Parse a Java-style properties file into a flat dict."""
    props: dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line[0] in "#!":
                continue
            sep = min((i for i in (line.find("="), line.find(":")) if i >= 0), default=-1)
            if sep < 0:
                props[line] = ""
                continue
            props[line[:sep].strip()] = line[sep + 1:].strip()
    return props


def load_config(path: str | Path | None = None, **overrides: Any) -> StoreConfig:
    """Build a StoreConfig from defaults, an optional properties file, then overrides.

    Overrides whose value is None are skipped so unset CLI options fall through.
    """
    values: dict[str, Any] = {}
    if path is not None:
        props = read_properties(path)
        for key, field in PROPERTY_KEYS.items():
            if key in props:
                values[field] = props[key]
        logger.debug("Loaded %d settings from %s", len(values), path)
    values.update({k: v for k, v in overrides.items() if v is not None})
    return StoreConfig.model_validate(values)
