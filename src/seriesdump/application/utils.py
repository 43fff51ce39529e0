import time
from datetime import datetime, timezone


def _now_ts_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y_%m_%d_%H:%M:%S")


def elapsed_ms(t0: float) -> int:
    """Milliseconds since a time.monotonic() reading."""
    return int((time.monotonic() - t0) * 1000)
