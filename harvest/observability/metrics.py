"""In-process counters for fetch, extraction and job outcomes."""
from __future__ import annotations

import contextlib
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterator, Optional

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

FETCH_COUNTERS = ("pages_fetched", "http_2xx", "http_3xx", "http_4xx", "http_5xx", "fetch_failures")
EXTRACT_COUNTERS = ("records_persisted", "empty_extractions")
JOB_COUNTERS = ("jobs_completed", "jobs_paused", "jobs_failed", "job_duration_ms")


class MetricsRegistry:
    """Counters shared by every job driven by one scheduler.

    Counters are plain integers. All updates happen on the event loop thread,
    so no locking is needed.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        for key in (*FETCH_COUNTERS, *EXTRACT_COUNTERS, *JOB_COUNTERS):
            self._counters[key] = 0

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def get(self, name: str) -> int:
        return self._counters.get(name, 0)

    def observe_response(self, status_code: int) -> None:
        """Count one received response under its status class."""
        self.incr("pages_fetched")
        self.incr(f"http_{status_code // 100}xx")

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counters)

    def export(self, path: Path, *, job_id: Optional[str] = None) -> Path:
        """Write the counters as JSON to ``path`` and return it."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "job_id": job_id,
            "counters": self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        LOGGER.info("metrics_exported", path=str(path), job_id=job_id)
        return path


@contextlib.contextmanager
def timed(registry: MetricsRegistry, metric_name: str) -> Iterator[None]:
    """Add the wall-clock milliseconds spent in the block to ``metric_name``."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        registry.incr(metric_name, elapsed_ms)
        LOGGER.debug("timer_stop", metric=metric_name, duration_ms=elapsed_ms)
