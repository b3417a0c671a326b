"""Tracing helpers for fetch and extract stages."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars


def _logger():
    return structlog.get_logger("harvest.trace")


def set_context(*, job_id: str, url: Optional[str] = None) -> None:
    if url is None:
        bind_contextvars(job_id=job_id)
    else:
        bind_contextvars(job_id=job_id, url=url)
    _logger().debug("trace_context", job_id=job_id, url=url)


def clear_context() -> None:
    unbind_contextvars("job_id", "url")


@contextlib.contextmanager
def span(*, name: str, url: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().debug("trace_span", span=name, url=url, elapsed_ms=elapsed_ms)


def log_fetch_result(*, url: str, status: int, bytes_read: int, elapsed_ms: int) -> None:
    _logger().info(
        "fetch_result",
        url=url,
        status=status,
        bytes=bytes_read,
        elapsed_ms=elapsed_ms,
    )


def log_fetch_failure(*, url: str, reason: str, status: Optional[int] = None) -> None:
    _logger().warning("fetch_failed", url=url, reason=reason, status=status)
