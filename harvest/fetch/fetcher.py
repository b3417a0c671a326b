"""Single bounded page fetch used by the job loop."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog

from harvest.errors import FetchError
from harvest.fetch.session import DEFAULT_USER_AGENT, FetchSession
from harvest.observability.metrics import MetricsRegistry
from harvest.observability.tracing import log_fetch_failure, log_fetch_result, span

LOGGER = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_MS = 30000


@dataclass(slots=True)
class Page:
    """A fetched document ready for extraction."""

    url: str
    html: str
    status_code: int
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _fail(url: str, reason: str, metrics: Optional[MetricsRegistry], status: Optional[int] = None) -> FetchError:
    if metrics is not None:
        metrics.incr("fetch_failures")
    log_fetch_failure(url=url, reason=reason, status=status)
    return FetchError(url, reason, status_code=status)


async def fetch_page(
    session: FetchSession,
    url: str,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    user_agent: str = DEFAULT_USER_AGENT,
    metrics: Optional[MetricsRegistry] = None,
) -> Page:
    """Perform one GET for ``url`` and return the page body.

    The whole request, including reading the body, is bounded by
    ``timeout_ms``. Any transport error, timeout or non-2xx status is raised
    as :class:`FetchError`. There are no retries.
    """
    timeout = timeout_ms / 1000
    headers = {"User-Agent": user_agent}
    start = time.perf_counter()
    try:
        with span(name="fetch", url=url):
            response = await asyncio.wait_for(
                session.get(url, headers=headers, timeout=timeout),
                timeout=timeout,
            )
    except asyncio.TimeoutError:
        raise _fail(url, f"timed out after {timeout_ms}ms", metrics) from None
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise _fail(url, f"{type(exc).__name__}: {exc}", metrics) from exc

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_fetch_result(
        url=url,
        status=response.status_code,
        bytes_read=len(response.content or b""),
        elapsed_ms=elapsed_ms,
    )
    if metrics is not None:
        metrics.observe_response(response.status_code)

    if not response.is_success:
        reason = f"HTTP {response.status_code}: {response.reason_phrase}"
        raise _fail(url, reason, metrics, status=response.status_code)

    return Page(
        url=url,
        html=response.text,
        status_code=response.status_code,
    )
