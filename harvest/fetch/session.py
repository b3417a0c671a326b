"""Factories for httpx-backed fetch sessions."""
from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import AsyncIterator, Dict, Optional
from urllib.parse import unquote, urlparse

import httpx

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; harvest/0.1; +https://example.invalid/bot)"


class FetchSession:
    """Thin wrapper over ``httpx.AsyncClient`` that also serves ``file://`` URLs."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    async def get(self, url: str, *, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0) -> httpx.Response:
        """Issue a GET returning an HTTPX response object."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return await self._read_file(url, Path(unquote(parsed.netloc + parsed.path)))
        if self._client is None:
            raise RuntimeError("No HTTP client available")
        return await self._client.get(url, headers=headers, timeout=timeout)

    @staticmethod
    async def _read_file(url: str, target: Path) -> httpx.Response:
        """Serve a local file the way an HTTP server would.

        Missing paths and directories answer 404, unreadable files 403.
        The body is passed as bytes so ``Response.text`` decodes it with
        replacement characters instead of failing on invalid UTF-8.
        """
        request = httpx.Request("GET", url)
        if not target.is_absolute():
            target = Path.cwd() / target
        try:
            body = await asyncio.to_thread(target.read_bytes)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return httpx.Response(404, request=request)
        except PermissionError:
            return httpx.Response(403, request=request)
        except OSError as exc:
            raise httpx.ReadError(f"{target}: {exc}", request=request) from exc
        return httpx.Response(
            200,
            content=body,
            headers={"Content-Type": "text/html; charset=utf-8"},
            request=request,
        )


@contextlib.asynccontextmanager
async def create_fetch_session(
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    max_connections: int = 10,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[FetchSession]:
    """Yield a configured `FetchSession` for the duration of the context."""
    headers = {"User-Agent": user_agent}
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(
        headers=headers,
        limits=limits,
        transport=transport,
        follow_redirects=True,
    ) as client:
        yield FetchSession(client)
