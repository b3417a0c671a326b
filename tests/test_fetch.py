import asyncio

import httpx
import pytest

from harvest.errors import FetchError
from harvest.fetch.fetcher import fetch_page
from harvest.fetch.session import DEFAULT_USER_AGENT, FetchSession, create_fetch_session
from harvest.observability.metrics import MetricsRegistry


def _run_with_handler(handler, url, **kwargs):
    async def _run():
        async with create_fetch_session(transport=httpx.MockTransport(handler)) as session:
            return await fetch_page(session, url, **kwargs)

    return asyncio.run(_run())


def test_fetch_page_returns_body_and_sends_user_agent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers["User-Agent"]
        return httpx.Response(200, text="<h1>ok</h1>")

    metrics = MetricsRegistry()
    page = _run_with_handler(handler, "https://site.test/a", metrics=metrics)
    assert page.html == "<h1>ok</h1>"
    assert page.status_code == 200
    assert seen["ua"] == DEFAULT_USER_AGENT
    assert metrics.get("pages_fetched") == 1
    assert metrics.get("http_2xx") == 1


def test_non_success_status_raises_fetch_error():
    metrics = MetricsRegistry()
    with pytest.raises(FetchError) as excinfo:
        _run_with_handler(lambda request: httpx.Response(503), "https://site.test/down", metrics=metrics)
    assert excinfo.value.status_code == 503
    assert excinfo.value.url == "https://site.test/down"
    assert metrics.get("fetch_failures") == 1


def test_transport_error_raises_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchError) as excinfo:
        _run_with_handler(handler, "https://site.test/b")
    assert excinfo.value.status_code is None
    assert "ConnectError" in excinfo.value.reason


def test_slow_response_times_out():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.5)
        return httpx.Response(200, text="late")

    with pytest.raises(FetchError) as excinfo:
        _run_with_handler(handler, "https://site.test/slow", timeout_ms=50)
    assert "timed out" in excinfo.value.reason


def test_file_scheme_is_served_from_disk(tmp_path):
    page_path = tmp_path / "page.html"
    page_path.write_text("<html><body>ok</body></html>", encoding="utf-8")

    async def _run():
        session = FetchSession(client=None)
        page = await fetch_page(session, page_path.as_uri())
        assert page.html.startswith("<html")
        with pytest.raises(FetchError) as excinfo:
            await fetch_page(session, (tmp_path / "missing.html").as_uri())
        assert excinfo.value.status_code == 404

    asyncio.run(_run())


def test_unreadable_file_targets_become_fetch_errors(tmp_path):
    async def _run():
        session = FetchSession(client=None)
        with pytest.raises(FetchError) as excinfo:
            await fetch_page(session, tmp_path.as_uri())
        return excinfo.value

    error = asyncio.run(_run())
    assert error.status_code == 404
    assert error.url == tmp_path.as_uri()


def test_invalid_utf8_file_is_decoded_with_replacement(tmp_path):
    page_path = tmp_path / "latin1.html"
    page_path.write_bytes(b"<h1>Caf\xe9 \xff</h1>")

    page = asyncio.run(fetch_page(FetchSession(client=None), page_path.as_uri()))
    assert page.html.startswith("<h1>Caf�")
    assert page.status_code == 200
