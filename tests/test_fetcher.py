import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from homefetch.crawler.fetcher import FetchError, HomepageFetcher, fetch, homepage_url


def _run_with_server(routes, scenario):
    """Start a local server with the given handlers and run ``scenario(server)``."""

    async def run():
        app = web.Application()
        for path, handler in routes.items():
            app.router.add_get(path, handler)
        server = TestServer(app)
        await server.start_server()
        try:
            return await scenario(server)
        finally:
            await server.close()

    return asyncio.run(run())


def _host(server) -> str:
    return f"{server.host}:{server.port}"


def test_homepage_url():
    assert homepage_url("example.com") == "http://example.com"


def test_fetch_sends_user_agent_and_connection_close():
    seen = {}

    async def handler(request):
        seen["ua"] = request.headers.get("User-Agent")
        seen["connection"] = request.headers.get("Connection")
        return web.Response(body=b"<html>root</html>")

    async def scenario(server):
        async with HomepageFetcher("test bot 1.0") as fetcher:
            return await fetcher.fetch_domain(_host(server))

    result = _run_with_server({"/": handler}, scenario)

    assert result.ok
    assert result.content == b"<html>root</html>"
    assert result.status_code == 200
    assert seen["ua"] == "test bot 1.0"
    assert seen["connection"].lower() == "close"


def test_error_status_counts_as_success_by_default():
    async def handler(request):
        return web.Response(status=404, body=b"not here")

    async def scenario(server):
        async with HomepageFetcher("bot") as fetcher:
            return await fetcher.fetch_domain(_host(server))

    result = _run_with_server({"/": handler}, scenario)

    assert result.ok
    assert result.status_code == 404
    assert result.content == b"not here"


def test_error_status_fails_when_configured():
    async def handler(request):
        return web.Response(status=503, body=b"down")

    async def scenario(server):
        async with HomepageFetcher("bot", fail_on_http_error=True) as fetcher:
            return await fetcher.fetch_domain(_host(server))

    result = _run_with_server({"/": handler}, scenario)

    assert not result.ok
    assert result.error == "HTTP status 503"


def test_redirect_is_judged_by_final_status():
    async def moved(request):
        raise web.HTTPFound("/home")

    async def home(request):
        return web.Response(body=b"<html>home</html>")

    async def scenario(server):
        async with HomepageFetcher("bot", fail_on_http_error=True) as fetcher:
            return await fetcher.fetch_domain(_host(server))

    result = _run_with_server({"/": moved, "/home": home}, scenario)

    assert result.ok
    assert result.status_code == 200
    assert result.content == b"<html>home</html>"


def test_oversize_body_fails():
    async def handler(request):
        return web.Response(body=b"x" * 50000)

    async def scenario(server):
        async with HomepageFetcher("bot", max_body_bytes=1000) as fetcher:
            return await fetcher.fetch_domain(_host(server))

    result = _run_with_server({"/": handler}, scenario)

    assert not result.ok
    assert "size limit" in result.error


def test_request_timeout_is_a_failure():
    async def handler(request):
        await asyncio.sleep(1)
        return web.Response(body=b"late")

    async def scenario(server):
        async with HomepageFetcher("bot", request_timeout=0.2) as fetcher:
            return await fetcher.fetch_domain(_host(server))

    result = _run_with_server({"/": handler}, scenario)

    assert not result.ok
    assert result.error == "Request timeout"


def test_connection_refused_is_a_failure():
    async def scenario():
        async with HomepageFetcher("bot", request_timeout=5) as fetcher:
            return await fetcher.fetch_domain("127.0.0.1:1")

    result = asyncio.run(scenario())

    assert not result.ok
    assert result.content is None
    assert result.error


def test_module_fetch_raises_fetch_error():
    async def scenario():
        import aiohttp

        async with aiohttp.ClientSession() as session:
            await fetch(session, "bot", "http://127.0.0.1:1")

    with pytest.raises(FetchError):
        asyncio.run(scenario())


def test_reset_closes_session_and_next_fetch_reopens():
    async def handler(request):
        return web.Response(body=b"ok")

    async def scenario(server):
        fetcher = HomepageFetcher("bot")
        first = await fetcher.fetch_domain(_host(server))
        await fetcher.reset()
        assert fetcher.session is None
        second = await fetcher.fetch_domain(_host(server))
        await fetcher.close()
        return first, second, fetcher.get_stats()

    first, second, stats = _run_with_server({"/": handler}, scenario)

    assert first.ok and second.ok
    assert stats["total_requests"] == 2
    assert stats["successful_requests"] == 2
    assert stats["total_bytes_downloaded"] == 4
