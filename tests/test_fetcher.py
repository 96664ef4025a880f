import asyncio
import time

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from siteqa.errors import FetchFailed, UnsupportedFormat
from siteqa.fetcher import HttpFetcher
from siteqa.models import ContentKind


def make_app():
    hits = {"flaky": 0, "robots": 0}

    async def robots(request):
        hits["robots"] += 1
        return web.Response(text="User-agent: *\nDisallow: /private\n")

    async def home(request):
        return web.Response(text="<p>Grüße</p>", content_type="text/html")

    async def handbook(request):
        return web.Response(body=b"%PDF-1.4 fake", content_type="application/pdf")

    async def flaky(request):
        hits["flaky"] += 1
        if hits["flaky"] < 3:
            return web.Response(status=503)
        return web.Response(text="finally", content_type="text/plain")

    async def big(request):
        return web.Response(text="x" * 1000, content_type="text/plain")

    async def logo(request):
        return web.Response(body=b"\x89PNG", content_type="image/png")

    async def private(request):
        return web.Response(text="secret", content_type="text/html")

    async def echo_referer(request):
        return web.Response(text=request.headers.get("Referer", "none"), content_type="text/plain")

    app = web.Application()
    app.router.add_get("/echo", echo_referer)
    app.router.add_get("/robots.txt", robots)
    app.router.add_get("/", home)
    app.router.add_get("/handbook.pdf", handbook)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/big", big)
    app.router.add_get("/logo.png", logo)
    app.router.add_get("/private", private)
    return app, hits


@pytest.mark.asyncio
async def test_fetch_html_and_pdf():
    async with TestServer(make_app()[0]) as server:
        async with HttpFetcher() as fetcher:
            page = await fetcher.fetch(str(server.make_url("/")))
            assert page.kind is ContentKind.HTML
            assert page.content == "<p>Grüße</p>"

            pdf = await fetcher.fetch(str(server.make_url("/handbook.pdf")))
            assert pdf.kind is ContentKind.PDF
            assert pdf.content == b"%PDF-1.4 fake"


@pytest.mark.asyncio
async def test_transient_status_is_retried():
    app, hits = make_app()
    async with TestServer(app) as server:
        async with HttpFetcher() as fetcher:
            response = await fetcher.fetch(str(server.make_url("/flaky")))
    assert response.content == "finally"
    assert hits["flaky"] == 3


@pytest.mark.asyncio
async def test_fetch_failures():
    async with TestServer(make_app()[0]) as server:
        async with HttpFetcher(max_bytes=100) as fetcher:
            with pytest.raises(FetchFailed, match="404"):
                await fetcher.fetch(str(server.make_url("/missing")))
            with pytest.raises(FetchFailed, match="too large"):
                await fetcher.fetch(str(server.make_url("/big")))
            with pytest.raises(FetchFailed, match="robots"):
                await fetcher.fetch(str(server.make_url("/private")))
            with pytest.raises(UnsupportedFormat):
                await fetcher.fetch(str(server.make_url("/logo.png")))


@pytest.mark.asyncio
async def test_robots_can_be_ignored():
    async with TestServer(make_app()[0]) as server:
        async with HttpFetcher(respect_robots=False) as fetcher:
            response = await fetcher.fetch(str(server.make_url("/private")))
    assert response.content == "secret"


@pytest.mark.asyncio
async def test_referer_header():
    async with TestServer(make_app()[0]) as server:
        async with HttpFetcher(delay=0) as fetcher:
            linked = await fetcher.fetch(str(server.make_url("/echo")), referer="https://uni.example.com/")
            direct = await fetcher.fetch(str(server.make_url("/echo")))
    assert linked.content == "https://uni.example.com/"
    assert direct.content == "none"


@pytest.mark.asyncio
async def test_robots_txt_is_requested_once_per_origin():
    app, hits = make_app()
    async with TestServer(app) as server:
        async with HttpFetcher(delay=0) as fetcher:
            await asyncio.gather(*(fetcher.fetch(str(server.make_url("/"))) for _ in range(5)))
    assert hits["robots"] == 1


@pytest.mark.asyncio
async def test_politeness_delay():
    async with TestServer(make_app()[0]) as server:
        async with HttpFetcher(delay=0.1) as fetcher:
            started = time.monotonic()
            await fetcher.fetch(str(server.make_url("/")))
            await fetcher.fetch(str(server.make_url("/")))
            elapsed = time.monotonic() - started
    assert elapsed >= 0.2
