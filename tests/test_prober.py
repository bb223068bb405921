"""Tests for HTTP endpoint probing against a local aiohttp server."""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp import test_utils

from convergence_core.registry import EndpointProber, to_http_url


async def start_server(routes):
    app = web.Application()
    app.add_routes(routes)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


class TestToHttpUrl:

    def test_websocket_schemes_are_mapped(self):
        assert to_http_url("ws://localhost:8998") == "http://localhost:8998"
        assert to_http_url("wss://voice.example.com/ws") == "https://voice.example.com/ws"

    def test_http_is_unchanged(self):
        assert to_http_url("http://localhost:8080") == "http://localhost:8080"


class TestEndpointProber:

    @pytest.mark.asyncio
    async def test_ok_response_is_alive(self):
        async def root(request):
            return web.Response(text="ok")

        server = await start_server([web.get("/", root)])
        prober = EndpointProber(timeout=2.0)
        try:
            result = await prober.probe(str(server.make_url("/")))
        finally:
            await prober.close()
            await server.close()

        assert result.alive is True
        assert result.status_code == 200
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_client_error_status_still_counts_as_alive(self):
        server = await start_server([])
        prober = EndpointProber(timeout=2.0)
        try:
            result = await prober.probe(str(server.make_url("/missing")))
        finally:
            await prober.close()
            await server.close()

        assert result.alive is True
        assert result.status_code == 404

    @pytest.mark.asyncio
    async def test_server_error_is_not_alive(self):
        async def broken(request):
            return web.Response(status=503)

        server = await start_server([web.get("/", broken)])
        prober = EndpointProber(timeout=2.0)
        try:
            result = await prober.probe(str(server.make_url("/")))
        finally:
            await prober.close()
            await server.close()

        assert result.alive is False
        assert result.status_code == 503

    @pytest.mark.asyncio
    async def test_websocket_url_is_probed_over_http(self):
        async def root(request):
            return web.Response(text="voice")

        server = await start_server([web.get("/", root)])
        prober = EndpointProber(timeout=2.0)
        url = str(server.make_url("/")).replace("http://", "ws://")
        try:
            alive = await prober.is_alive(url)
        finally:
            await prober.close()
            await server.close()

        assert alive is True

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_never_raises(self):
        server = await start_server([])
        url = str(server.make_url("/"))
        await server.close()

        prober = EndpointProber(timeout=1.0)
        try:
            result = await prober.probe(url)
        finally:
            await prober.close()

        assert result.alive is False
        assert result.status_code is None
        assert result.error
