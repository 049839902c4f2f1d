"""Unit tests for canemap_offline.network."""

from __future__ import annotations

import httpx
import pytest
import respx

from canemap_offline.config import UpstreamSettings
from canemap_offline.errors import ErrorCode, NetworkError
from canemap_offline.network import (
    Network,
    build_http_client,
    clone_response,
    forwardable_headers,
    is_navigation,
    strip_transfer_headers,
)

ORIGIN = "https://canemap.test"


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------


class TestHeaderHelpers:
    def test_strip_transfer_headers_keeps_duplicates(self) -> None:
        headers = [
            ("Set-Cookie", "a=1"),
            ("Content-Encoding", "gzip"),
            ("Set-Cookie", "b=2"),
            ("Connection", "keep-alive"),
        ]
        assert strip_transfer_headers(headers) == [("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]

    def test_forwardable_headers_drops_host(self) -> None:
        headers = [("Host", "gate.local"), ("Accept", "text/html"), ("Accept-Encoding", "br")]
        assert forwardable_headers(headers) == [("Accept", "text/html")]

    def test_is_navigation(self) -> None:
        page = httpx.Request("GET", ORIGIN, headers={"Sec-Fetch-Mode": "navigate"})
        script = httpx.Request("GET", ORIGIN, headers={"Sec-Fetch-Mode": "no-cors"})
        assert is_navigation(page)
        assert not is_navigation(script)
        assert not is_navigation(httpx.Request("GET", ORIGIN))

    def test_clone_is_independent_copy(self) -> None:
        request = httpx.Request("GET", f"{ORIGIN}/frontend/Worker/Workers.html")
        original = httpx.Response(200, text="<html></html>", request=request)
        clone = clone_response(original, request)
        assert clone is not original
        assert clone.content == original.content
        assert clone.status_code == 200
        assert clone.request is request


# ---------------------------------------------------------------------------
# build_http_client
# ---------------------------------------------------------------------------


class TestBuildHttpClient:
    def test_client_configuration(self) -> None:
        client = build_http_client(UpstreamSettings(origin_url=ORIGIN, timeout_seconds=5))
        assert isinstance(client, httpx.AsyncClient)
        assert client.follow_redirects is False
        assert str(client.base_url).rstrip("/") == ORIGIN
        assert client.timeout.read == 5
        assert client.headers["user-agent"].startswith("canemap-offline/")


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class TestNetwork:
    async def test_build_request_resolves_against_origin(self, network: Network) -> None:
        request = network.build_request("GET", "/frontend/Worker/Workers.html?tab=2")
        assert str(request.url) == f"{ORIGIN}/frontend/Worker/Workers.html?tab=2"

    async def test_successful_fetch(self, network: Network) -> None:
        with respx.mock:
            respx.get(f"{ORIGIN}/frontend/Worker/Workers.html").mock(
                return_value=httpx.Response(200, text="<h1>Workers</h1>")
            )
            response = await network.fetch(network.build_request("GET", "/frontend/Worker/Workers.html"))
        assert response.status_code == 200
        assert response.text == "<h1>Workers</h1>"

    async def test_error_status_is_a_response(self, network: Network) -> None:
        with respx.mock:
            respx.get(f"{ORIGIN}/backend/Driver/driver-ui.js").mock(
                return_value=httpx.Response(500)
            )
            response = await network.fetch(network.build_request("GET", "/backend/Driver/driver-ui.js"))
        assert response.status_code == 500

    async def test_connect_error_raises_network_error(self, network: Network) -> None:
        with respx.mock:
            respx.get(f"{ORIGIN}/frontend/Driver/Driver_Dashboard.html").mock(
                side_effect=httpx.ConnectError("Connection refused")
            )
            with pytest.raises(NetworkError) as exc_info:
                await network.fetch(
                    network.build_request("GET", "/frontend/Driver/Driver_Dashboard.html")
                )
        assert exc_info.value.code == ErrorCode.NETWORK_UNAVAILABLE
        assert exc_info.value.recoverable is True

    async def test_timeout_raises_network_error(self, network: Network) -> None:
        with respx.mock:
            respx.get(f"{ORIGIN}/backend/Common/ui-popup.js").mock(
                side_effect=httpx.ReadTimeout("timed out")
            )
            with pytest.raises(NetworkError):
                await network.fetch(network.build_request("GET", "/backend/Common/ui-popup.js"))

    async def test_decoding_error_raises_network_error(self, network: Network) -> None:
        with respx.mock:
            respx.get(f"{ORIGIN}/backend/Worker/Workers.js").mock(
                side_effect=httpx.DecodingError("Error -3 while decompressing data")
            )
            with pytest.raises(NetworkError):
                await network.fetch(network.build_request("GET", "/backend/Worker/Workers.js"))
