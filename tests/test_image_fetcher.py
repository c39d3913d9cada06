"""Tests for garment image retrieval and its fallback chain."""

import base64

import httpx
import pytest

from mirrorly.config import FetchConfig
from mirrorly.errors import GarmentImageUnavailable
from mirrorly.services.image_fetcher import RemoteImageFetcher, add_cache_buster, browser_headers

GARMENT_URL = "https://cdn.example.com/garments/g2.jpg"


def _fetcher(handler) -> RemoteImageFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteImageFetcher(FetchConfig(relay_url_template="https://relay.test/?url={url}"), client=client)


class TestCacheBuster:

    def test_adds_timestamp_param(self):
        assert add_cache_buster("https://a.test/img.jpg", now_ms=123) == "https://a.test/img.jpg?_t=123"

    def test_keeps_existing_query(self):
        result = add_cache_buster("https://a.test/img.jpg?w=600", now_ms=5)
        assert result == "https://a.test/img.jpg?w=600&_t=5"


def test_browser_headers_use_image_origin():
    headers = browser_headers(GARMENT_URL, "agent")
    assert headers["Referer"] == "https://cdn.example.com/"
    assert headers["Origin"] == "https://cdn.example.com"


class TestFallbackChain:
    """Tests for ordered strategy fallback."""

    @pytest.mark.asyncio
    async def test_direct_success(self, make_image_bytes):
        """Direct load wins when the origin serves the image."""
        image = make_image_bytes(40, 40)
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, content=image, headers={"content-type": "image/png"})

        fetcher = _fetcher(handler)
        data = await fetcher.fetch(GARMENT_URL)

        assert data == image
        assert len(seen) == 1
        assert seen[0].host == "cdn.example.com"
        assert "_t" in seen[0].params

    @pytest.mark.asyncio
    async def test_relay_used_when_direct_fails(self, make_image_bytes):
        """A blocked origin falls through to the relay."""
        image = make_image_bytes(40, 40)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cdn.example.com":
                return httpx.Response(403)
            assert request.url.params["url"] == GARMENT_URL
            return httpx.Response(200, content=image)

        data = await _fetcher(handler).fetch(GARMENT_URL)

        assert data == image

    @pytest.mark.asyncio
    async def test_non_image_payload_is_a_failure(self, make_image_bytes):
        """An unreadable payload (e.g. an HTML error page) does not count as success."""
        image = make_image_bytes(40, 40)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cdn.example.com":
                return httpx.Response(200, content=b"<html>login required</html>")
            return httpx.Response(200, content=image)

        assert await _fetcher(handler).fetch(GARMENT_URL) == image

    @pytest.mark.asyncio
    async def test_dead_link_raises_unavailable(self):
        """Direct timeout + relay 404 ends in the dedicated error."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cdn.example.com":
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(404)

        with pytest.raises(GarmentImageUnavailable) as exc_info:
            await _fetcher(handler).fetch(GARMENT_URL)

        error = exc_info.value
        assert error.url == GARMENT_URL
        assert error.attempts[0] == "direct: timed out after 8s"
        assert error.attempts[1] == "relay: HTTP 404"

    @pytest.mark.asyncio
    async def test_connection_errors_fall_through(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GarmentImageUnavailable) as exc_info:
            await _fetcher(handler).fetch(GARMENT_URL)

        assert len(exc_info.value.attempts) == 2

    @pytest.mark.asyncio
    async def test_relay_disabled(self):
        """Without a relay template only the direct strategy runs."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = RemoteImageFetcher(FetchConfig(relay_url_template=None), client=client)

        with pytest.raises(GarmentImageUnavailable):
            await fetcher.fetch(GARMENT_URL)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_data_uri_needs_no_network(self, minimal_png_bytes):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("network must not be used")

        uri = "data:image/png;base64," + base64.b64encode(minimal_png_bytes).decode()

        assert await _fetcher(handler).fetch(uri) == minimal_png_bytes
