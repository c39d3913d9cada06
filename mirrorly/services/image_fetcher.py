"""Garment image retrieval with an ordered fallback chain."""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable
from urllib.parse import quote, urlencode, urlparse, urlsplit, urlunsplit

import httpx

from ..config import FetchConfig
from ..errors import GarmentImageUnavailable
from ..utils.images import decode_image, is_data_uri, parse_data_uri

logger = logging.getLogger(__name__)


FetchFn = Callable[[httpx.AsyncClient, str, float], Awaitable[httpx.Response]]


@dataclass
class FetchStrategy:
    """One way of getting the image bytes, with its own deadline."""
    name: str
    timeout: float
    fetch: FetchFn


def add_cache_buster(url: str, now_ms: int | None = None) -> str:
    """Append a timestamp query parameter so no stale cached response is reused."""
    parts = urlsplit(url)
    stamp = urlencode({"_t": now_ms if now_ms is not None else int(time.time() * 1000)})
    query = f"{parts.query}&{stamp}" if parts.query else stamp
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def browser_headers(url: str, user_agent: str) -> dict[str, str]:
    """Browser-like headers; Referer/Origin help with hotlink protection."""
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return {
        "User-Agent": user_agent,
        "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Referer": origin + "/",
        "Origin": origin,
    }


class RemoteImageFetcher:
    """Fetches garment images referenced by URL.

    Strategies are tried in order and the first one that yields a decodable
    image wins:
    1. direct GET with a cache-busting parameter
    2. GET through a proxying relay
    """

    def __init__(
        self,
        config: FetchConfig,
        client: httpx.AsyncClient | None = None,
        strategies: list[FetchStrategy] | None = None,
    ):
        self.config = config
        self._client = client
        self.strategies = strategies if strategies is not None else self._default_strategies()

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    def _default_strategies(self) -> list[FetchStrategy]:
        strategies = [
            FetchStrategy("direct", self.config.direct_timeout, self._fetch_direct),
        ]
        if self.config.relay_url_template:
            strategies.append(
                FetchStrategy("relay", self.config.relay_timeout, self._fetch_via_relay)
            )
        return strategies

    async def _fetch_direct(self, client: httpx.AsyncClient, url: str, timeout: float) -> httpx.Response:
        return await client.get(
            add_cache_buster(url),
            headers={"Accept": "image/*,*/*;q=0.8"},
            timeout=timeout,
        )

    async def _fetch_via_relay(self, client: httpx.AsyncClient, url: str, timeout: float) -> httpx.Response:
        relay_url = self.config.relay_url_template.format(url=quote(url, safe=""))
        return await client.get(
            relay_url,
            headers=browser_headers(url, self.config.user_agent),
            timeout=timeout,
        )

    async def fetch(self, url: str) -> bytes:
        """Retrieve image bytes for a garment image URL.

        Args:
            url: Remote image URL (data-URIs are decoded without network access)

        Returns:
            Raw bytes of a decodable raster image

        Raises:
            GarmentImageUnavailable: if every strategy failed
        """
        if is_data_uri(url):
            try:
                _, data = parse_data_uri(url)
                return data
            except ValueError as e:
                raise GarmentImageUnavailable("data-uri", [str(e)]) from e

        attempts: list[str] = []
        last_error: Exception | None = None

        for strategy in self.strategies:
            try:
                response = await strategy.fetch(self.client, url, strategy.timeout)
                response.raise_for_status()
                data = response.content
                # A payload we cannot decode is as useless as no payload
                decode_image(data)
                logger.info("Garment image fetched via %s (%d bytes)", strategy.name, len(data))
                return data
            except httpx.TimeoutException as e:
                attempts.append(f"{strategy.name}: timed out after {strategy.timeout:.0f}s")
                last_error = e
            except httpx.HTTPStatusError as e:
                attempts.append(f"{strategy.name}: HTTP {e.response.status_code}")
                last_error = e
            except (httpx.HTTPError, ValueError) as e:
                attempts.append(f"{strategy.name}: {type(e).__name__}: {e}")
                last_error = e
            logger.warning("Garment image fetch via %s failed: %s", strategy.name, attempts[-1])

        raise GarmentImageUnavailable(url, attempts) from last_error

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
