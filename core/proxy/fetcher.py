# core/proxy/fetcher.py
"""Upstream fetching on behalf of the proxy"""

import asyncio
import logging
from typing import Optional, Union

import httpx

from core.errors import FetchFailed
from core.proxy.types import DEFAULT_CONTENT_TYPE, AssetResource, HtmlResource

logger = logging.getLogger(__name__)

USER_AGENT = "SUB-Recoded-Proxy/1.0 (+https://example.com)"
FETCH_TIMEOUT = 15.0
MAX_CONNECTIONS = 100

FetchedResource = Union[HtmlResource, AssetResource]


class Fetcher:
    """
    Fetches URLs with a reusable httpx.AsyncClient.

    The client is created once per application and shared by all requests;
    nothing about it is exposed to callers. One attempt per fetch, no retries.
    """

    def __init__(self, timeout: float = FETCH_TIMEOUT, user_agent: str = USER_AGENT,
                 max_connections: int = MAX_CONNECTIONS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            timeout: Upper bound in seconds for a whole fetch
            user_agent: User-Agent sent upstream
            max_connections: Connection pool size
            transport: Optional custom httpx transport
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_connections = max_connections
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()

    async def initialize(self):
        """Creates the shared client"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=self.max_connections),
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
                transport=self.transport,
            )
            logger.debug("Httpx client created")

    async def cleanup(self):
        """Closes the shared client"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("Httpx client closed")

    async def _get(self, url: str) -> httpx.Response:
        await self.initialize()

        try:
            response = await asyncio.wait_for(self._client.get(url), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise FetchFailed(url, cause=e, detail=f"timed out after {self.timeout:g}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchFailed(url, cause=e) from e

        if not response.is_success:
            raise FetchFailed(url, status=response.status_code, reason=response.reason_phrase)

        return response

    async def fetch(self, url: str) -> FetchedResource:
        """
        Fetches a URL and classifies it as HTML or opaque asset

        Args:
            url: Absolute URL

        Returns:
            FetchedResource: HtmlResource with decoded text and the final URL,
            or AssetResource with raw bytes

        Raises:
            FetchFailed: Non-2xx status or network error
        """
        response = await self._get(url)
        content_type = response.headers.get("content-type", "")

        if "html" in content_type.lower():
            return HtmlResource(body=response.text, effective_base_url=str(response.url))

        return AssetResource(content=response.content, content_type=content_type or DEFAULT_CONTENT_TYPE)

    async def fetch_asset(self, url: str) -> AssetResource:
        """
        Fetches a URL as opaque bytes, whatever its content type

        Raises:
            FetchFailed: Non-2xx status or network error
        """
        response = await self._get(url)
        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        return AssetResource(content=response.content, content_type=content_type)
