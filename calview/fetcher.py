"""HTTP client for downloading iCal calendar feeds."""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .exceptions import FetchError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "calview/1.0 iCal-Client"

DEFAULT_HEADERS = {
    "Accept": "text/calendar, text/plain, */*",
    "Accept-Charset": "utf-8",
    "Cache-Control": "no-cache",
}


class FeedFetcher:
    """Async HTTP client for downloading iCal feeds.

    Retries are deliberately absent here; the caller decides whether to retry.
    """

    def __init__(self, settings: Any = None, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize feed fetcher.

        Args:
            settings: Application settings (``request_timeout``, ``user_agent``)
            client: Optional shared HTTP client; it is never closed by the fetcher
        """
        self.settings = settings
        self.client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

        logger.debug("Feed fetcher initialized (shared_client: %s)", not self._owns_client)

    async def __aenter__(self) -> "FeedFetcher":
        """Async context manager entry."""
        await self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client exists."""
        if self.client is None or self.client.is_closed:
            request_timeout = float(getattr(self.settings, "request_timeout", 30))
            timeout = httpx.Timeout(connect=10.0, read=request_timeout, write=10.0, pool=30.0)
            user_agent = getattr(self.settings, "user_agent", None) or DEFAULT_USER_AGENT

            self.client = httpx.AsyncClient(
                timeout=timeout,
                follow_redirects=True,
                verify=True,
                headers={"User-Agent": user_agent, **DEFAULT_HEADERS},
            )
            self._owns_client = True
        return self.client

    async def close(self) -> None:
        """Close HTTP client if the fetcher created it."""
        if self.client is not None and self._owns_client and not self.client.is_closed:
            await self.client.aclose()
            logger.debug("Closed HTTP client")
        if self._owns_client:
            self.client = None

    @staticmethod
    def validate_url(url: str) -> bool:
        """Check that ``url`` is an HTTP(S) URL with a hostname."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        return parsed.scheme in ("http", "https") and bool(parsed.hostname)

    async def fetch(self, url: str) -> str:
        """Download raw iCal text from ``url``.

        Args:
            url: HTTP(S) feed URL

        Returns:
            Response body as text

        Raises:
            FetchError: Invalid URL, non-success HTTP status, or empty body
            NetworkError: DNS failure, timeout, refused connection, or other transport error
        """
        if not self.validate_url(url):
            logger.error("Rejected feed URL: %s", url)
            raise FetchError(f"Invalid feed URL: {url}", url=url)

        client = await self._ensure_client()
        logger.debug("Fetching iCal feed from %s", url)

        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("HTTP error fetching feed from %s: %s", url, status)
            raise FetchError(
                f"Failed to fetch calendar data: HTTP {status} {e.response.reason_phrase}",
                url=url,
                status_code=status,
            ) from e
        except httpx.TransportError as e:
            logger.error("Network error fetching feed from %s: %s", url, e)
            raise NetworkError(f"Network error: {e}", url=url) from e

        content = response.text
        if not content or not content.strip():
            logger.error("Empty iCal content received from %s", url)
            raise FetchError("Empty content received", url=url, status_code=response.status_code)

        content_type = response.headers.get("content-type", "").lower()
        if content_type and not any(ct in content_type for ct in ("text/calendar", "text/plain")):
            logger.warning("Unexpected content type from %s: %s", url, content_type)

        logger.debug("Fetched %d bytes from %s", len(content), url)
        return content
