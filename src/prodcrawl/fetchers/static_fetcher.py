"""Static fetch strategy: plain HTTP GET and HTML parse, no JavaScript."""

import logging
import random
import time
from typing import Dict, Optional

import httpx

from prodcrawl.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS, RETRYABLE_CLIENT_STATUS_CODES
from prodcrawl.document import HtmlDocument
from prodcrawl.fetchers.base import FetchStrategy, FetchTimeout, NetworkFailure
from prodcrawl.fetchers.proxy_rotation import ProxyRotator

logger = logging.getLogger(__name__)


class StaticFetcher(FetchStrategy):
    """Fetches pages with httpx.

    One AsyncClient is kept per proxy so connections are pooled across
    workers.
    """

    name = "static"

    # Realistic browser user agents (rotate to avoid detection)
    BROWSER_USER_AGENTS = [
        # Chrome on Windows
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        # Chrome on macOS
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        # Firefox on Windows
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
        # Safari on macOS
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    ]

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        proxies: Optional[ProxyRotator] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the static fetcher.

        Args:
            user_agent: Custom user agent string (random browser UA if None)
            timeout: Request timeout in seconds
            proxies: Optional proxy rotation for the task's proxy pool
            transport: Optional httpx transport (used by tests)
        """
        self.user_agent = user_agent or random.choice(self.BROWSER_USER_AGENTS)
        self.timeout = timeout
        self.proxies = proxies or ProxyRotator()
        self._transport = transport
        self._clients: Dict[Optional[str], httpx.AsyncClient] = {}

        self.headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "DNT": "1",  # Do Not Track
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
        }

    async def stop(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    def _client_for(self, proxy_url: Optional[str]) -> httpx.AsyncClient:
        client = self._clients.get(proxy_url)
        if client is None:
            client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                follow_redirects=True,
                proxy=proxy_url,
                transport=self._transport,
            )
            self._clients[proxy_url] = client
        return client

    async def fetch(self, url: str) -> HtmlDocument:
        proxy = self.proxies.next_proxy()
        client = self._client_for(proxy.url if proxy else None)

        start_time = time.time()
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Request timeout after {self.timeout}s", url=url) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            retryable = status >= 500 or status in RETRYABLE_CLIENT_STATUS_CODES
            raise NetworkFailure(
                f"HTTP {status}", url=url, status_code=status, retryable=retryable
            ) from e
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Connection error: {e}", url=url) from e

        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type.lower():
            raise NetworkFailure(
                f"Not an HTML document ({content_type})",
                url=url,
                status_code=response.status_code,
                retryable=False,
            )

        logger.debug(
            f"Fetched {url} (status={response.status_code}, "
            f"time={time.time() - start_time:.2f}s, bytes={len(response.content)})"
        )
        return HtmlDocument(url, response.text, final_url=str(response.url))
