"""Fetch strategy contract shared by the static and rendered fetchers."""

from abc import ABC, abstractmethod
from typing import Optional

from prodcrawl.document import Document


class FetchError(Exception):
    """Raised when a URL cannot be fetched."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None, retryable: bool = True):
        self.message = message
        self.url = url
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class FetchTimeout(FetchError):
    """The request or navigation exceeded its timeout."""


class NetworkFailure(FetchError):
    """Connection, DNS or HTTP status failure."""


class RenderFailure(FetchError):
    """The browser could not render the page."""


class FetchStrategy(ABC):
    """Produces a Document for a URL.

    Strategies own a client or browser for their lifetime and are used
    as async context managers:

        async with StaticFetcher(...) as fetcher:
            document = await fetcher.fetch("https://example.com")
    """

    name: str = "base"

    async def __aenter__(self) -> "FetchStrategy":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        """Acquire clients/browsers. Default: nothing to do."""

    async def stop(self) -> None:
        """Release clients/browsers. Default: nothing to do."""

    @abstractmethod
    async def fetch(self, url: str) -> Document:
        """Fetch and parse one URL.

        Raises:
            FetchTimeout, NetworkFailure, RenderFailure
        """
