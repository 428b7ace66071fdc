"""Shared fixtures and fakes for the product crawler tests."""

import asyncio
from typing import Callable, Dict, List, Optional, Union

import pytest

from prodcrawl.config import CrawlSettings
from prodcrawl.document import HtmlDocument
from prodcrawl.fetchers.base import FetchStrategy
from prodcrawl.frontier import SqliteFrontierStore
from prodcrawl.models import FetchStrategyName, Task

pytest_plugins = ('pytest_asyncio',)

KIB = 1024


def make_page(
    body: str = "",
    links: Optional[List[str]] = None,
    size: int = 0,
    head: bool = True,
) -> str:
    """Build an HTML page, padded with a comment to at least ``size`` bytes."""
    anchors = "".join(f'<a href="{href}">link</a>' for href in links or [])
    head_html = "<head><title>Test page</title></head>" if head else ""
    page = f"<html>{head_html}<body>{body}{anchors}</body></html>"
    missing = size - len(page.encode("utf-8"))
    if missing > 0:
        page = page.replace("</body>", f"<!--{'x' * missing}--></body>")
    return page


PageResponse = Union[str, Exception, List[Union[str, Exception]]]


class FakeFetcher(FetchStrategy):
    """In-memory fetch strategy.

    ``pages`` maps URL to HTML, to an exception to raise, or to a list of
    those consumed one per call (the last one repeats).
    """

    def __init__(
        self,
        pages: Dict[str, PageResponse],
        name: str = "static",
        delays: Optional[Dict[str, List[float]]] = None,
        on_fetch: Optional[Callable[[str], None]] = None,
    ):
        self.pages = pages
        self.name = name
        self.delays = {url: list(values) for url, values in (delays or {}).items()}
        self.on_fetch = on_fetch
        self.calls: List[str] = []
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def fetch(self, url: str) -> HtmlDocument:
        call_index = self.calls.count(url)
        self.calls.append(url)
        if self.on_fetch:
            self.on_fetch(url)

        delays = self.delays.get(url)
        if delays:
            await asyncio.sleep(delays.pop(0))
        else:
            await asyncio.sleep(0)

        response = self.pages.get(url)
        if isinstance(response, list):
            response = response[min(call_index, len(response) - 1)]
        if response is None:
            response = make_page()
        if isinstance(response, Exception):
            raise response
        return HtmlDocument(url, response, rendered=self.name == "rendered")


class FakeFetcherFactory:
    """Fetcher factory recording which strategies were requested."""

    def __init__(self, pages: Dict[str, PageResponse], **fetcher_kwargs):
        self.pages = pages
        self.fetcher_kwargs = fetcher_kwargs
        self.strategies: List[FetchStrategyName] = []
        self.fetchers: List[FakeFetcher] = []

    def __call__(self, strategy: FetchStrategyName, task: Task, crawl_settings: CrawlSettings) -> FakeFetcher:
        self.strategies.append(strategy)
        fetcher = FakeFetcher(self.pages, name=strategy.value, **self.fetcher_kwargs)
        self.fetchers.append(fetcher)
        return fetcher

    @property
    def calls(self) -> List[str]:
        return [url for fetcher in self.fetchers for url in fetcher.calls]


@pytest.fixture
def crawl_settings(tmp_path):
    """Settings with no backoff and quick polling."""
    return CrawlSettings(
        tasks_dir=str(tmp_path / "tasksConfig"),
        output_dir=str(tmp_path / "output"),
        initial_backoff_seconds=0.0,
        max_backoff_seconds=0.0,
        idle_poll_seconds=0.01,
        watchdog_interval_seconds=0.05,
        stuck_threshold_seconds=60.0,
    )


@pytest.fixture
def store(tmp_path):
    """A fresh frontier store."""
    frontier = SqliteFrontierStore(str(tmp_path / "frontier.db"), run_id="test-run")
    yield frontier
    frontier.close()


@pytest.fixture
def task():
    return Task(
        id="example.com",
        start_url="https://example.com/",
        max_accepted=2,
        concurrency=2,
        selector_rules=[".product"],
    )
