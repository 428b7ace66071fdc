"""
Fetch strategies.

Provides the static (httpx) and rendered (Playwright) fetchers behind the
common FetchStrategy contract, plus the factory the orchestrator uses to
build one for a task.
"""

from prodcrawl.config import CrawlSettings
from prodcrawl.models import FetchStrategyName, Task

from .base import (
    FetchError,
    FetchStrategy,
    FetchTimeout,
    NetworkFailure,
    RenderFailure,
)
from .proxy_rotation import ProxyConfig, ProxyRotator, ProxyType
from .static_fetcher import StaticFetcher


def create_fetcher(strategy: FetchStrategyName, task: Task, crawl_settings: CrawlSettings) -> FetchStrategy:
    """Build the fetch strategy a task's run should use.

    Playwright is imported lazily so static crawls work without browser
    binaries installed.
    """
    proxies = ProxyRotator(task.proxy_pool)

    if strategy == FetchStrategyName.RENDERED:
        from .browser_fetcher import BrowserFetcher
        return BrowserFetcher(
            user_agent=crawl_settings.user_agent,
            timeout=crawl_settings.request_timeout_seconds,
            headless=crawl_settings.headless,
            proxies=proxies,
        )

    return StaticFetcher(
        user_agent=crawl_settings.user_agent,
        timeout=crawl_settings.request_timeout_seconds,
        proxies=proxies,
    )


__all__ = [
    "FetchError",
    "FetchStrategy",
    "FetchTimeout",
    "NetworkFailure",
    "RenderFailure",
    "ProxyConfig",
    "ProxyRotator",
    "ProxyType",
    "StaticFetcher",
    "create_fetcher",
]
