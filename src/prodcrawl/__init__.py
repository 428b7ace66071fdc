"""Product page crawler with static-to-rendered strategy escalation."""

__version__ = "0.1.0"

from prodcrawl.classifier import PageClassifier, is_product_page
from prodcrawl.config import CrawlSettings, settings
from prodcrawl.control import TaskController
from prodcrawl.document import Document, DocumentError, HtmlDocument
from prodcrawl.fetchers import (
    FetchError,
    FetchStrategy,
    FetchTimeout,
    NetworkFailure,
    RenderFailure,
    StaticFetcher,
    create_fetcher,
)
from prodcrawl.frontier import (
    AbstractFrontierStore,
    FrontierStoreError,
    SqliteFrontierStore,
    open_frontier,
)
from prodcrawl.models import (
    CrawlRun,
    EntryState,
    FetchStrategyName,
    FrontierEntry,
    RunEndReason,
    Task,
    TaskOutcome,
    TaskStatus,
)
from prodcrawl.orchestrator import CancellationToken, CrawlFatalError, CrawlOrchestrator
from prodcrawl.output_writer import OutputWriter, PersistResult
from prodcrawl.sitemap_generator import SitemapGenerator
from prodcrawl.task_store import ConfigStore, TaskConfigError

__all__ = [
    "AbstractFrontierStore",
    "CancellationToken",
    "ConfigStore",
    "CrawlFatalError",
    "CrawlOrchestrator",
    "CrawlRun",
    "CrawlSettings",
    "Document",
    "DocumentError",
    "EntryState",
    "FetchError",
    "FetchStrategy",
    "FetchStrategyName",
    "FetchTimeout",
    "FrontierEntry",
    "FrontierStoreError",
    "HtmlDocument",
    "NetworkFailure",
    "OutputWriter",
    "PageClassifier",
    "PersistResult",
    "RenderFailure",
    "RunEndReason",
    "SitemapGenerator",
    "SqliteFrontierStore",
    "StaticFetcher",
    "Task",
    "TaskConfigError",
    "TaskController",
    "TaskOutcome",
    "TaskStatus",
    "create_fetcher",
    "is_product_page",
    "open_frontier",
    "settings",
]
