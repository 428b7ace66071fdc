"""Crawl orchestrator: drives a task's frontier through one or more runs.

A task starts under its configured fetch strategy. Each run dispatches
``concurrency`` worker coroutines that claim URLs from the frontier,
fetch and classify them, persist accepted pages and enqueue outbound
links. A watchdog coroutine requeues claims that have been held too long
and recovers the frontier after storage faults.

When a static run ends with fewer accepted pages than the escalation
threshold, the task switches to the rendered strategy and a second run
continues over the same frontier.
"""

import asyncio
import logging
import random
import threading
from pathlib import Path
from typing import Callable, List, Optional

from prodcrawl.classifier import PageClassifier
from prodcrawl.config import CrawlSettings
from prodcrawl.constants import EXPONENTIAL_BACKOFF_BASE
from prodcrawl.document import Document, DocumentError
from prodcrawl.fetchers import FetchError, FetchStrategy, create_fetcher
from prodcrawl.frontier import AbstractFrontierStore, FrontierStoreError
from prodcrawl.models import (
    CrawlRun,
    FetchStrategyName,
    FrontierEntry,
    RunEndReason,
    Task,
    TaskOutcome,
    TaskStatus,
)
from prodcrawl.output_writer import OutputWriter, PersistResult
from prodcrawl.url_utils import is_crawlable_page, is_same_domain, to_absolute_url

logger = logging.getLogger(__name__)

FetcherFactory = Callable[[FetchStrategyName, Task, CrawlSettings], FetchStrategy]


class CrawlFatalError(Exception):
    """Raised when a task cannot continue (frontier unrecoverable)."""


class CancellationToken:
    """Cooperative stop signal shared between a controller and its orchestrators.

    Backed by a threading.Event so it can be set from a signal handler or
    another thread.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CrawlOrchestrator:
    """Runs one task to completion, cancellation or failure."""

    def __init__(
        self,
        task: Task,
        store: AbstractFrontierStore,
        crawl_settings: Optional[CrawlSettings] = None,
        config_store=None,
        fetcher_factory: FetcherFactory = create_fetcher,
        token: Optional[CancellationToken] = None,
        writer: Optional[OutputWriter] = None,
    ):
        """Initialize the orchestrator.

        Args:
            task: Task to crawl; its strategy is updated in place on escalation
            store: Frontier store opened for this task
            crawl_settings: Engine tunables (defaults if None)
            config_store: Persists the task when its strategy changes
            fetcher_factory: Builds the fetch strategy for each run
            token: Cancellation token (a private one if None)
            writer: Output writer (defaults to the task's output directory)
        """
        self.task = task
        self.store = store
        self.settings = crawl_settings or CrawlSettings()
        self.config_store = config_store
        self.fetcher_factory = fetcher_factory
        self.token = token or CancellationToken()

        output_dir = task.output_dir or str(Path(self.settings.output_dir) / task.id)
        self.writer = writer or OutputWriter(output_dir, self.settings.min_content_bytes)
        self.classifier = PageClassifier(task.selector_rules)

        self.status = TaskStatus.IDLE
        self.runs: List[CrawlRun] = []

        self._in_flight = 0
        self._fatal: Optional[CrawlFatalError] = None
        self._recovery_lock = asyncio.Lock()
        self._recoveries = 0
        self._store_generation = 0
        self._last_accepted = 0

    @property
    def escalation_threshold(self) -> int:
        if self.task.escalation_threshold is not None:
            return self.task.escalation_threshold
        return self.settings.escalation_threshold

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> TaskOutcome:
        """Run the task until it completes, is cancelled or fails.

        Returns:
            TaskOutcome; storage faults that exhaust recovery are reported
            as FAILED rather than raised.
        """
        logger.info(
            f"Starting task {self.task.id} (strategy={self.task.strategy.value}, "
            f"cap={self.task.max_accepted}, concurrency={self.task.concurrency})"
        )
        self.status = TaskStatus.RUNNING

        try:
            self._seed()
            while True:
                run = CrawlRun(strategy=self.task.strategy)
                self.runs.append(run)
                await self._execute_run(run)

                if not self._should_escalate(run):
                    break
                self._escalate(run)
        except CrawlFatalError as e:
            logger.error(f"Task {self.task.id} failed: {e}")
            self.status = TaskStatus.FAILED
            return self._outcome(error=str(e))

        self.status = TaskStatus.CANCELLED if self.token.cancelled else TaskStatus.COMPLETED
        outcome = self._outcome()
        logger.info(
            f"Task {self.task.id} {outcome.message}: accepted={outcome.accepted}, "
            f"dispatched={outcome.dispatched}, failed={outcome.failed}"
        )
        return outcome

    def _seed(self) -> None:
        """Enqueue the start URL; a no-op when the frontier already knows it."""
        try:
            if self.store.enqueue(self.task.start_url):
                logger.info(f"Seeded frontier with {self.task.start_url}")
            self._last_accepted = self.store.accepted_count()
        except FrontierStoreError as e:
            raise CrawlFatalError(f"Frontier unavailable at start: {e}") from e

    def _should_escalate(self, run: CrawlRun) -> bool:
        if run.strategy != FetchStrategyName.STATIC:
            return False
        if run.ended_reason not in (RunEndReason.DRAINED, RunEndReason.CAP_REACHED):
            return False
        if self.token.cancelled:
            return False
        if run.strategy_yield >= self.escalation_threshold:
            return False
        return self._accepted_count() < self.task.max_accepted

    def _escalate(self, run: CrawlRun) -> None:
        self.status = TaskStatus.ESCALATING
        logger.warning(
            f"Static run of {self.task.id} yielded {run.strategy_yield} pages "
            f"(< {self.escalation_threshold}), switching to rendered strategy"
        )
        self.task.strategy = FetchStrategyName.RENDERED

        if self.config_store is not None:
            try:
                self.config_store.save(self.task)
            except OSError as e:
                logger.error(f"Could not persist strategy change for {self.task.id}: {e}")

        self.status = TaskStatus.RUNNING

    def _accepted_count(self) -> int:
        try:
            self._last_accepted = self.store.accepted_count()
        except FrontierStoreError as e:
            logger.warning(f"Using last known accepted count for {self.task.id}: {e}")
        return self._last_accepted

    def _outcome(self, error: Optional[str] = None) -> TaskOutcome:
        return TaskOutcome(
            task_id=self.task.id,
            status=self.status,
            accepted=self._accepted_count(),
            failed=sum(run.failed for run in self.runs),
            dispatched=sum(run.dispatched for run in self.runs),
            strategy=self.task.strategy,
            error=error,
        )

    # ------------------------------------------------------------------
    # One run
    # ------------------------------------------------------------------

    async def _execute_run(self, run: CrawlRun) -> None:
        logger.info(f"Run started for {self.task.id} under {run.strategy.value} strategy")
        self._in_flight = 0
        watchdog_stop = asyncio.Event()

        async with self.fetcher_factory(run.strategy, self.task, self.settings) as fetcher:
            watchdog = asyncio.create_task(self._watchdog(watchdog_stop))
            workers = [
                asyncio.create_task(self._worker(worker_id, run, fetcher))
                for worker_id in range(self.task.concurrency)
            ]
            try:
                await asyncio.gather(*workers)
            except BaseException:
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
                raise
            finally:
                watchdog_stop.set()
                await watchdog

        run.stopped = self.token.cancelled
        if self._fatal is not None:
            run.ended_reason = RunEndReason.FATAL
            run.fatal_error = self._fatal
            raise self._fatal
        if run.stopped:
            run.ended_reason = RunEndReason.CANCELLED
        elif self._accepted_count() >= self.task.max_accepted:
            run.ended_reason = RunEndReason.CAP_REACHED
        else:
            run.ended_reason = RunEndReason.DRAINED

        logger.info(
            f"Run ended for {self.task.id} ({run.ended_reason.value}): "
            f"yield={run.strategy_yield}, dispatched={run.dispatched}, failed={run.failed}"
        )

    async def _worker(self, worker_id: int, run: CrawlRun, fetcher: FetchStrategy) -> None:
        while self._fatal is None and not self.token.cancelled:
            generation = self._store_generation
            try:
                if self.store.accepted_count() >= self.task.max_accepted:
                    logger.debug(f"Worker {worker_id}: accepted cap reached")
                    return

                entry = self.store.claim_next()
                if entry is None:
                    if self._in_flight == 0 and self.store.is_drained():
                        logger.debug(f"Worker {worker_id}: frontier drained")
                        return
                    await asyncio.sleep(self.settings.idle_poll_seconds)
                    continue

                self._in_flight += 1
                try:
                    await self._process_entry(entry, run, fetcher)
                finally:
                    self._in_flight -= 1

            except FrontierStoreError as e:
                logger.warning(f"Worker {worker_id}: frontier error: {e}")
                try:
                    await self._recover_store(generation)
                except CrawlFatalError:
                    return

    # ------------------------------------------------------------------
    # Per-URL pipeline
    # ------------------------------------------------------------------

    async def _process_entry(self, entry: FrontierEntry, run: CrawlRun, fetcher: FetchStrategy) -> None:
        """Fetch, classify, persist and expand one claimed entry.

        Per-URL failures are logged and the entry is finished as not
        accepted. Only FrontierStoreError propagates.
        """
        if self.store.is_visited(entry.url):
            logger.debug(f"Skipping already visited {entry.url}")
            return

        run.dispatched += 1
        try:
            await self._handle_entry(entry, run, fetcher)
        except FrontierStoreError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error processing {entry.url}: {e}", exc_info=True)
            run.failed += 1
            self.store.mark_done(entry, accepted=False)

    async def _handle_entry(self, entry: FrontierEntry, run: CrawlRun, fetcher: FetchStrategy) -> None:
        document = await self._fetch_with_retries(fetcher, entry)
        if document is None:
            run.failed += 1
            self.store.mark_done(entry, accepted=False)
            return

        try:
            is_product = self.classifier.classify(document)
            links = self._extract_links(document)
        except DocumentError as e:
            logger.warning(f"Could not evaluate {entry.url}: {e}")
            self.store.mark_done(entry, accepted=False)
            return

        result = PersistResult(accepted=False)
        if is_product:
            result = self._persist(document, entry.url)

        if self.store.accepted_count() < self.task.max_accepted:
            new_links = sum(1 for link in links if self.store.enqueue(link))
            if new_links:
                logger.debug(f"Enqueued {new_links} new links from {entry.url}")

        counted = self.store.mark_done(entry, accepted=result.accepted, cap=self.task.max_accepted)

        if result.accepted and not counted:
            # Cap reached by another worker, or a requeued duplicate already finished
            self.writer.discard(result.path)
        elif counted:
            run.strategy_yield += 1
            logger.info(f"✓ Accepted product page {result.path.name}: {entry.url}")

    def _persist(self, document: Document, url: str) -> PersistResult:
        while True:
            sequence_number = self.store.next_sequence()
            try:
                return self.writer.persist(document, url, sequence_number)
            except FileExistsError:
                # Frontier counter behind the captures on disk (fresh frontier)
                logger.warning(f"Capture number {sequence_number} already used, taking the next one")
            except OSError as e:
                logger.error(f"Could not write capture for {url}: {e}")
                return PersistResult(accepted=False)

    def _extract_links(self, document: Document) -> List[str]:
        """Absolute, same-domain, page-like links of a document."""
        base_url = getattr(document, "final_url", document.url)
        links = []
        for href in document.links():
            absolute = to_absolute_url(base_url, href)
            if not is_same_domain(self.task.start_url, absolute):
                continue
            if not is_crawlable_page(absolute):
                continue
            links.append(absolute)
        return links

    async def _fetch_with_retries(self, fetcher: FetchStrategy, entry: FrontierEntry) -> Optional[Document]:
        """Fetch an entry's URL, retrying transient errors with backoff.

        The claim is restamped before every retry so that a slow but live
        retry sequence is not requeued by the watchdog.

        Returns:
            The document, or None once the URL has permanently failed
        """
        url = entry.url
        max_retries = self.settings.max_retries
        for attempt in range(max_retries + 1):
            if attempt > 0 and not self.store.refresh_claim(entry):
                logger.debug(f"Claim on {url} was requeued while retrying")
            try:
                return await fetcher.fetch(url)
            except FetchError as e:
                if not e.retryable or attempt >= max_retries:
                    logger.warning(
                        f"✗ Permanently failed after {attempt} retries: {url} "
                        f"({type(e).__name__}: {e})"
                    )
                    return None

                delay = self._calculate_backoff_delay(attempt)
                logger.info(
                    f"Will retry ({attempt + 1}/{max_retries}) after {delay:.1f}s: "
                    f"{url} ({type(e).__name__}: {e})"
                )
                await asyncio.sleep(delay)
        return None

    def _calculate_backoff_delay(self, retry_count: int) -> float:
        """Calculate exponential backoff delay with jitter.

        Args:
            retry_count: Number of retries already attempted (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = self.settings.initial_backoff_seconds * (EXPONENTIAL_BACKOFF_BASE ** retry_count)
        delay = min(delay, self.settings.max_backoff_seconds)
        # Add jitter (±25%) to prevent thundering herd
        jitter = delay * random.uniform(-0.25, 0.25)
        return max(0.0, delay + jitter)

    # ------------------------------------------------------------------
    # Watchdog and store recovery
    # ------------------------------------------------------------------

    async def _watchdog(self, stop: asyncio.Event) -> None:
        """Periodically requeue stale claims until the run ends."""
        interval = self.settings.watchdog_interval_seconds
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass

            generation = self._store_generation
            try:
                self.requeue_stuck_entries()
            except FrontierStoreError as e:
                logger.warning(f"Watchdog: frontier error: {e}")
                try:
                    await self._recover_store(generation)
                except CrawlFatalError:
                    return

    def requeue_stuck_entries(self) -> int:
        """Move claims older than the stuck threshold back to Pending.

        Returns:
            Number of entries requeued
        """
        requeued = 0
        for entry in self.store.claimed_older_than(self.settings.stuck_threshold_seconds):
            if self.store.requeue_stuck(entry):
                requeued += 1
                logger.warning(
                    f"Requeued stuck entry {entry.url} (claimed by {entry.claimed_by})"
                )
        return requeued

    async def _recover_store(self, seen_generation: int) -> None:
        """Reopen the frontier after a storage fault.

        Concurrent callers that observed the same fault share one attempt.
        When the reopened frontier is drained and the cap is unmet, the
        start URL is enqueued again.

        Raises:
            CrawlFatalError: When recovery attempts are exhausted
        """
        async with self._recovery_lock:
            if self._fatal is not None:
                raise self._fatal
            if self._store_generation != seen_generation:
                return

            self._recoveries += 1
            if self._recoveries > self.settings.max_store_recoveries:
                self._fatal = CrawlFatalError(
                    f"Frontier for {self.task.id} still failing after "
                    f"{self.settings.max_store_recoveries} recovery attempts"
                )
                raise self._fatal

            logger.warning(
                f"Recovering frontier for {self.task.id} "
                f"(attempt {self._recoveries}/{self.settings.max_store_recoveries})"
            )
            await asyncio.sleep(self.settings.idle_poll_seconds)

            try:
                self.store.reopen()
                if self.store.is_drained() and self.store.accepted_count() < self.task.max_accepted:
                    if self.store.enqueue(self.task.start_url):
                        logger.info(f"Re-seeded frontier with {self.task.start_url}")
            except FrontierStoreError as e:
                logger.error(f"Frontier reopen failed for {self.task.id}: {e}")
                return

            self._store_generation += 1
