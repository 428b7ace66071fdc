"""Task control surface: start, stop and inspect tasks in one process."""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from prodcrawl.config import CrawlSettings
from prodcrawl.fetchers import create_fetcher
from prodcrawl.frontier import open_frontier
from prodcrawl.models import TaskOutcome, TaskStatus
from prodcrawl.orchestrator import CancellationToken, CrawlOrchestrator, FetcherFactory
from prodcrawl.task_store import ConfigStore

logger = logging.getLogger(__name__)


class TaskController:
    """Runs tasks concurrently, each in its own failure domain.

    Every started task gets its own frontier handle (bound to a fresh run
    id) and its own cancellation token. A failure in one task never
    affects the others.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        crawl_settings: Optional[CrawlSettings] = None,
        fetcher_factory: FetcherFactory = create_fetcher,
    ):
        self.config_store = config_store
        self.settings = crawl_settings or CrawlSettings()
        self.fetcher_factory = fetcher_factory

        self._running: Dict[str, CrawlOrchestrator] = {}
        self._outcomes: Dict[str, TaskOutcome] = {}
        self._stop_requested = False

    @property
    def running_tasks(self):
        return list(self._running)

    async def start(self, task_ids: Iterable[str]) -> Dict[str, TaskOutcome]:
        """Run the given tasks concurrently until each one ends.

        Args:
            task_ids: Task identifiers; duplicates are ignored

        Returns:
            Outcome per task id, in the order given
        """
        unique_ids = list(dict.fromkeys(task_ids))
        results = await asyncio.gather(
            *(self._run_task(task_id) for task_id in unique_ids),
            return_exceptions=True,
        )

        outcomes = {}
        for task_id, result in zip(unique_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Task {task_id} crashed: {result}", exc_info=result)
                result = TaskOutcome(task_id=task_id, status=TaskStatus.FAILED, error=str(result))
            outcomes[task_id] = result
        return outcomes

    async def _run_task(self, task_id: str) -> TaskOutcome:
        if task_id in self._running:
            logger.warning(f"Task {task_id} is already running in this process")
            return TaskOutcome(
                task_id=task_id,
                status=TaskStatus.FAILED,
                error="already running in this process",
            )

        try:
            task = self.config_store.load(task_id)
            store = open_frontier(task.id, str(self.config_store.tasks_dir))
        except Exception as e:
            logger.error(f"Cannot start task {task_id}: {e}")
            outcome = TaskOutcome(task_id=task_id, status=TaskStatus.FAILED, error=str(e))
            self._outcomes[task_id] = outcome
            return outcome

        token = CancellationToken()
        if self._stop_requested:
            token.cancel()

        orchestrator = CrawlOrchestrator(
            task,
            store,
            crawl_settings=self.settings,
            config_store=self.config_store,
            fetcher_factory=self.fetcher_factory,
            token=token,
        )
        self._running[task_id] = orchestrator
        logger.info(f"Task {task_id} started (run {store.run_id})")

        try:
            outcome = await orchestrator.run()
        except Exception as e:
            logger.error(f"Task {task_id} failed: {e}", exc_info=True)
            orchestrator.status = TaskStatus.FAILED
            outcome = TaskOutcome(
                task_id=task_id,
                status=TaskStatus.FAILED,
                strategy=task.strategy,
                error=str(e),
            )
        finally:
            self._running.pop(task_id, None)
            store.close()

        self._outcomes[task_id] = outcome
        return outcome

    def stop(self, task_id: str) -> bool:
        """Request cooperative cancellation of a running task.

        Returns:
            True if the task was running
        """
        orchestrator = self._running.get(task_id)
        if orchestrator is None:
            return False
        logger.info(f"Stopping task {task_id}")
        orchestrator.token.cancel()
        return True

    def stop_all(self) -> None:
        """Cancel every running task and any task started afterwards."""
        self._stop_requested = True
        for task_id in list(self._running):
            self.stop(task_id)

    def status(self, task_id: str) -> Dict[str, Any]:
        """Current state of a task.

        Live counts for a running task, the last outcome for a task that
        ran in this process, otherwise the counts persisted in its frontier.

        Raises:
            TaskConfigError: If the task is unknown
        """
        orchestrator = self._running.get(task_id)
        if orchestrator is not None:
            return {
                "task_id": task_id,
                "status": orchestrator.status.value,
                "strategy": orchestrator.task.strategy.value,
                **orchestrator.store.counts(),
            }

        if task_id in self._outcomes:
            return self._outcomes[task_id].to_dict()

        task = self.config_store.load(task_id)
        store = open_frontier(task.id, str(self.config_store.tasks_dir))
        try:
            counts = store.counts()
        finally:
            store.close()
        return {
            "task_id": task_id,
            "status": TaskStatus.IDLE.value,
            "strategy": task.strategy.value,
            **counts,
        }
