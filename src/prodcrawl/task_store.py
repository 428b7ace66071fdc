"""Task definitions on disk: ``<tasks_dir>/<id>/<id>.json``."""

import json
import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from prodcrawl.constants import DEFAULT_TASKS_DIR
from prodcrawl.models import Task

logger = logging.getLogger(__name__)


class TaskConfigError(Exception):
    """Raised when a task definition is missing, unreadable or invalid."""


class ConfigStore:
    """Loads and saves task definitions.

    Each task owns a directory named after its id; the frontier database
    lives next to the JSON definition.
    """

    def __init__(self, tasks_dir: str = DEFAULT_TASKS_DIR):
        self.tasks_dir = Path(tasks_dir)

    def task_dir(self, task_id: str) -> Path:
        return self.tasks_dir / task_id

    def task_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / f"{task_id}.json"

    def exists(self, task_id: str) -> bool:
        return self.task_path(task_id).exists()

    def load(self, task_id: str) -> Task:
        """Load and validate one task.

        Raises:
            TaskConfigError: If the file is missing, not JSON or fails validation
        """
        path = self.task_path(task_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise TaskConfigError(f"Task {task_id!r} not found at {path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise TaskConfigError(f"Cannot read task {task_id!r}: {e}") from e

        try:
            task = Task.model_validate(data)
        except ValidationError as e:
            raise TaskConfigError(f"Invalid task {task_id!r}: {e}") from e

        if task.id != task_id:
            raise TaskConfigError(f"Task file {path} declares id {task.id!r}")
        return task

    def load_all(self) -> List[Task]:
        """Load every valid task; broken definitions are logged and skipped."""
        if not self.tasks_dir.exists():
            return []

        tasks = []
        for task_dir in sorted(self.tasks_dir.iterdir()):
            if not task_dir.is_dir() or not self.task_path(task_dir.name).exists():
                continue
            try:
                tasks.append(self.load(task_dir.name))
            except TaskConfigError as e:
                logger.error(f"Skipping task {task_dir.name}: {e}")
        return tasks

    def save(self, task: Task) -> Path:
        """Write a task definition, replacing any previous version atomically."""
        path = self.task_path(task.id)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(task.model_dump(mode="json"), f, indent=2)
        tmp_path.replace(path)

        logger.debug(f"Saved task {task.id} to {path}")
        return path

    def create(self, start_url: str, task_id: Optional[str] = None, **overrides) -> Task:
        """Create a task with default settings.

        Args:
            start_url: Absolute http(s) start URL
            task_id: Identifier (defaults to the start URL's hostname)
            **overrides: Any other Task field

        Raises:
            TaskConfigError: If the URL is invalid or the id is taken
        """
        task_id = task_id or urlparse(start_url).hostname
        if not task_id:
            raise TaskConfigError(f"Cannot derive a task id from {start_url!r}")
        if self.exists(task_id):
            raise TaskConfigError(f"Task {task_id!r} already exists")

        try:
            task = Task(id=task_id, start_url=start_url, **overrides)
        except ValidationError as e:
            raise TaskConfigError(f"Invalid task {task_id!r}: {e}") from e

        self.save(task)
        logger.info(f"Created task {task_id} at {self.task_path(task_id)}")
        return task
