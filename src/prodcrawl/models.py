"""Data models for product crawling."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional
from urllib.parse import urlparse

import soupsieve
from pydantic import BaseModel, Field, field_validator

from prodcrawl.constants import (
    DEFAULT_MAX_ACCEPTED,
    DEFAULT_CONCURRENCY,
    DEFAULT_SELECTOR_RULES,
)


class FetchStrategyName(str, Enum):
    """Fetch strategies a task can run under."""
    STATIC = "static"  # Plain HTTP + HTML parse
    RENDERED = "rendered"  # Headless browser rendering


class EntryState(str, Enum):
    """Lifecycle of a frontier entry."""
    PENDING = "pending"
    CLAIMED = "claimed"
    DONE = "done"


class TaskStatus(str, Enum):
    """Overall state of a task in the control surface."""
    IDLE = "idle"
    RUNNING = "running"
    ESCALATING = "escalating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RunEndReason(str, Enum):
    """Why a crawl run stopped dispatching."""
    DRAINED = "drained"
    CAP_REACHED = "cap_reached"
    CANCELLED = "cancelled"
    FATAL = "fatal"


class Task(BaseModel):
    """
    Definition of one crawl task.

    Validated by Pydantic when loaded so that a broken task file is
    rejected before any run starts.
    """

    id: str = Field(
        min_length=1,
        description="Stable identifier, typically the start URL's hostname"
    )

    start_url: str = Field(
        description="Absolute http(s) URL the crawl is seeded with"
    )

    max_accepted: int = Field(
        default=DEFAULT_MAX_ACCEPTED,
        ge=1,
        description="Cap on accepted product pages"
    )

    concurrency: int = Field(
        default=DEFAULT_CONCURRENCY,
        ge=1,
        le=100,
        description="Number of concurrent workers"
    )

    selector_rules: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SELECTOR_RULES),
        description="CSS selectors; a page matching any of them is a product page"
    )

    strategy: FetchStrategyName = Field(
        default=FetchStrategyName.STATIC,
        description="Current fetch strategy, escalated in place"
    )

    proxy_pool: List[str] = Field(
        default_factory=list,
        description="Proxy URLs handed to the fetch strategy"
    )

    output_dir: Optional[str] = Field(
        default=None,
        description="Capture directory; defaults to <output_dir>/<id>"
    )

    escalation_threshold: Optional[int] = Field(
        default=None,
        ge=0,
        description="Per-task override of the static yield threshold"
    )

    model_config = {"validate_assignment": True}

    @field_validator("start_url")
    @classmethod
    def _check_start_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"start_url must be an absolute http(s) URL, got {value!r}")
        return value

    @field_validator("selector_rules")
    @classmethod
    def _check_selector_rules(cls, value: List[str]) -> List[str]:
        for selector in value:
            try:
                soupsieve.compile(selector)
            except soupsieve.SelectorSyntaxError as e:
                raise ValueError(f"invalid selector rule {selector!r}: {e}") from e
        return value


@dataclass(frozen=True)
class FrontierEntry:
    """A URL pending or claimed for processing."""

    url: str
    normalized_key: str
    state: EntryState
    claimed_at: Optional[float] = None
    claim_token: Optional[str] = None
    claimed_by: Optional[str] = None


@dataclass
class CrawlRun:
    """One execution of the orchestrator under a single strategy."""

    strategy: FetchStrategyName
    started_at: datetime = field(default_factory=datetime.now)
    strategy_yield: int = 0
    dispatched: int = 0
    failed: int = 0
    stopped: bool = False
    ended_reason: Optional[RunEndReason] = None
    fatal_error: Optional[BaseException] = None


@dataclass
class TaskOutcome:
    """Result of running one task, as reported to the control surface."""

    task_id: str
    status: TaskStatus
    accepted: int = 0
    failed: int = 0
    dispatched: int = 0
    strategy: Optional[FetchStrategyName] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)

    @property
    def message(self) -> str:
        """Human-readable one-line status."""
        if self.status == TaskStatus.FAILED:
            return f"failed: {self.error}"
        if self.status == TaskStatus.CANCELLED:
            return "stopped, resumable"
        return self.status.value

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "message": self.message,
            "accepted": self.accepted,
            "failed": self.failed,
            "dispatched": self.dispatched,
            "strategy": self.strategy.value if self.strategy else None,
            "error": self.error,
        }
