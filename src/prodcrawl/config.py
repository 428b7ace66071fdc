from dotenv import load_dotenv
from dataclasses import dataclass
from typing import Optional
from pathlib import Path
import json
import os

from prodcrawl.constants import (
    DEFAULT_TASKS_DIR,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_MAX_RETRIES,
    INITIAL_BACKOFF_DELAY_SECONDS,
    MAX_BACKOFF_DELAY_SECONDS,
    DEFAULT_ESCALATION_THRESHOLD,
    DEFAULT_STUCK_THRESHOLD_SECONDS,
    DEFAULT_WATCHDOG_INTERVAL_SECONDS,
    MAX_STORE_RECOVERIES,
    MIN_CONTENT_BYTES,
    IDLE_POLL_SECONDS,
)

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    TASKS_DIR = os.getenv("PRODCRAWL_TASKS_DIR", DEFAULT_TASKS_DIR)
    OUTPUT_DIR = os.getenv("PRODCRAWL_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    USER_AGENT = os.getenv("USER_AGENT")


settings = Settings()


@dataclass
class CrawlSettings:
    """Tunables for the crawl engine.

    Values are shared by every task run in a process; per-task values
    (cap, concurrency, selectors) live on the Task itself.
    """

    tasks_dir: str = DEFAULT_TASKS_DIR
    output_dir: str = DEFAULT_OUTPUT_DIR

    # Fetching
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff_seconds: float = INITIAL_BACKOFF_DELAY_SECONDS
    max_backoff_seconds: float = MAX_BACKOFF_DELAY_SECONDS
    user_agent: Optional[str] = None
    headless: bool = True

    # Strategy selection
    escalation_threshold: int = DEFAULT_ESCALATION_THRESHOLD

    # Watchdog
    stuck_threshold_seconds: float = DEFAULT_STUCK_THRESHOLD_SECONDS
    watchdog_interval_seconds: float = DEFAULT_WATCHDOG_INTERVAL_SECONDS
    max_store_recoveries: int = MAX_STORE_RECOVERIES

    # Output
    min_content_bytes: int = MIN_CONTENT_BYTES

    # Dispatch
    idle_poll_seconds: float = IDLE_POLL_SECONDS

    @classmethod
    def from_env(cls) -> "CrawlSettings":
        """Load settings from environment variables.

        Environment variables should be prefixed with PRODCRAWL_
        e.g., PRODCRAWL_STUCK_THRESHOLD_SECONDS=300

        Returns:
            CrawlSettings with values from environment
        """
        crawl_settings = cls(
            tasks_dir=settings.TASKS_DIR,
            output_dir=settings.OUTPUT_DIR,
            user_agent=settings.USER_AGENT,
        )
        prefix = "PRODCRAWL_"

        for field_name in crawl_settings.__dataclass_fields__:
            env_key = f"{prefix}{field_name.upper()}"
            env_value = os.getenv(env_key)

            if env_value is None:
                continue

            field_type = crawl_settings.__dataclass_fields__[field_name].type
            try:
                if field_type in (int, "int"):
                    setattr(crawl_settings, field_name, int(env_value))
                elif field_type in (float, "float"):
                    setattr(crawl_settings, field_name, float(env_value))
                elif field_type in (bool, "bool"):
                    setattr(crawl_settings, field_name, env_value.lower() in ("1", "true", "yes"))
                elif field_type in (str, "str"):
                    setattr(crawl_settings, field_name, env_value)
            except ValueError:
                pass  # Keep default if conversion fails

        return crawl_settings

    @classmethod
    def from_file(cls, path: str) -> "CrawlSettings":
        """Load settings from a JSON configuration file.

        Args:
            path: Path to JSON configuration file

        Returns:
            CrawlSettings with values from file
        """
        crawl_settings = cls()
        file_path = Path(path)

        if not file_path.exists():
            return crawl_settings

        with open(file_path, 'r') as f:
            config = json.load(f)

        section = config.get('crawl', config)

        for field_name in crawl_settings.__dataclass_fields__:
            if field_name in section:
                setattr(crawl_settings, field_name, section[field_name])

        return crawl_settings

    def to_dict(self) -> dict:
        """Convert settings to dictionary.

        Returns:
            Dictionary of all setting values
        """
        return {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }
