# src/prodcrawl/constants.py
"""Centralized constants for the product crawler.

This module contains magic numbers and default values that are used
across multiple modules. For user-configurable values, see config.py
and CrawlSettings.
"""

# =============================================================================
# Task Defaults
# =============================================================================

# Cap on accepted product pages for a newly created task
DEFAULT_MAX_ACCEPTED = 1000

# Concurrent workers for a newly created task
DEFAULT_CONCURRENCY = 5

# Selector rules for a newly created task (any-match)
DEFAULT_SELECTOR_RULES = [".product", ".item", ".product-item"]

# Directory holding one sub-directory per task (config + frontier)
DEFAULT_TASKS_DIR = "tasksConfig"

# Directory holding one sub-directory of captures per task
DEFAULT_OUTPUT_DIR = "output"

# File name of the durable frontier database inside a task directory
FRONTIER_DB_FILENAME = "frontier.db"


# =============================================================================
# Crawler Constants
# =============================================================================

# Default request timeout in seconds
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30

# Default maximum retries for failed fetches
DEFAULT_MAX_RETRIES = 3

# Base for exponential backoff calculation
EXPONENTIAL_BACKOFF_BASE = 2

# Initial backoff delay in seconds
INITIAL_BACKOFF_DELAY_SECONDS = 2.0

# Maximum backoff delay in seconds (cap for exponential growth)
MAX_BACKOFF_DELAY_SECONDS = 30.0

# HTTP status codes in the 4xx range that are still worth retrying
RETRYABLE_CLIENT_STATUS_CODES = [408, 429]

# Static-strategy yield below which the task escalates to rendering
DEFAULT_ESCALATION_THRESHOLD = 20

# Seconds between frontier polls while other workers are still busy
IDLE_POLL_SECONDS = 0.5


# =============================================================================
# Watchdog Constants
# =============================================================================

# Seconds a claim may be held before it is presumed abandoned
DEFAULT_STUCK_THRESHOLD_SECONDS = 120.0

# Seconds between watchdog sweeps
DEFAULT_WATCHDOG_INTERVAL_SECONDS = 10.0

# Store reopen attempts per run before the task is failed
MAX_STORE_RECOVERIES = 3


# =============================================================================
# Output Constants
# =============================================================================

# Captures smaller than this are treated as placeholders and deleted
MIN_CONTENT_BYTES = 50 * 1024

# Zero-padded width of capture file names
SEQUENCE_NUMBER_WIDTH = 7

# Extension of capture files
CAPTURE_FILE_SUFFIX = ".txt"

# Meta name of the provenance marker embedded in each capture
PROVENANCE_META_NAME = "original-url"


# =============================================================================
# URL Filtering Constants
# =============================================================================

# Path extensions that never point at an HTML document
NON_DOCUMENT_EXTENSIONS = (
    # images
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.ico', '.webp', '.avif',
    # video
    '.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm',
    # audio
    '.mp3', '.wav', '.ogg', '.flac',
    # documents
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    # archives
    '.zip', '.rar', '.tar', '.gz', '.7z',
    # resources and structured data
    '.css', '.js', '.json', '.xml', '.woff', '.woff2', '.ttf',
)

# Ports dropped during normalization
DEFAULT_PORTS = {"http": 80, "https": 443}


# =============================================================================
# Sitemap Constants
# =============================================================================

SITEMAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"
SITEMAP_FILENAME = "sitemap.xml"
SITEMAP_CHANGEFREQ = "weekly"
SITEMAP_PRIORITY = "0.8"


# =============================================================================
# Browser Constants
# =============================================================================

# Desktop viewport dimensions for rendered fetching
DESKTOP_VIEWPORT_WIDTH = 1920
DESKTOP_VIEWPORT_HEIGHT = 1080

# Error fragments that mean the browser session itself is gone
BROWSER_CRASH_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser closed",
    "connection closed",
)
