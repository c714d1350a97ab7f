"""Application-wide constants.

This module centralizes all magic numbers and configuration constants
for the ingestion pipeline so fetchers, scrapers and the scheduler
share a single source of truth.
"""

# =============================================================================
# Fetch / Rate Limiting
# =============================================================================

# Minimum delay between two outgoing requests of one scraper (seconds)
DEFAULT_RATE_LIMIT_SECONDS = 2.0

# MOH pages are slower and more sensitive to bursts
MOH_RATE_LIMIT_SECONDS = 3.0

# Total attempts per URL for extraction-gated scrapers (first try included)
DEFAULT_MAX_ATTEMPTS = 3

# MOH guideline pages rarely recover on a third attempt
MOH_MAX_ATTEMPTS = 2

# Exponential backoff between retries (seconds)
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 30.0

# HTTP status codes that are worth retrying despite being 4xx
RETRYABLE_CLIENT_STATUS_CODES = frozenset({429})

# =============================================================================
# HTTP / Browser Timeouts
# =============================================================================

# Default timeout for scraper HTTP requests (seconds)
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

# Timeout for headless browser page loads (seconds)
BROWSER_PAGE_LOAD_TIMEOUT_SECONDS = 30.0

# Resource URL patterns blocked during headless navigation
BLOCKED_BROWSER_RESOURCE_PATTERNS = (
    # images
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.webp",
    "*.svg",
    "*.ico",
    # stylesheets
    "*.css",
    # fonts
    "*.woff",
    "*.woff2",
    "*.ttf",
    "*.otf",
    # media
    "*.mp4",
    "*.webm",
    "*.mp3",
    "*.ogg",
)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; PharmacyKnowledgeBot/1.0; "
    "+https://www.pharmacy-training.sg/bot)"
)

# =============================================================================
# Extraction
# =============================================================================

# Normalized body text shorter than this is rejected, never persisted
MIN_CONTENT_LENGTH_CHARS = 100

# Largest secondary (PDF) document we are willing to download
MAX_SECONDARY_DOCUMENT_BYTES = 50 * 1024 * 1024

# Tags stripped before body extraction
BOILERPLATE_TAGS = ("script", "style", "nav", "footer", "header", "noscript", "form")

# =============================================================================
# Scheduler
# =============================================================================

# All cron expressions are evaluated in this IANA timezone
DEFAULT_SCHEDULER_TIMEZONE = "Asia/Singapore"

# Ring buffer size for scraping results
RESULT_HISTORY_CAPACITY = 1000

# Results included in the aggregate health report
HEALTH_RECENT_RESULTS_COUNT = 10

# Default page size for get_recent_results
DEFAULT_RECENT_RESULTS_LIMIT = 50

# Knowledge-base statistics window (days)
KNOWLEDGE_STATS_WINDOW_DAYS = 30

# =============================================================================
# Content Store
# =============================================================================

KNOWLEDGE_CONTENT_TABLE = "knowledge_source_content"
KNOWLEDGE_CACHE_TABLE = "ai_knowledge_cache"

# Housekeeping: purge expired cache rows every 6 hours
CACHE_CLEANUP_CRON = "0 */6 * * *"
