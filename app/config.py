"""Centralized configuration for the newsroom desk.

Loads environment variables from a .env file and provides typed constants.
Board lane ids, collaborator endpoints and the review budget all live here so
that nothing downstream reads ``os.environ`` directly.
"""

import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

from app.errors import ConfigurationError

# Does not override already-set environment variables.
load_dotenv()

# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
APP_URL: str = os.getenv("APP_URL", "http://localhost:3001").rstrip("/")
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "3001"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")

# ---------------------------------------------------------------------------
# Judgment model (Ollama)
# ---------------------------------------------------------------------------
OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "mistral")
JUDGE_TEMPERATURE: float = float(os.getenv("JUDGE_TEMPERATURE", "0"))

# ---------------------------------------------------------------------------
# Board (Trello-compatible REST API)
# ---------------------------------------------------------------------------
TRELLO_API_URL: str = os.getenv("TRELLO_API_URL", "https://api.trello.com/1")
TRELLO_API_KEY: str = os.getenv("TRELLO_API_KEY", "")
TRELLO_TOKEN: str = os.getenv("TRELLO_TOKEN", "")

# Hard ceiling enforced by the board API on card descriptions.
BOARD_BODY_LIMIT: int = int(os.getenv("BOARD_BODY_LIMIT", "16384"))
# Budget used when composing bodies; leaves headroom under the ceiling.
BOARD_SAFE_BODY_LIMIT: int = int(os.getenv("BOARD_SAFE_BODY_LIMIT", "10000"))
BOARD_TIMEOUT_SECONDS: float = float(os.getenv("BOARD_TIMEOUT_SECONDS", "30"))

LANE_DEFAULT: str = os.getenv("TRELLO_LIST_ID", "") or os.getenv("TRELLO_LIST_ID_BUSINESS", "")
LANE_MARKETS: str = os.getenv("TRELLO_LIST_ID_MARKETS", "")
LANE_ECONOMY: str = os.getenv("TRELLO_LIST_ID_ECONOMY", "")
LANE_COMMODITIES: str = os.getenv("TRELLO_LIST_ID_COMMODITIES", "")
LANE_HEDGE_FUNDS: str = os.getenv("TRELLO_LIST_ID_HEDGE_FUNDS", "")
LANE_PR: str = os.getenv("TRELLO_LIST_ID_PR", "") or LANE_DEFAULT
LANE_ANALYST_NOTES: str = os.getenv("TRELLO_LIST_ID_ANALYST_NOTES", "")
LANE_IN_PROGRESS: str = os.getenv("TRELLO_LIST_ID_IN_PROGRESS", "")
LANE_NEEDS_REVIEW: str = os.getenv("TRELLO_LIST_ID_NEEDS_REVIEW", "")
LANE_SUBMITTED: str = os.getenv("TRELLO_LIST_ID_SUBMITTED", "")

# ---------------------------------------------------------------------------
# Article generation services
# ---------------------------------------------------------------------------
ARTICLE_GEN_API_URL: str = os.getenv("ARTICLE_GEN_API_URL", "")
ARTICLE_GEN_TIMEOUT_SECONDS: float = float(os.getenv("ARTICLE_GEN_TIMEOUT_SECONDS", "300"))
DEFAULT_WRITER_APP: str = os.getenv("DEFAULT_WRITER_APP", "story")

# ---------------------------------------------------------------------------
# Review loop
# ---------------------------------------------------------------------------
MAX_REVIEW_ATTEMPTS: int = 3
# revision_count is 0-based; the last permitted attempt has this index.
MAX_REVISION_INDEX: int = MAX_REVIEW_ATTEMPTS - 1

# Optional pass after approval comparing the article's figures with the source.
NUMBER_VERIFICATION_ENABLED: bool = (
    os.getenv("EDITOR_NUMBER_VERIFICATION_ENABLED", "false").lower() in ("1", "true", "yes")
)

# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------
BENZINGA_API_URL: str = os.getenv("BENZINGA_API_URL", "https://api.benzinga.com/api/v2/news")
BENZINGA_API_KEY: str = os.getenv("BENZINGA_API_KEY", "")
NEWS_LOOKBACK_DAYS: int = int(os.getenv("NEWS_LOOKBACK_DAYS", "7"))

RSS_FEEDS: List[str] = [
    url.strip()
    for url in os.getenv(
        "RSS_FEEDS",
        "https://feeds.content.dowjones.io/public/rss/mw_topstories,"
        "https://www.cnbc.com/id/100003114/device/rss/rss.html",
    ).split(",")
    if url.strip()
]
RSS_ITEMS_PER_FEED: int = int(os.getenv("RSS_ITEMS_PER_FEED", "5"))
SEEN_KEYS_CAPACITY: int = int(os.getenv("SEEN_KEYS_CAPACITY", "10000"))
# How long a lane's staged keys are trusted before the lane is listed again.
STAGING_LANE_TTL_SECONDS: float = float(os.getenv("STAGING_LANE_TTL_SECONDS", "300"))

PR_MONITOR_TICKERS: List[str] = [
    t.strip().upper() for t in os.getenv("PR_MONITOR_TICKERS", "").split(",") if t.strip()
]
PR_MONITOR_BATCH_SIZE: int = int(os.getenv("PR_MONITOR_BATCH_SIZE", "10"))

IMAP_HOST: str = os.getenv("IMAP_HOST", "imap.gmail.com")
IMAP_PORT: int = int(os.getenv("IMAP_PORT", "993"))
IMAP_USER: str = os.getenv("IMAP_USER", "")
IMAP_PASSWORD: str = os.getenv("IMAP_PASSWORD", "")
IMAP_MAILBOX: str = os.getenv("IMAP_MAILBOX", "INBOX")
ANALYST_SENDER_FILTER: str = os.getenv("ANALYST_SENDER_FILTER", "")

# ---------------------------------------------------------------------------
# Background tasks and scheduling
# ---------------------------------------------------------------------------
TASK_MAX_ATTEMPTS: int = int(os.getenv("TASK_MAX_ATTEMPTS", "3"))
TASK_BACKOFF_SECONDS: float = float(os.getenv("TASK_BACKOFF_SECONDS", "2.0"))

NEWS_CYCLE_MINUTES: int = int(os.getenv("NEWS_CYCLE_MINUTES", "30"))
PR_MONITOR_MINUTES: int = int(os.getenv("PR_MONITOR_MINUTES", "15"))
EMAIL_SCAN_MINUTES: int = int(os.getenv("EMAIL_SCAN_MINUTES", "10"))

# ---------------------------------------------------------------------------
# Article store
# ---------------------------------------------------------------------------
ARTICLE_STORE_DIR: Path = Path(os.getenv("ARTICLE_STORE_DIR", "./outputs/articles"))


def writer_app_url(app_name: str) -> str:
    """Resolve the base URL of an article generation service.

    ``ARTICLE_GEN_APP_<NAME>_URL`` wins, then ``ARTICLE_GEN_API_URL``.

    Raises:
        ConfigurationError: If neither variable is set.
    """
    env_name = f"ARTICLE_GEN_APP_{app_name.upper().replace('-', '_')}_URL"
    url = os.getenv(env_name) or ARTICLE_GEN_API_URL
    if not url:
        raise ConfigurationError(f"{env_name} or ARTICLE_GEN_API_URL must be set")
    return url.rstrip("/")


def require(name: str) -> str:
    """Return a required environment value or raise ``ConfigurationError``."""
    value = os.getenv(name, "")
    if not value:
        raise ConfigurationError(f"{name} is not set")
    return value


def topic_lanes() -> Dict[str, str]:
    """Lane ids keyed by routing category, in the order they are tried."""
    return {
        "HEDGE_FUNDS": LANE_HEDGE_FUNDS,
        "COMMODITIES": LANE_COMMODITIES,
        "ECONOMY": LANE_ECONOMY,
        "MARKETS": LANE_MARKETS,
        "BUSINESS": LANE_DEFAULT,
    }
