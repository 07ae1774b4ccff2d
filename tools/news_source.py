"""
tools/news_source.py
====================
News and press-release lookups against a Benzinga-style JSON news API.

``fetch`` returns ``SourceMaterial`` items sorted newest first. Any
transport or payload problem raises ``SourceFetchError`` so callers can fall
back to degraded content.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog

from app import config
from app.errors import ConfigurationError, SourceFetchError
from graph.state import SourceKind, SourceMaterial

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 15.0
MAX_RETRIES = 3
BACKOFF_FACTOR = 2.0
FIELDS = "headline,title,created,body,url,channels,teaser,stocks,id"


def parse_created(value: str) -> Optional[datetime]:
    """Parse the API's RFC 2822 (or ISO 8601) timestamps into aware datetimes."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _to_source(item: Dict[str, Any], pr_only: bool) -> SourceMaterial:
    stocks = []
    for stock in item.get("stocks") or []:
        symbol = stock.get("name") if isinstance(stock, dict) else stock
        if symbol:
            stocks.append(str(symbol).upper())
    created = parse_created(item.get("created", ""))
    channels = [c.get("name", c) if isinstance(c, dict) else c for c in item.get("channels") or []]
    return SourceMaterial(
        title=item.get("title") or item.get("headline") or "",
        body=item.get("body") or "",
        teaser=item.get("teaser") or "",
        url=item.get("url") or "",
        ticker=stocks[0] if stocks else "",
        date=created.isoformat() if created else "",
        stocks=stocks,
        kind=SourceKind.PRESS_RELEASE if pr_only else SourceKind.NEWS,
        extra={"id": item.get("id"), "channels": channels},
    )


class NewsSource:
    """Fetches recent news or press releases for a ticker or keyword.

    Args:
        api_key: API token; defaults to ``BENZINGA_API_KEY``.
        client: Optional ``httpx.AsyncClient`` (tests inject a mock transport).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = config.BENZINGA_API_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else config.BENZINGA_API_KEY
        self.base_url = base_url
        self._client = client

    async def _get(self, params: Dict[str, Any]) -> Any:
        log = logger.bind(params={k: v for k, v in params.items() if k != "token"})
        for attempt in range(MAX_RETRIES):
            try:
                if self._client is not None:
                    response = await self._client.get(self.base_url, params=params)
                else:
                    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
                        response = await client.get(
                            self.base_url, params=params, headers={"Accept": "application/json"}
                        )
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if (status >= 500 or status == 429) and attempt < MAX_RETRIES - 1:
                    delay = random.uniform(0, BACKOFF_FACTOR ** attempt)
                    log.warning("news_source.status_error_retry", status_code=status, next_delay=delay)
                    await asyncio.sleep(delay)
                    continue
                raise SourceFetchError(f"News API returned HTTP {status}") from e
            except httpx.RequestError as e:
                if attempt < MAX_RETRIES - 1:
                    delay = random.uniform(0, BACKOFF_FACTOR ** attempt)
                    log.warning("news_source.network_error_retry", error=str(e), next_delay=delay)
                    await asyncio.sleep(delay)
                    continue
                raise SourceFetchError(f"News API unreachable: {e}") from e
            except ValueError as e:
                raise SourceFetchError(f"News API returned invalid JSON: {e}") from e
        raise SourceFetchError("News API failed after retries")

    async def fetch(
        self,
        topic: str,
        pr_only: bool = False,
        limit: int = 20,
        lookback_days: int = config.NEWS_LOOKBACK_DAYS,
    ) -> List[SourceMaterial]:
        """Items about *topic* published within *lookback_days*, newest first.

        A short upper-case *topic* is treated as a ticker, anything else as
        keywords.

        Raises:
            ConfigurationError: No API key configured.
            SourceFetchError: The API failed or returned no usable items.
        """
        if not self.api_key:
            raise ConfigurationError("BENZINGA_API_KEY is not set")

        topic = topic.strip()
        is_ticker = topic.isalpha() and topic.isupper() and len(topic) <= 5
        params: Dict[str, Any] = {
            "token": self.api_key,
            "items": max(limit, 20),
            "fields": FIELDS,
            "displayOutput": "full",
            "accept": "application/json",
            ("tickers" if is_ticker else "keywords"): topic,
        }
        if pr_only:
            params["channels"] = "Press Releases"

        items = await self._recent(params, pr_only, lookback_days)
        logger.info("news_source.fetched", topic=topic, pr_only=pr_only, kept=len(items))
        if not items:
            raise SourceFetchError(f"No recent items found for {topic!r}")
        return items[:limit]

    async def fetch_tickers(
        self,
        tickers: List[str],
        pr_only: bool = True,
        limit: int = 50,
        lookback_days: int = 1,
    ) -> List[SourceMaterial]:
        """Recent items for several tickers in one request. May be empty.

        Raises:
            ConfigurationError: No API key configured.
            SourceFetchError: The API call failed.
        """
        if not self.api_key:
            raise ConfigurationError("BENZINGA_API_KEY is not set")
        params: Dict[str, Any] = {
            "token": self.api_key,
            "items": limit,
            "fields": FIELDS,
            "displayOutput": "full",
            "accept": "application/json",
            "tickers": ",".join(t.strip().upper() for t in tickers if t.strip()),
        }
        if pr_only:
            params["channels"] = "Press Releases"
        items = await self._recent(params, pr_only, lookback_days)
        logger.info("news_source.batch_fetched", tickers=len(tickers), kept=len(items))
        return items[:limit]

    async def _recent(self, params: Dict[str, Any], pr_only: bool, lookback_days: int) -> List[SourceMaterial]:
        payload = await self._get(params)
        if not isinstance(payload, list):
            raise SourceFetchError("News API response is not a list")

        cutoff = datetime.now(timezone.utc) - timedelta(days=lookback_days)
        items = []
        for raw in payload:
            if not isinstance(raw, dict):
                continue
            created = parse_created(raw.get("created", ""))
            if created is not None and created < cutoff:
                continue
            items.append(_to_source(raw, pr_only))
        items.sort(key=lambda s: s.date, reverse=True)
        return items
