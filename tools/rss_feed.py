"""RSS/Atom ingestion with feedparser."""

from typing import List, Optional
from urllib.parse import urlparse

import feedparser
import httpx
import structlog

from app.errors import SourceFetchError
from graph.state import SourceKind, SourceMaterial
from tools.text_cleaning import html_to_text

logger = structlog.get_logger(__name__)

USER_AGENT = "NewsroomDesk/1.0 (+rss)"
DEFAULT_TIMEOUT = 15.0
REDIRECT_HOSTS = ("news.google.com",)


class RssFeed:
    """Downloads a feed over httpx and parses it with feedparser."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def _download(self, url: str) -> bytes:
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(
                    timeout=DEFAULT_TIMEOUT, follow_redirects=True,
                    headers={"User-Agent": USER_AGENT},
                ) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceFetchError(f"Feed {url} unavailable: {e}") from e
        return response.content

    async def resolve_link(self, link: str) -> str:
        """Publisher URL behind an aggregator redirect; *link* itself on any failure."""
        if urlparse(link).netloc not in REDIRECT_HOSTS:
            return link
        try:
            if self._client is not None:
                response = await self._client.head(link, follow_redirects=True)
            else:
                async with httpx.AsyncClient(
                    timeout=DEFAULT_TIMEOUT, headers={"User-Agent": USER_AGENT},
                ) as client:
                    response = await client.head(link, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.debug("rss_feed.redirect_unresolved", url=link, error=str(e))
            return link
        final = str(response.url)
        return final if urlparse(final).netloc not in REDIRECT_HOSTS else link

    async def fetch(self, url: str, limit: int = 5) -> List[SourceMaterial]:
        """The first *limit* entries of the feed at *url*.

        Raises:
            SourceFetchError: The feed could not be downloaded or parsed.
        """
        feed = feedparser.parse(await self._download(url))
        if feed.bozo and not feed.entries:
            raise SourceFetchError(f"Feed {url} could not be parsed: {feed.get('bozo_exception')}")

        items = []
        for entry in feed.entries[:limit]:
            title = entry.get("title", "").strip()
            link = entry.get("link", "").strip()
            if not title or not link:
                continue
            summary = entry.get("summary", entry.get("description", ""))
            items.append(SourceMaterial(
                title=title,
                url=await self.resolve_link(link),
                teaser=html_to_text(summary),
                content=html_to_text(summary),
                date=entry.get("published", entry.get("updated", "")),
                kind=SourceKind.RSS,
                extra={"feed": url, "source": feed.feed.get("title", "")},
            ))

        logger.info("rss_feed.fetched", url=url, entries=len(feed.entries), kept=len(items))
        return items
