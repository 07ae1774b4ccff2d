"""Pitch drafting: turn source items into proposals and pick their lane."""

import re
from typing import Any, Dict, List, Optional, Tuple

import structlog

from app import config
from app.errors import ConfigurationError, SourceFetchError
from graph.state import Pitch, PitchState, SourceKind, SourceMaterial
from memory.staging import staging_key
from tools.text_cleaning import html_to_text, truncate_words

logger = structlog.get_logger(__name__)

SUMMARY_LIMIT = 600

# Tried in order; the first category whose pattern matches and whose lane is
# configured wins.
LANE_RULES: List[Tuple[str, re.Pattern]] = [
    ("HEDGE_FUNDS", re.compile(
        r"\b(hedge fund|ackman|dalio|icahn|citadel|point72|millennium|renaissance|13f|13-f|"
        r"filing|activist|activist investor|institutional investor|big money|whale|whale alert)\b"
    )),
    ("COMMODITIES", re.compile(
        r"\b(oil|crude|wti|brent|gold|silver|platinum|copper|aluminum|wheat|corn|soybean|"
        r"natural gas|commodity|commodities|spot price|futures|supply chain|raw materials)\b"
    )),
    ("ECONOMY", re.compile(
        r"\b(inflation|cpi|ppi|fomc|fed|federal reserve|gdp|unemployment|jobs report|employment|"
        r"monetary policy|interest rate|rate cut|rate hike|recession|economic growth|economic data|macro)\b"
    )),
    ("MARKETS", re.compile(
        r"(\bs&p 500\b|\bs&p\b|\bsp500\b|\bnasdaq\b|\bdow jones\b|\bdow\b|\bwall street\b|"
        r"\bmarket index\b|\bmarket indices\b|\bmarket close\b|\bmarket open\b|\bmarket rally\b|"
        r"\bmarket selloff\b|\bmarket volatility\b|\bvix\b|\bmarket sentiment\b)"
    )),
]


def route_lane(title: str, content: str = "", lanes: Optional[Dict[str, str]] = None) -> Tuple[str, str]:
    """Category and lane id for an item, by keyword rules.

    Returns:
        ``(category, lane_id)``; ``lane_id`` is empty when not even the default
        lane is configured.
    """
    lanes = lanes if lanes is not None else config.topic_lanes()
    text = f"{title} {content}".lower()
    for category, pattern in LANE_RULES:
        if pattern.search(text) and lanes.get(category):
            return category, lanes[category]
    return "BUSINESS", lanes.get("BUSINESS", "")


def draft_pitch(source: SourceMaterial) -> str:
    """Human-readable proposal for *source*."""
    summary = truncate_words(html_to_text(source.teaser or source.best_text()), SUMMARY_LIMIT)
    lines = [f"Proposed Article: {source.title or 'Untitled story'}", ""]
    if source.url:
        lines.append(f"Source: {source.url}")
    if source.date:
        lines.append(f"Published: {source.date}")
    if source.ticker:
        lines.append(f"Ticker: {source.ticker}")
    lines += ["", f"Summary: {summary or 'No summary available.'}", ""]

    if source.kind is SourceKind.PRESS_RELEASE:
        angle = "What the announcement means for the company and its shareholders."
    elif source.kind is SourceKind.ANALYST_NOTE:
        angle = f"What {source.firm or 'the analyst'}'s call means for {source.ticker or 'the stock'}."
    elif source.ticker:
        angle = f"Why this matters for {source.ticker} investors right now."
    else:
        angle = "The market impact and what readers should watch next."
    lines.append(f"Proposed Angle: {angle}")
    return "\n".join(lines).strip()


def mock_pitch(topic: str) -> str:
    """Placeholder proposal used when no source could be fetched."""
    return (
        f"Proposed Article: What is driving {topic} right now\n\n"
        "Summary: No recent source material could be retrieved; the writer should "
        "research current coverage before drafting.\n\n"
        "Proposed Angle: Recent developments and what investors should watch next."
    )


def build_pitch(
    source: SourceMaterial,
    writer_app: str = config.DEFAULT_WRITER_APP,
    lane_id: Optional[str] = None,
    attachment: Optional[Dict[str, Any]] = None,
    title: Optional[str] = None,
) -> Pitch:
    if lane_id is None:
        _, lane_id = route_lane(source.title, source.teaser)
    return Pitch(
        title=title or source.title or "Untitled story",
        text=draft_pitch(source),
        source=source,
        lane_id=lane_id,
        writer_app=writer_app,
        writer_context={"ticker": source.ticker} if source.ticker else {},
        staging_key=staging_key(source.url, source.title),
        attachment=attachment,
    )


# ---------------------------------------------------------------------------
# Graph nodes
# ---------------------------------------------------------------------------


async def fetch_source_node(state: PitchState, *, news: Any) -> Dict[str, Any]:
    """Fetch recent items for the topic; fall back to a mock pitch on failure."""
    topic = state.get("topic", "").strip()
    if not topic:
        logger.error("pitch_drafter.no_topic_provided")
        return {"error": "No topic provided", "sources": []}

    try:
        sources = await news.fetch(topic, pr_only=state.get("pr_only", False), limit=5)
    except (SourceFetchError, ConfigurationError) as e:
        logger.warning("pitch_drafter.source_fallback", topic=topic, error=str(e))
        return {"sources": [], "used_fallback": True}

    return {"sources": sources[:1], "used_fallback": False}


def draft_pitch_node(state: PitchState) -> Dict[str, Any]:
    """Draft one pitch per source item, or a mock pitch when there are none."""
    if state.get("error"):
        return {"pitches": []}

    pr_only = state.get("pr_only", False)
    sources = state.get("sources") or []
    if not sources:
        topic = state.get("topic", "")
        source = SourceMaterial(title=f"What is driving {topic} right now", teaser=mock_pitch(topic),
                                ticker=topic.upper() if topic.isalpha() and len(topic) <= 5 else "")
        pitch = build_pitch(source, writer_app="generic", lane_id=config.LANE_DEFAULT)
        pitch = pitch.model_copy(update={"text": mock_pitch(topic)})
        logger.info("pitch_drafter.mock_pitch_drafted", topic=topic)
        return {"pitches": [pitch]}

    writer_app = "pr-story" if pr_only else config.DEFAULT_WRITER_APP
    pitches = []
    for source in sources:
        lane_id = config.LANE_PR if pr_only else None
        pitches.append(build_pitch(source, writer_app=writer_app, lane_id=lane_id))

    logger.info("pitch_drafter.pitches_drafted", count=len(pitches), run_id=state.get("run_id"))
    return {"pitches": pitches}


async def run_news_cycle(
    rss: Any,
    stager: Any,
    feeds: Optional[List[str]] = None,
    per_feed: int = config.RSS_ITEMS_PER_FEED,
) -> Dict[str, int]:
    """One pass over the RSS feeds: route, draft and stage every new item.

    A failing feed is logged and skipped; the others still run.
    """
    feeds = feeds if feeds is not None else config.RSS_FEEDS
    pitches: List[Pitch] = []
    failed_feeds = 0
    for url in feeds:
        try:
            items = await rss.fetch(url, limit=per_feed)
        except SourceFetchError as e:
            failed_feeds += 1
            logger.warning("pitch_drafter.feed_failed", url=url, error=str(e))
            continue
        for item in items:
            category, lane_id = route_lane(item.title, item.teaser)
            pitch = build_pitch(item, lane_id=lane_id)
            logger.debug("pitch_drafter.routed", title=item.title[:80], category=category)
            pitches.append(pitch)

    staged, skipped = await stager.stage_all(pitches)
    summary = {
        "feeds": len(feeds),
        "failed_feeds": failed_feeds,
        "items": len(pitches),
        "staged": len(staged),
        "skipped": len(skipped),
    }
    logger.info("pitch_drafter.news_cycle_done", **summary)
    return summary


async def run_pr_monitor(
    news: Any,
    stager: Any,
    tickers: Optional[List[str]] = None,
    batch_size: int = config.PR_MONITOR_BATCH_SIZE,
) -> Dict[str, int]:
    """Poll press releases for the watched tickers in batches and stage new ones.

    A failing batch is logged and skipped; dedupe happens in the stager.
    """
    tickers = tickers if tickers is not None else config.PR_MONITOR_TICKERS
    pitches: List[Pitch] = []
    failed_batches = 0
    for start in range(0, len(tickers), batch_size):
        batch = tickers[start:start + batch_size]
        try:
            items = await news.fetch_tickers(batch, pr_only=True)
        except (SourceFetchError, ConfigurationError) as e:
            failed_batches += 1
            logger.warning("pitch_drafter.pr_batch_failed", tickers=batch, error=str(e))
            continue
        for item in items:
            pitches.append(build_pitch(item, writer_app="pr-story", lane_id=config.LANE_PR))

    staged, skipped = await stager.stage_all(pitches) if pitches else ([], [])
    summary = {
        "tickers": len(tickers),
        "failed_batches": failed_batches,
        "items": len(pitches),
        "staged": len(staged),
        "skipped": len(skipped),
    }
    logger.info("pitch_drafter.pr_monitor_done", **summary)
    return summary
