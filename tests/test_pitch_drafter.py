"""Lane routing, pitch drafting and the scheduled ingestion passes."""

from typing import List

import pytest

from agents.card_stager import CardStager
from agents.pitch_drafter import (
    build_pitch,
    draft_pitch,
    draft_pitch_node,
    fetch_source_node,
    route_lane,
    run_news_cycle,
    run_pr_monitor,
)
from app import config
from app.errors import SourceFetchError
from graph.state import SourceKind, SourceMaterial

LANES = {
    "HEDGE_FUNDS": "lane-hf",
    "COMMODITIES": "lane-com",
    "ECONOMY": "lane-eco",
    "MARKETS": "lane-mkt",
    "BUSINESS": "lane-biz",
}


class FakeNews:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls: List[tuple] = []

    async def fetch(self, topic, pr_only=False, limit=5):
        self.calls.append(("fetch", topic, pr_only))
        if self.error:
            raise self.error
        return self.items

    async def fetch_tickers(self, tickers, pr_only=True):
        self.calls.append(("fetch_tickers", list(tickers)))
        if self.error and "BAD" in tickers:
            raise self.error
        return [SourceMaterial(title=f"{t} announces buyback", url=f"https://pr/{t}", ticker=t,
                               kind=SourceKind.PRESS_RELEASE) for t in tickers if t != "BAD"]


class FakeRss:
    def __init__(self, feeds):
        self.feeds = feeds

    async def fetch(self, url, limit=5):
        result = self.feeds[url]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def lanes(monkeypatch):
    monkeypatch.setattr(config, "LANE_DEFAULT", "lane-biz")
    monkeypatch.setattr(config, "LANE_ECONOMY", "lane-eco")
    monkeypatch.setattr(config, "LANE_PR", "lane-pr")


# -----------------------------------------------------------------------------
# Routing and drafting
# -----------------------------------------------------------------------------

@pytest.mark.parametrize(
    "title, expected",
    [
        ("Ackman discloses new stake in 13F filing", "HEDGE_FUNDS"),
        ("Crude oil jumps on supply worries", "COMMODITIES"),
        ("Fed signals a rate cut in December", "ECONOMY"),
        ("Nasdaq closes at a record", "MARKETS"),
        ("Acme opens a new factory", "BUSINESS"),
    ],
)
def test_route_lane_by_keyword(title, expected):
    category, lane_id = route_lane(title, lanes=LANES)
    assert category == expected
    assert lane_id == LANES[expected]


def test_unconfigured_lane_falls_through_to_business():
    category, lane_id = route_lane("Gold rallies", lanes={**LANES, "COMMODITIES": ""})
    assert (category, lane_id) == ("BUSINESS", "lane-biz")


def test_draft_pitch_names_the_angle(source):
    text = draft_pitch(source)
    assert text.startswith("Proposed Article: Acme beats earnings estimates")
    assert "Ticker: ACME" in text
    assert "Why this matters for ACME investors" in text


def test_build_pitch_keys_on_url_and_title(source):
    pitch = build_pitch(source, lane_id="lane-x")
    same = build_pitch(source.model_copy(update={"body": "other body"}), lane_id="lane-x")
    assert pitch.staging_key == same.staging_key
    assert pitch.writer_context == {"ticker": "ACME"}


# -----------------------------------------------------------------------------
# Topic pipeline nodes
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fetch_source_keeps_the_newest_item(source):
    result = await fetch_source_node({"topic": "acme"}, news=FakeNews([source, source]))
    assert result == {"sources": [source], "used_fallback": False}


@pytest.mark.asyncio
async def test_fetch_source_falls_back_on_upstream_failure():
    result = await fetch_source_node({"topic": "acme"}, news=FakeNews(error=SourceFetchError("down")))
    assert result["used_fallback"] is True
    assert result["sources"] == []


@pytest.mark.asyncio
async def test_fetch_source_requires_a_topic():
    result = await fetch_source_node({"topic": "  "}, news=FakeNews())
    assert result["error"] == "No topic provided"


def test_mock_pitch_when_nothing_was_fetched(lanes):
    result = draft_pitch_node({"topic": "tsla", "sources": []})
    pitch = result["pitches"][0]
    assert pitch.writer_app == "generic"
    assert pitch.lane_id == "lane-biz"
    assert pitch.text.startswith("Proposed Article: What is driving tsla")
    assert pitch.source.ticker == "TSLA"


def test_press_release_pitches_go_to_the_pr_lane(lanes, source):
    result = draft_pitch_node({"topic": "acme", "pr_only": True, "sources": [source]})
    pitch = result["pitches"][0]
    assert pitch.lane_id == "lane-pr"
    assert pitch.writer_app == "pr-story"


# -----------------------------------------------------------------------------
# Scheduled passes
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_news_cycle_skips_failed_feeds_and_duplicates(board, lanes):
    item = SourceMaterial(title="Fed holds rates steady", url="https://rss/1")
    rss = FakeRss({
        "https://feed/a": [item, item],
        "https://feed/b": SourceFetchError("timeout"),
    })

    summary = await run_news_cycle(rss, CardStager(board), feeds=["https://feed/a", "https://feed/b"])

    assert summary == {"feeds": 2, "failed_feeds": 1, "items": 2, "staged": 1, "skipped": 1}
    assert board.ops("create_card")[0][1] == "lane-eco"


@pytest.mark.asyncio
async def test_pr_monitor_polls_in_batches(board, lanes):
    news = FakeNews(error=SourceFetchError("bad batch"))
    tickers = ["AAA", "BBB", "BAD", "CCC"]

    summary = await run_pr_monitor(news, CardStager(board), tickers=tickers, batch_size=2)

    assert news.calls == [("fetch_tickers", ["AAA", "BBB"]), ("fetch_tickers", ["BAD", "CCC"])]
    assert summary["failed_batches"] == 1
    assert summary["staged"] == 2
    assert all(op[1] == "lane-pr" for op in board.ops("create_card"))


@pytest.mark.asyncio
async def test_pr_monitor_without_items_stages_nothing(board, lanes):
    summary = await run_pr_monitor(FakeNews(), CardStager(board), tickers=[])
    assert summary["items"] == 0
    assert board.calls == []
