"""Shared fakes for the board, the generator and the judge."""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from app.errors import BoardWriteError, InvalidLaneError, NotFoundError
from graph.state import Judgment, ReviewCase, SourceMaterial
from memory.article_store import InMemoryArticleStore
from tools.board import Card, CardRef, Comment


class FakeBoard:
    """In-memory board with per-operation failure injection."""

    def __init__(self) -> None:
        self.cards: Dict[str, Card] = {}
        self.comments: Dict[str, List[str]] = {}
        self.attachments: Dict[str, List[str]] = {}
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def add_card(self, card_id: str, body: str = "", lane_id: str = "lane-staging", title: str = "Card") -> Card:
        card = Card(id=card_id, title=title, body=body, lane_id=lane_id, url=f"https://board/c/{card_id}")
        self.cards[card_id] = card
        return card

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail:
            raise self.fail[op]

    def _card(self, card_id: str) -> Card:
        if card_id not in self.cards:
            raise NotFoundError(f"Card {card_id} not found", status=404)
        return self.cards[card_id]

    async def create_card(self, lane_id: str, title: str, body: str) -> CardRef:
        self.calls.append(("create_card", lane_id, title))
        self._maybe_fail("create_card")
        if not lane_id:
            raise InvalidLaneError("No lane id")
        card = self.add_card(f"card-{next(self._ids)}", body=body, lane_id=lane_id, title=title)
        return CardRef(id=card.id, url=card.url)

    async def get_card(self, card_id: str) -> Card:
        self.calls.append(("get_card", card_id))
        self._maybe_fail("get_card")
        return self._card(card_id).model_copy()

    async def move_card(self, card_id: str, lane_id: str) -> None:
        self.calls.append(("move_card", card_id, lane_id))
        self._maybe_fail("move_card")
        card = self._card(card_id)
        self.cards[card_id] = card.model_copy(update={"lane_id": lane_id})

    async def update_card_body(self, card_id: str, body: str) -> None:
        self.calls.append(("update_card_body", card_id))
        self._maybe_fail("update_card_body")
        card = self._card(card_id)
        self.cards[card_id] = card.model_copy(update={"body": body})

    async def list_cards(self, lane_id: str) -> List[Card]:
        self.calls.append(("list_cards", lane_id))
        self._maybe_fail("list_cards")
        return [c for c in self.cards.values() if c.lane_id == lane_id]

    async def add_comment(self, card_id: str, text: str) -> None:
        self.calls.append(("add_comment", card_id))
        self._maybe_fail("add_comment")
        self._card(card_id)
        self.comments.setdefault(card_id, []).append(text)

    async def get_comments(self, card_id: str) -> List[Comment]:
        return [Comment(text=t) for t in self.comments.get(card_id, [])]

    async def attach_file(self, card_id: str, data: bytes, filename: str, mime_type: str) -> None:
        self.calls.append(("attach_file", card_id, filename))
        self._maybe_fail("attach_file")
        self.attachments.setdefault(card_id, []).append(filename)

    def ops(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


class FakeJudge:
    """Returns scripted judgments in order; an Exception entry is raised."""

    def __init__(self, script: List[Any]) -> None:
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    async def judge(self, source_text, prompt, draft_text, prior_feedback=(), *, title="",
                    source_url="", attempt=1) -> Judgment:
        self.calls.append({
            "source_text": source_text,
            "prompt": prompt,
            "draft_text": draft_text,
            "prior_feedback": list(prior_feedback),
            "attempt": attempt,
        })
        item = self.script.pop(0) if self.script else Judgment(approved=False, feedback="more")
        if isinstance(item, Exception):
            raise item
        return item


class FakeGenerator:
    """Returns scripted articles in order; an Exception entry is raised."""

    def __init__(self, script: Optional[List[Any]] = None) -> None:
        self.script = list(script or [])
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, prompt, profile_name, context=None, source=None) -> str:
        self.calls.append({"prompt": prompt, "profile": profile_name, "context": context, "source": source})
        item = self.script.pop(0) if self.script else f"<h1>Draft {len(self.calls)}</h1><p>Body</p>"
        if isinstance(item, Exception):
            raise item
        return item


def approve(notes: str = "Looks good") -> Judgment:
    return Judgment(approved=True, notes=notes)


def reject(feedback: str = "Fix the numbers", issues: Optional[List[str]] = None) -> Judgment:
    return Judgment(approved=False, feedback=feedback, notes="Not yet", issues=issues or ["wrong figure"])


@pytest.fixture
def board() -> FakeBoard:
    return FakeBoard()


@pytest.fixture
def store() -> InMemoryArticleStore:
    return InMemoryArticleStore()


@pytest.fixture
def source() -> SourceMaterial:
    return SourceMaterial(
        title="Acme beats earnings estimates",
        body="Acme Corp reported revenue of $10 billion, beating estimates.",
        url="https://news.example.com/acme",
        ticker="ACME",
        date="2026-10-01T12:00:00+00:00",
    )


@pytest.fixture
def case(source: SourceMaterial) -> ReviewCase:
    return ReviewCase(
        case_id="card-1",
        article_content="<h1>Acme Beats</h1><p>Acme reported $10B.</p>",
        source_material=source,
        original_prompt="Write about Acme's earnings beat.",
        article_id="art-1",
    )
