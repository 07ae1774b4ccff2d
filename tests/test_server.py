"""HTTP surface: routes, background acknowledgements and error mapping."""

import pytest
from fastapi.testclient import TestClient

from app import config
from app.desk import Desk
from app.errors import (
    BoardError,
    ConfigurationError,
    GenerationTimeoutError,
    InvalidLaneError,
    NotFoundError,
    SourceFetchError,
)
from app.server import ErrorCode, classify_error, create_app
from conftest import FakeGenerator, FakeJudge
from graph.state import CardState
from memory.card_codec import encode_card_state


class FakeNews:
    def __init__(self, items):
        self.items = items

    async def fetch(self, topic, pr_only=False, limit=5):
        return self.items


@pytest.fixture
def desk(board, store, source):
    return Desk(
        board=board,
        generator=FakeGenerator(),
        judge=FakeJudge([]),
        store=store,
        news=FakeNews([source]),
    )


@pytest.fixture
def client(desk):
    return TestClient(create_app(desk))


@pytest.mark.parametrize(
    "error, status_code, code",
    [
        (NotFoundError("x"), 404, ErrorCode.NOT_FOUND),
        (InvalidLaneError("x"), 500, ErrorCode.INVALID_LANE),
        (ConfigurationError("x"), 503, ErrorCode.CONFIGURATION_ERROR),
        (SourceFetchError("x"), 502, ErrorCode.SOURCE_UNAVAILABLE),
        (GenerationTimeoutError("x"), 500, ErrorCode.GENERATION_FAILED),
        (BoardError("x"), 500, ErrorCode.BOARD_ERROR),
    ],
)
def test_classify_error(error, status_code, code):
    assert classify_error(error) == (status_code, code)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "pending_tasks": 0}


def test_pitch_stages_a_card(client, board, monkeypatch):
    monkeypatch.setattr(config, "LANE_DEFAULT", "lane-biz")

    response = client.post("/pitches", json={"topic": "ACME"})

    assert response.status_code == 200
    body = response.json()
    assert len(body["staged"]) == 1
    assert body["used_fallback"] is False
    assert board.cards[body["staged"][0]["card_id"]].lane_id == "lane-biz"


def test_pitch_requires_a_topic(client):
    assert client.post("/pitches", json={"topic": ""}).status_code == 422


def test_board_configuration_error_maps_to_503(client, board, monkeypatch):
    monkeypatch.setattr(config, "LANE_DEFAULT", "lane-biz")
    board.fail["create_card"] = ConfigurationError("TRELLO_API_KEY and TRELLO_TOKEN must be set")

    response = client.post("/pitches", json={"topic": "ACME"})

    assert response.status_code == 503
    assert response.json()["error_code"] == "CONFIGURATION_ERROR"


def test_generate_link_is_acknowledged(client, desk, mocker):
    submit = mocker.patch.object(desk, "submit_generation")

    response = client.get("/board/generate-article/card-1", params={"selectedApp": "wgo"})

    assert response.status_code == 202
    assert response.json()["card_id"] == "card-1"
    submit.assert_called_once_with("card-1", writer_app="wgo")


def test_review_link_is_acknowledged(client, desk, mocker):
    submit = mocker.patch.object(desk, "submit_review")
    assert client.post("/editor/review/card-1").status_code == 202
    submit.assert_called_once_with("card-1")


@pytest.mark.parametrize(
    "method, kwargs, expected",
    [
        ("get", {"params": {"note": "Shorter intro"}}, "Shorter intro"),
        ("post", {"json": {"note": "Add guidance"}}, "Add guidance"),
        ("post", {}, ""),
    ],
)
def test_revision_link_reads_the_note(client, desk, mocker, method, kwargs, expected):
    submit = mocker.patch.object(desk, "submit_revision")

    response = getattr(client, method)("/editor/request-revision/card-1", **kwargs)

    assert response.status_code == 202
    submit.assert_called_once_with("card-1", note=expected)


def test_approve_link_runs_synchronously(client, board, store, source):
    state = CardState(source=source, pitch="Write about Acme.", article_id="art-1")
    board.add_card("card-1", body=f"Pitch\n\n{encode_card_state(state)}")
    store.put("art-1", {"card_id": "card-1", "content": "<h1>Acme</h1><p>Body</p>"})

    response = client.get("/editor/approve/card-1")

    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    assert board.comments["card-1"]


def test_approve_unknown_card_is_404(client):
    response = client.get("/editor/approve/missing")
    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_articles_can_be_listed_and_read(client, store):
    store.put("art-1", {"card_id": "card-1", "title": "Acme", "content": "<h1>Acme</h1>", "revision": 0})

    listing = client.get("/articles").json()
    assert listing[0]["id"] == "art-1"
    assert "content" not in listing[0]

    assert client.get("/articles/art-1").json()["content"] == "<h1>Acme</h1>"
    html = client.get("/articles/art-1", params={"format": "html"})
    assert html.headers["content-type"].startswith("text/html")
    assert html.text == "<h1>Acme</h1>"


def test_unknown_article_is_404(client):
    response = client.get("/articles/nope")
    assert response.status_code == 404
    assert response.json()["error_type"] == "NotFoundError"
