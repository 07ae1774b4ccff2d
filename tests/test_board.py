"""Board client against an httpx.MockTransport."""

from urllib.parse import parse_qs

import httpx
import pytest

from app.errors import BoardError, BoardWriteError, ConfigurationError, InvalidLaneError, NotFoundError
from tools.board import BoardClient, generate_article_link

API = "https://board.test/1"


def make_client(handler, body_limit: int = 16384) -> BoardClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BoardClient(api_key="k", token="t", base_url=API, body_limit=body_limit, client=client)


@pytest.fixture(autouse=True)
def no_backoff(mocker):
    mocker.patch("tools.board.asyncio.sleep", mocker.AsyncMock())


@pytest.mark.asyncio
async def test_create_card_posts_to_lane():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["params"] = dict(request.url.params)
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "c1", "shortUrl": "https://b/c1"})

    ref = await make_client(handler).create_card("lane-1", "Title", "Body text")

    assert ref.id == "c1" and ref.url == "https://b/c1"
    assert seen["method"] == "POST"
    assert seen["params"]["idList"] == "lane-1"
    assert seen["params"]["key"] == "k" and seen["params"]["token"] == "t"
    assert seen["form"]["desc"] == ["Body text"]
    assert seen["form"]["pos"] == ["top"]


@pytest.mark.asyncio
async def test_create_card_unknown_list_is_invalid_lane():
    def handler(request):
        return httpx.Response(400, text="invalid value for idList")

    with pytest.raises(InvalidLaneError):
        await make_client(handler).create_card("bad", "T", "B")


@pytest.mark.asyncio
async def test_create_card_without_lane_fails_fast():
    with pytest.raises(InvalidLaneError):
        await make_client(lambda r: httpx.Response(200, json={})).create_card("", "T", "B")


@pytest.mark.asyncio
async def test_get_card_maps_fields():
    def handler(request):
        return httpx.Response(200, json={"id": "c1", "name": "N", "desc": "D", "idList": "L", "shortUrl": "U"})

    card = await make_client(handler).get_card("c1")
    assert (card.title, card.body, card.lane_id, card.url) == ("N", "D", "L", "U")


@pytest.mark.asyncio
async def test_get_missing_card_is_not_found():
    with pytest.raises(NotFoundError):
        await make_client(lambda r: httpx.Response(404, text="card not found")).get_card("nope")


@pytest.mark.asyncio
async def test_move_to_unknown_list_is_invalid_lane():
    with pytest.raises(InvalidLaneError):
        await make_client(lambda r: httpx.Response(400, text="invalid idList")).move_card("c1", "bad")


@pytest.mark.asyncio
async def test_move_missing_card_is_not_found():
    with pytest.raises(NotFoundError):
        await make_client(lambda r: httpx.Response(404, text="The requested resource was not found.")).move_card(
            "c1", "lane"
        )


@pytest.mark.asyncio
async def test_update_body_refuses_oversized_bodies():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(BoardWriteError):
        await make_client(handler, body_limit=100).update_card_body("c1", "x" * 101)
    assert calls == []


@pytest.mark.asyncio
async def test_update_body_is_form_encoded():
    seen = {}

    def handler(request):
        seen["form"] = parse_qs(request.content.decode())
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"id": "c1"})

    await make_client(handler).update_card_body("c1", "New body")
    assert seen["form"]["desc"] == ["New body"]
    assert "desc" not in seen["params"]


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json=[{"id": "c1", "name": "N", "desc": "D"}])

    cards = await make_client(handler).list_cards("lane-1")
    assert len(attempts) == 3
    assert cards[0].lane_id == "lane-1"


@pytest.mark.asyncio
async def test_persistent_server_error_raises_board_error():
    with pytest.raises(BoardError) as exc_info:
        await make_client(lambda r: httpx.Response(500, text="down")).list_cards("lane-1")
    assert exc_info.value.status == 500


@pytest.mark.asyncio
async def test_comment_on_missing_card_is_not_found():
    with pytest.raises(NotFoundError):
        await make_client(lambda r: httpx.Response(404, text="not found")).add_comment("c1", "hi")


@pytest.mark.asyncio
async def test_get_comments_reads_action_text():
    def handler(request):
        assert request.url.params["filter"] == "commentCard"
        return httpx.Response(200, json=[{"id": "a1", "data": {"text": "hello"}, "date": "2026-10-01"}])

    comments = await make_client(handler).get_comments("c1")
    assert comments[0].text == "hello"


@pytest.mark.asyncio
async def test_missing_credentials_raise_configuration_error():
    board = BoardClient(api_key="", token="", base_url=API,
                        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))))
    with pytest.raises(ConfigurationError):
        await board.get_card("c1")


def test_generate_article_link_targets_the_card():
    link = generate_article_link("c9", "wgo")
    assert link.startswith("**[Generate Article](")
    assert "/board/generate-article/c9?selectedApp=wgo" in link
