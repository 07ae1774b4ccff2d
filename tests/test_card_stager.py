"""Staging keys and at-most-once card creation."""

import pytest

from agents.card_stager import CardStager, build_card_body, card_state_for, stage_cards_node
from app.errors import BoardWriteError, NotFoundError
from graph.state import Pitch, SourceMaterial
from memory.card_codec import decode_card_state, encode_card_state
from memory.staging import SeenKeys, staging_key


def make_pitch(title="Acme beats", url="https://news.example.com/acme", lane_id="lane-biz", **kwargs) -> Pitch:
    source = SourceMaterial(title=title, url=url, ticker="ACME", body="Acme reported results.")
    return Pitch(
        title=title,
        text=f"Proposed Article: {title}",
        source=source,
        lane_id=lane_id,
        staging_key=staging_key(url, title),
        **kwargs,
    )


# -----------------------------------------------------------------------------
# Keys
# -----------------------------------------------------------------------------

def test_staging_key_ignores_case_and_spacing():
    assert staging_key("https://X.com/a ", "Acme  Beats") == staging_key("https://x.com/a", "acme beats")
    assert staging_key("https://x.com/a", "Acme") != staging_key("https://x.com/b", "Acme")


def test_seen_keys_evicts_oldest():
    seen = SeenKeys(capacity=2)
    for key in ("a", "b", "c"):
        seen.add(key)
    assert "a" not in seen
    assert "b" in seen and "c" in seen
    assert len(seen) == 2


# -----------------------------------------------------------------------------
# Card body
# -----------------------------------------------------------------------------

def test_card_body_carries_link_source_and_envelope():
    pitch = make_pitch(writer_app="pr-story")
    body = build_card_body(pitch, card_id="card-7")

    assert body.startswith("**[Generate Article](")
    assert "card-7?selectedApp=pr-story" in body
    assert "**Source:** [View Original](https://news.example.com/acme)" in body
    assert "**Ticker:** ACME" in body
    assert decode_card_state(body).staging_key == pitch.staging_key


def test_card_body_shortens_long_pitches():
    pitch = make_pitch().model_copy(update={"text": "word " * 5000})
    body = build_card_body(pitch, card_id="card-7", limit=4000)
    assert len(body) <= 4000
    assert decode_card_state(body) is not None


# -----------------------------------------------------------------------------
# Staging
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stage_creates_card_then_adds_link(board):
    staged = await CardStager(board).stage(make_pitch())

    assert staged.card_id == "card-1"
    assert [c[0] for c in board.calls] == ["list_cards", "create_card", "update_card_body"]
    assert "[Generate Article]" in board.cards["card-1"].body
    assert board.cards["card-1"].lane_id == "lane-biz"


@pytest.mark.asyncio
async def test_same_item_is_staged_once(board):
    stager = CardStager(board)
    pitch = make_pitch()

    first = await stager.stage(pitch)
    second = await stager.stage(pitch)

    assert first is not None
    assert second is None
    assert len(board.ops("create_card")) == 1


@pytest.mark.asyncio
async def test_item_already_on_the_board_is_skipped(board):
    pitch = make_pitch()
    board.add_card("old", body=f"Pitch\n\n{encode_card_state(card_state_for(pitch))}", lane_id="lane-biz")

    assert await CardStager(board).stage(pitch) is None
    assert board.ops("create_card") == []


@pytest.mark.asyncio
async def test_unroutable_pitch_is_skipped(board):
    assert await CardStager(board).stage(make_pitch(lane_id="")) is None
    assert board.calls == []


@pytest.mark.asyncio
async def test_link_update_failure_keeps_the_card(board):
    board.fail["update_card_body"] = BoardWriteError("nope", status=400)
    staged = await CardStager(board).stage(make_pitch())
    assert staged is not None
    assert "card-1" in board.cards


@pytest.mark.asyncio
async def test_attachment_is_uploaded(board):
    pitch = make_pitch(attachment={"data": b"%PDF", "filename": "note.pdf", "mime_type": "application/pdf"})
    staged = await CardStager(board).stage(pitch)
    assert board.attachments[staged.card_id] == ["note.pdf"]


@pytest.mark.asyncio
async def test_stage_all_reports_skips_and_failures(board):
    stager = CardStager(board)
    pitches = [make_pitch(), make_pitch(), make_pitch(title="Other", url="https://x/2", lane_id="")]

    staged, skipped = await stager.stage_all(pitches)

    assert len(staged) == 1
    assert skipped == ["Acme beats", "Other"]


@pytest.mark.asyncio
async def test_stage_node_raises_when_every_pitch_fails(board):
    board.fail["create_card"] = NotFoundError("lane missing", status=404)
    stager = CardStager(board)

    with pytest.raises(NotFoundError):
        await stage_cards_node({"pitches": [make_pitch()]}, stager=stager)


@pytest.mark.asyncio
async def test_stage_node_without_pitches_is_a_no_op(board):
    assert await stage_cards_node({"pitches": []}, stager=CardStager(board)) == {"staged": [], "skipped": []}


@pytest.mark.asyncio
async def test_card_moved_downstream_is_not_staged_again_after_restart(board):
    pitch = make_pitch()
    first = await CardStager(board, SeenKeys(), downstream_lanes=["lane-wip", "lane-submitted"]).stage(pitch)
    await board.move_card(first.card_id, "lane-submitted")

    restarted = CardStager(board, SeenKeys(), downstream_lanes=["lane-wip", "lane-submitted"])

    assert await restarted.stage(pitch) is None
    assert len(board.ops("create_card")) == 1
    assert ("list_cards", "lane-submitted") in board.calls


@pytest.mark.asyncio
async def test_expired_lane_cache_sees_cards_added_by_others(board):
    stager = CardStager(board, downstream_lanes=[], lane_ttl=0)
    pitch = make_pitch()
    assert await stager.already_staged(pitch) is False

    board.add_card("other", body=f"Pitch\n\n{encode_card_state(card_state_for(pitch))}", lane_id="lane-biz")

    assert await stager.stage(pitch) is None
    assert board.ops("create_card") == []


@pytest.mark.asyncio
async def test_fresh_lane_cache_is_reused(board):
    stager = CardStager(board, downstream_lanes=[], lane_ttl=300)
    await stager.stage(make_pitch())
    await stager.stage(make_pitch(title="Other", url="https://x/2"))
    assert len(board.ops("list_cards")) == 1
