"""Number verification: parsing, the check node, the card report and its wiring."""

from datetime import datetime, timezone

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from agents.finalizer import count_markers, split_card_body
from agents.number_verifier import (
    VERIFICATION_HEADING,
    compose_verification_body,
    verify_numbers_node,
    write_verification_node,
)
from app.desk import Desk
from app.errors import BoardWriteError, JudgmentParseError
from conftest import FakeGenerator, FakeJudge, approve, reject
from graph import editor_graph, generation_graph, verification_graph
from graph.state import CardState, NumberCheck, SourceMaterial, VerificationStatus
from memory.card_codec import decode_card_state, encode_card_state
from tools.number_check import NumberVerifier, parse_number_check

NOW = datetime(2026, 10, 2, 15, 30, tzinfo=timezone.utc)

MISMATCH = NumberCheck(
    status=VerificationStatus.DISCREPANCIES_FOUND,
    summary="Verified 4 numbers, found 1 discrepancy",
    verified_count=4,
    discrepancies=["Source: $10 billion, Article: $1 billion (Quarterly revenue)"],
    notes="Revenue figure lost a digit.",
)


class FakeVerifier:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def verify(self, source_text, article_text, *, title=""):
        self.calls.append({"source_text": source_text, "article_text": article_text, "title": title})
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def verification_state(source, article="<h1>Acme</h1><p>Revenue of $1 billion.</p>", check=None):
    return {
        "case_id": "card-1",
        "run_id": "r1",
        "article_id": "art-1",
        "article_content": article,
        "source_material": source,
        "check": check,
        "board_report": None,
    }


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

def test_discrepancies_are_formatted_with_context():
    check = parse_number_check(
        'Here you go: {"status": "discrepancies_found", "summary": "1 mismatch", "verifiedCount": "3", '
        '"discrepancies": [{"sourceValue": "45%", "articleValue": "54%", "context": "margin"}, '
        '{"sourceValue": "", "articleValue": "x"}], "notes": "n"}'
    )
    assert check.status is VerificationStatus.DISCREPANCIES_FOUND
    assert check.verified_count == 3
    assert check.discrepancies == ["Source: 45%, Article: 54% (margin)"]


def test_no_usable_discrepancy_means_verified():
    check = parse_number_check('```json\n{"status": "discrepancies_found", "discrepancies": []}\n```')
    assert check.status is VerificationStatus.VERIFIED
    assert check.summary == "Verified 0 numbers"


def test_unparseable_check_raises():
    with pytest.raises(JudgmentParseError):
        parse_number_check("all good!")


@pytest.mark.asyncio
async def test_verifier_chain_parses_model_reply():
    llm = FakeListChatModel(responses=['{"status": "verified", "summary": "All 6 match", "verifiedCount": 6}'])
    check = await NumberVerifier(llm=llm).verify("Revenue $10B", "Revenue $10 billion", title="Acme")
    assert check.status is VerificationStatus.VERIFIED
    assert check.verified_count == 6


# -----------------------------------------------------------------------------
# Check node
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_check_uses_plain_text(source):
    verifier = FakeVerifier(MISMATCH)
    result = await verify_numbers_node(verification_state(source), verifier=verifier)

    assert result["check"] is MISMATCH
    assert verifier.calls[0]["article_text"] == "Acme Revenue of $1 billion."
    assert verifier.calls[0]["title"] == source.title


@pytest.mark.asyncio
async def test_missing_source_is_an_error_without_a_model_call():
    verifier = FakeVerifier(MISMATCH)
    result = await verify_numbers_node(verification_state(SourceMaterial(title="Empty")), verifier=verifier)

    assert result["check"].status is VerificationStatus.ERROR
    assert "Source material not available" in result["check"].summary
    assert verifier.calls == []


@pytest.mark.asyncio
async def test_verifier_failure_is_an_error_result(source):
    result = await verify_numbers_node(
        verification_state(source), verifier=FakeVerifier(JudgmentParseError("not json"))
    )
    assert result["check"].status is VerificationStatus.ERROR
    assert "JudgmentParseError" in result["check"].summary


# -----------------------------------------------------------------------------
# Card report
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_report_is_written_once_and_envelope_stays_last(board, source):
    envelope = encode_card_state(CardState(source=source, article_id="art-1"))
    board.add_card("card-1", body=f"Pitch\n\n---\n\n## ✅ Editor Approved\n\n**Title:** Acme\n\n{envelope}")
    state = verification_state(source, check=MISMATCH)

    await write_verification_node(state, board=board, now=NOW)
    result = await write_verification_node(state, board=board, now=NOW)

    body = board.cards["card-1"].body
    assert body.count(VERIFICATION_HEADING) == 1
    assert count_markers(body)["approved"] == 1
    assert body.endswith(envelope)
    assert "**Status:** ⚠️ Discrepancies Found" in body
    assert "1. Source: $10 billion, Article: $1 billion (Quarterly revenue)" in body
    assert "2026-10-02 15:30 UTC" in body
    assert decode_card_state(body).article_id == "art-1"
    assert result["board_report"].description_updated

    comment = board.comments["card-1"][0]
    assert comment.startswith("🔢 **Number Verification Complete**")
    assert "**Discrepancies:** 1" in comment


@pytest.mark.asyncio
async def test_board_failures_are_recorded(board, source):
    board.add_card("card-1", body="Pitch")
    board.fail["update_card_body"] = BoardWriteError("too large", status=400)

    result = await write_verification_node(verification_state(source, check=MISMATCH), board=board)

    report = result["board_report"]
    assert report.description_updated is False
    assert report.comment_added is True


def test_report_is_shortened_to_the_limit():
    check = MISMATCH.model_copy(update={"notes": "detail " * 400})
    body = compose_verification_body("Pitch", "## 🔢 Number Verification\n\n" + check.notes, 800)
    assert len(body) <= 800
    assert compose_verification_body("x" * 790, "## 🔢 Number Verification", 800) is None


def test_finalizer_drops_an_old_report(source):
    body = (
        "Pitch\n\n---\n\n## ✅ Editor Approved\n\n**Title:** Acme\n\n---\n\n"
        f"{VERIFICATION_HEADING}\n\n**Status:** ✅ Verified\n\n"
        f"{encode_card_state(CardState(source=source))}"
    )
    base, state = split_card_body(body)
    assert base == "Pitch"
    assert state is not None


# -----------------------------------------------------------------------------
# Wiring
# -----------------------------------------------------------------------------

def make_editor(board, judge, verifier):
    return editor_graph.compile_graph(
        judge=judge, generator=FakeGenerator(), board=board,
        submitted_lane="lane-submitted", review_lane="lane-needs-review",
        verification_graph=verification_graph.compile_graph(verifier=verifier, board=board),
    )


@pytest.mark.asyncio
async def test_approved_article_is_verified(board, case):
    board.add_card("card-1", body="Pitch text")
    verifier = FakeVerifier(MISMATCH)

    final = await editor_graph.run_review(case, make_editor(board, FakeJudge([approve()]), verifier))

    assert final["status"] == "approved"
    assert len(verifier.calls) == 1
    body = board.cards["card-1"].body
    assert count_markers(body)["approved"] == 1
    assert VERIFICATION_HEADING in body


@pytest.mark.asyncio
async def test_escalated_article_is_not_verified(board, case):
    board.add_card("card-1", body="Pitch text")
    verifier = FakeVerifier(MISMATCH)

    await editor_graph.run_review(case, make_editor(board, FakeJudge([reject()] * 3), verifier))

    assert verifier.calls == []
    assert VERIFICATION_HEADING not in board.cards["card-1"].body


@pytest.mark.asyncio
async def test_verification_error_leaves_approval_intact(board, case, mocker):
    board.add_card("card-1", body="Pitch text")
    graph = make_editor(board, FakeJudge([approve()]), FakeVerifier(MISMATCH))
    mocker.patch("graph.verification_graph.run_verification", side_effect=RuntimeError("boom"))

    final = await editor_graph.run_review(case, graph)

    assert final["status"] == "approved"
    assert board.cards["card-1"].lane_id == "lane-submitted"


@pytest.mark.asyncio
async def test_desk_human_approval_runs_the_check(board, store, source):
    board.add_card("card-1", body=f"Pitch\n\n{encode_card_state(CardState(source=source, article_id='art-1'))}")
    store.put("art-1", {"card_id": "card-1", "content": "<h1>Acme</h1><p>Revenue of $10 billion.</p>"})
    verifier = FakeVerifier(NumberCheck(status=VerificationStatus.VERIFIED, summary="All match", verified_count=1))
    desk = Desk(board=board, generator=FakeGenerator(), judge=FakeJudge([]), store=store, verifier=verifier)

    result = await desk.approve("card-1")

    assert result["status"] == "approved"
    assert verifier.calls[0]["article_text"] == "Acme Revenue of $10 billion."
    assert "**Status:** ✅ Verified" in board.cards["card-1"].body


@pytest.mark.asyncio
async def test_desk_without_verifier_skips_the_check(board, store, source):
    desk = Desk(board=board, generator=FakeGenerator(), judge=FakeJudge([]), store=store)
    assert desk.verification_graph is None
    board.add_card("card-1", body=f"Pitch\n\n{encode_card_state(CardState(source=source, article_id='art-1'))}")
    store.put("art-1", {"card_id": "card-1", "content": "<h1>Acme</h1>"})

    await generation_graph.approve_card("card-1", board=board, store=store)

    assert VERIFICATION_HEADING not in board.cards["card-1"].body
    assert len(board.comments["card-1"]) == 1
