"""Judgment parsing and the LLM judge prompt."""

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from app.errors import JudgmentParseError
from tools.judge import LLMJudge, key_terms, parse_judgment


def test_parses_plain_json():
    judgment = parse_judgment('{"approved": true, "reviewNotes": "Fine", "issues": []}')
    assert judgment.approved is True
    assert judgment.notes == "Fine"


def test_parses_fenced_json():
    raw = 'Here you go:\n```json\n{"approved": false, "revisionFeedback": "Add figures", "issues": ["thin"]}\n```'
    judgment = parse_judgment(raw)
    assert judgment.approved is False
    assert judgment.feedback == "Add figures"
    assert judgment.issues == ["thin"]


def test_parses_object_embedded_in_prose():
    judgment = parse_judgment('My verdict is {"approved": false, "feedback": "Shorter", "issues": "too long"} ok?')
    assert judgment.feedback == "Shorter"
    assert judgment.issues == ["too long"]


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "I think it is fine.",
        '{"approved": "yes"}',
        '["approved", true]',
        "```json\n{broken\n```",
    ],
)
def test_unusable_replies_raise(raw):
    with pytest.raises(JudgmentParseError):
        parse_judgment(raw)


def test_key_terms_split_headline_topics():
    assert key_terms("Fed holds rates; oil slides & gold rallies") == ["Fed holds rates", "oil slides", "gold rallies"]
    assert key_terms("") == []


@pytest.mark.asyncio
async def test_llm_judge_returns_model_verdict():
    llm = FakeListChatModel(responses=['{"approved": true, "reviewNotes": "Solid"}'])
    judgment = await LLMJudge(llm=llm).judge(
        "source text", "angle", "<p>Article</p>", title="Acme beats", attempt=1
    )
    assert judgment.approved is True
    assert judgment.notes == "Solid"


@pytest.mark.asyncio
async def test_llm_judge_surfaces_parse_failures():
    llm = FakeListChatModel(responses=["no json here"])
    with pytest.raises(JudgmentParseError):
        await LLMJudge(llm=llm).judge("source", "angle", "<p>Article</p>")
