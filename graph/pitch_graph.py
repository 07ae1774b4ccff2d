"""
graph/pitch_graph.py

The two linear ingestion pipelines that end in staged board cards:

    topic:  START -> fetch_source -> draft_pitch -> stage_cards -> END
    notes:  START -> fetch_emails -> extract_notes -> stage_cards -> END

Both share ``stage_cards_node`` and therefore the same at-most-once staging
rule.
"""

import uuid
from functools import partial
from typing import Any, Dict

import structlog
from langgraph.graph import END, START, StateGraph

from agents.card_stager import CardStager, stage_cards_node
from agents.note_extractor import extract_notes_node, fetch_emails_node
from agents.pitch_drafter import draft_pitch_node, fetch_source_node
from graph.checkpointer import get_checkpointer, thread_config
from graph.state import PitchState

logger = structlog.get_logger(__name__)

FETCH_SOURCE = "fetch_source"
DRAFT_PITCH = "draft_pitch"
FETCH_EMAILS = "fetch_emails"
EXTRACT_NOTES = "extract_notes"
STAGE_CARDS = "stage_cards"


def initial_state(topic: str = "", pr_only: bool = False) -> PitchState:
    return {
        "run_id": uuid.uuid4().hex[:8],
        "topic": topic,
        "pr_only": pr_only,
        "emails": [],
        "sources": [],
        "pitches": [],
        "staged": [],
        "skipped": [],
        "used_fallback": False,
        "error": None,
    }


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------

def build_topic_graph(*, news: Any, stager: CardStager) -> StateGraph:
    builder = StateGraph(PitchState)
    builder.add_node(FETCH_SOURCE, partial(fetch_source_node, news=news))
    builder.add_node(DRAFT_PITCH, draft_pitch_node)
    builder.add_node(STAGE_CARDS, partial(stage_cards_node, stager=stager))

    builder.add_edge(START, FETCH_SOURCE)
    builder.add_edge(FETCH_SOURCE, DRAFT_PITCH)
    builder.add_edge(DRAFT_PITCH, STAGE_CARDS)
    builder.add_edge(STAGE_CARDS, END)
    return builder


def build_notes_graph(*, email_source: Any, stager: CardStager) -> StateGraph:
    builder = StateGraph(PitchState)
    builder.add_node(FETCH_EMAILS, partial(fetch_emails_node, email_source=email_source))
    builder.add_node(EXTRACT_NOTES, extract_notes_node)
    builder.add_node(STAGE_CARDS, partial(stage_cards_node, stager=stager))

    builder.add_edge(START, FETCH_EMAILS)
    builder.add_edge(FETCH_EMAILS, EXTRACT_NOTES)
    builder.add_edge(EXTRACT_NOTES, STAGE_CARDS)
    builder.add_edge(STAGE_CARDS, END)
    return builder


def compile_topic_graph(**collaborators: Any):
    return build_topic_graph(**collaborators).compile(checkpointer=get_checkpointer())


def compile_notes_graph(**collaborators: Any):
    return build_notes_graph(**collaborators).compile(checkpointer=get_checkpointer())


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------

def _summary(final: PitchState) -> Dict[str, Any]:
    return {
        "run_id": final["run_id"],
        "staged": [card.model_dump() for card in final.get("staged") or []],
        "skipped": list(final.get("skipped") or []),
        "used_fallback": final.get("used_fallback", False),
        "error": final.get("error"),
    }


async def run_topic_pipeline(topic: str, graph: Any, pr_only: bool = False) -> Dict[str, Any]:
    """Fetch, draft and stage a pitch for *topic*; returns a JSON-ready summary.

    Board failures propagate (see ``stage_cards_node``).
    """
    state = initial_state(topic=topic, pr_only=pr_only)
    log = logger.bind(run_id=state["run_id"], topic=topic, pr_only=pr_only)
    log.info("pitch_graph.topic_started")
    final = await graph.ainvoke(state, thread_config("pitch", state["run_id"]))
    summary = _summary(final)
    log.info("pitch_graph.topic_finished", staged=len(summary["staged"]),
             skipped=len(summary["skipped"]), used_fallback=summary["used_fallback"])
    return summary


async def run_notes_pipeline(graph: Any) -> Dict[str, Any]:
    """Scan the analyst mailbox and stage one card per note."""
    state = initial_state()
    log = logger.bind(run_id=state["run_id"])
    log.info("pitch_graph.notes_started")
    final = await graph.ainvoke(state, thread_config("notes", state["run_id"]))
    summary = _summary(final)
    log.info("pitch_graph.notes_finished", staged=len(summary["staged"]),
             skipped=len(summary["skipped"]), error=summary["error"])
    return summary
