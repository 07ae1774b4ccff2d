"""
graph/generation_graph.py

Gated pipeline run when a human clicks a card's Generate Article link:

    START -> load_card -> mark_in_progress -> generate_article
                                                 |--ok-----> store_article -> run_editor -> END
                                                 |--failed-> generation_failed -> END

Every input is rebuilt from the card itself (title plus the card-state
envelope), so the pipeline can run in any process after a restart. This
module also holds the card-level operations behind the editor links: re-run
the review, approve by hand, and request another revision.
"""

import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, Optional

import structlog
from langgraph.graph import END, START, StateGraph

from agents.finalizer import approve_article_node, escalate_to_human_node, split_card_body
from agents.reviser import build_revision_prompt
from app import config
from app.errors import NotFoundError, PipelineError
from graph.checkpointer import get_checkpointer, thread_config
from graph.editor_graph import run_review
from graph.verification_graph import verify_after_approval
from graph.state import (
    CardState,
    EditorState,
    GenerationState,
    ReviewCase,
    ReviewStatus,
    SourceMaterial,
)
from memory.article_store import ArticleStore
from tools.board import generate_article_link
from tools.text_cleaning import first_heading, truncate

logger = structlog.get_logger(__name__)

LOAD_CARD = "load_card"
MARK_IN_PROGRESS = "mark_in_progress"
GENERATE = "generate_article"
STORE = "store_article"
RUN_EDITOR = "run_editor"
FAILED = "generation_failed"


def card_state_from_card(card: Any) -> CardState:
    """The card's envelope, or a best-effort state built from its visible text."""
    base, state = split_card_body(card.body)
    if state is not None:
        return state
    logger.warning("generation_graph.no_card_state", card_id=card.id)
    return CardState(source=SourceMaterial(title=card.title, body=base), pitch=base)


def prompt_for(card_title: str, state: CardState) -> str:
    return state.pitch or f"Write an article about: {card_title}"


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

async def load_card_node(state: GenerationState, *, board: Any) -> Dict[str, Any]:
    card = await board.get_card(state["card_id"])
    card_state = card_state_from_card(card)
    return {
        "card_title": card.title,
        "card_state": card_state,
        "origin_lane_id": card.lane_id,
        "writer_app": state.get("writer_app") or card_state.writer_app,
        "prompt": prompt_for(card.title, card_state),
    }


async def mark_in_progress_node(
    state: GenerationState, *, board: Any, lane_id: str = config.LANE_IN_PROGRESS
) -> Dict[str, Any]:
    if not lane_id:
        return {}
    try:
        await board.move_card(state["card_id"], lane_id)
    except PipelineError as e:
        logger.warning("generation_graph.in_progress_move_failed", card_id=state["card_id"], error=str(e))
    return {}


async def generate_article_node(state: GenerationState, *, generator: Any) -> Dict[str, Any]:
    card_state: CardState = state["card_state"]
    log = logger.bind(card_id=state["card_id"], writer_app=state["writer_app"])
    try:
        article = await generator.generate(
            state["prompt"],
            state["writer_app"],
            card_state.writer_context,
            source=card_state.source,
        )
    except Exception as e:
        log.error("generation_graph.generation_failed", error=str(e), error_type=e.__class__.__name__)
        return {"error": f"{e.__class__.__name__}: {e}"}
    log.info("generation_graph.generated", length=len(article))
    return {"article_content": article, "error": None}


def store_article_node(state: GenerationState, *, store: ArticleStore) -> Dict[str, Any]:
    article_id = uuid.uuid4().hex
    article = state["article_content"]
    store.put(article_id, {
        "card_id": state["card_id"],
        "title": first_heading(article, default=state["card_title"]),
        "content": article,
        "writer_app": state["writer_app"],
        "revision": 0,
    })
    logger.info("generation_graph.article_stored", card_id=state["card_id"], article_id=article_id)
    return {"article_id": article_id}


async def run_editor_node(state: GenerationState, *, editor_graph: Any) -> Dict[str, Any]:
    card_state: CardState = state["card_state"]
    case = ReviewCase(
        case_id=state["card_id"],
        article_content=state["article_content"],
        source_material=card_state.source,
        original_prompt=state["prompt"],
        article_id=state["article_id"],
        writer_app=state["writer_app"],
        writer_context=card_state.writer_context,
    )
    final = await run_review(case, editor_graph)
    return {"review": review_summary(final)}


async def generation_failed_node(state: GenerationState, *, board: Any) -> Dict[str, Any]:
    """Report the failure on the card and put it back where it was staged.

    The Generate Article link is restored at the top of the body if a previous
    run removed it, so the human can simply try again.
    """
    card_id = state["card_id"]
    log = logger.bind(card_id=card_id)
    error = state.get("error") or "unknown error"

    try:
        await board.add_comment(
            card_id,
            f"❌ **Article generation failed**\n\n{truncate(error, 500)}\n\n"
            "Use the Generate Article link on the card to try again.",
        )
    except PipelineError as e:
        log.warning("generation_graph.failure_comment_failed", error=str(e))

    lane_id = state.get("origin_lane_id", "")
    if lane_id:
        try:
            await board.move_card(card_id, lane_id)
        except PipelineError as e:
            log.error("generation_graph.restore_move_failed", error=str(e), lane_id=lane_id)

    try:
        card = await board.get_card(card_id)
        if "[Generate Article](" not in card.body:
            link = generate_article_link(card_id, state.get("writer_app") or "story")
            await board.update_card_body(card_id, f"{link}\n\n---\n\n{card.body}")
    except PipelineError as e:
        log.warning("generation_graph.link_restore_failed", error=str(e))

    return {"review": None}


def route_after_generation(state: GenerationState) -> str:
    return FAILED if state.get("error") else STORE


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------

def build_graph(
    *,
    board: Any,
    generator: Any,
    store: ArticleStore,
    editor_graph: Any,
    in_progress_lane: str = config.LANE_IN_PROGRESS,
) -> StateGraph:
    builder = StateGraph(GenerationState)

    builder.add_node(LOAD_CARD, partial(load_card_node, board=board))
    builder.add_node(MARK_IN_PROGRESS, partial(mark_in_progress_node, board=board, lane_id=in_progress_lane))
    builder.add_node(GENERATE, partial(generate_article_node, generator=generator))
    builder.add_node(STORE, partial(store_article_node, store=store))
    builder.add_node(RUN_EDITOR, partial(run_editor_node, editor_graph=editor_graph))
    builder.add_node(FAILED, partial(generation_failed_node, board=board))

    builder.add_edge(START, LOAD_CARD)
    builder.add_edge(LOAD_CARD, MARK_IN_PROGRESS)
    builder.add_edge(MARK_IN_PROGRESS, GENERATE)
    builder.add_conditional_edges(GENERATE, route_after_generation, {STORE: STORE, FAILED: FAILED})
    builder.add_edge(STORE, RUN_EDITOR)
    builder.add_edge(RUN_EDITOR, END)
    builder.add_edge(FAILED, END)
    return builder


def compile_graph(**collaborators: Any):
    return build_graph(**collaborators).compile(checkpointer=get_checkpointer())


def review_summary(final: EditorState) -> Dict[str, Any]:
    report = final.get("board_report")
    return {
        "case_id": final["case_id"],
        "status": ReviewStatus(final["status"]).value,
        "revision_count": final["revision_count"],
        "article_id": final.get("article_id", ""),
        "escalation_reason": final.get("escalation_reason", ""),
        "board_report": report.model_dump() if report is not None else None,
    }


async def run_generation(card_id: str, graph: Any, writer_app: str = "") -> Dict[str, Any]:
    """Generate, store and review the article for *card_id*."""
    run_id = uuid.uuid4().hex[:8]
    state: GenerationState = {
        "card_id": card_id,
        "run_id": run_id,
        "card_title": "",
        "card_state": None,
        "origin_lane_id": "",
        "writer_app": writer_app,
        "prompt": "",
        "article_content": "",
        "article_id": "",
        "review": None,
        "error": None,
    }
    log = logger.bind(card_id=card_id, run_id=run_id)
    log.info("generation_graph.run_started", writer_app=writer_app or None)
    final = await graph.ainvoke(state, thread_config(card_id, run_id))
    log.info("generation_graph.run_finished", error=final.get("error"),
             status=(final.get("review") or {}).get("status"))
    return {"card_id": card_id, "error": final.get("error"), "review": final.get("review")}


# ---------------------------------------------------------------------------
# Editor link operations
# ---------------------------------------------------------------------------

def _stored_article(store: ArticleStore, card_id: str, article_id: str) -> Dict[str, Any]:
    if article_id:
        record = store.get(article_id)
        if record is not None:
            return {**record, "id": article_id}
    for record in store.list():
        if record.get("card_id") == card_id:
            return record
    raise NotFoundError(f"No stored article for card {card_id}")


async def load_case(card_id: str, *, board: Any, store: ArticleStore) -> ReviewCase:
    """Rebuild a fresh review case for *card_id* from the card and the store.

    Raises:
        NotFoundError: The card or its article does not exist.
    """
    card = await board.get_card(card_id)
    card_state = card_state_from_card(card)
    record = _stored_article(store, card_id, card_state.article_id)
    return ReviewCase(
        case_id=card_id,
        article_content=record.get("content", ""),
        source_material=card_state.source,
        original_prompt=prompt_for(card.title, card_state),
        article_id=record.get("id", card_state.article_id),
        writer_app=record.get("writer_app") or card_state.writer_app,
        writer_context=card_state.writer_context,
    )


async def review_card(card_id: str, *, board: Any, store: ArticleStore, editor_graph: Any) -> Dict[str, Any]:
    """Run the editor loop again on the stored article, as a new case."""
    case = await load_case(card_id, board=board, store=store)
    final = await run_review(case, editor_graph)
    return review_summary(final)


async def revise_card(
    card_id: str,
    note: str,
    *,
    board: Any,
    store: ArticleStore,
    generator: Any,
    editor_graph: Any,
    review_lane: str = config.LANE_NEEDS_REVIEW,
) -> Dict[str, Any]:
    """Regenerate with the human's note, then review the new draft as a new case.

    A generator failure is not retried: the card is escalated at once with
    the failure as the reason, and the call returns normally.
    """
    case = await load_case(card_id, board=board, store=store)
    prompt = build_revision_prompt(case.original_prompt, note, 1)
    try:
        article = await generator.generate(
            prompt, case.writer_app, case.writer_context, source=case.source_material
        )
    except Exception as e:
        logger.error("generation_graph.human_revision_failed", card_id=card_id,
                     error=str(e), error_type=e.__class__.__name__)
        state: EditorState = {
            **case.to_state(run_id="human"),
            "status": ReviewStatus.ESCALATED,
            "escalation_reason": f"Article regeneration failed: {e.__class__.__name__}: {e}",
        }
        result = await escalate_to_human_node(state, board=board, review_lane=review_lane)
        return review_summary({**state, **result})

    article_id = uuid.uuid4().hex
    store.put(article_id, {
        "card_id": card_id,
        "title": first_heading(article),
        "content": article,
        "writer_app": case.writer_app,
        "revision": 0,
        "human_note": note,
    })
    logger.info("generation_graph.human_revision_generated", card_id=card_id, article_id=article_id)
    case = case.model_copy(update={"article_content": article, "article_id": article_id})
    final = await run_review(case, editor_graph)
    return review_summary(final)


async def approve_card(
    card_id: str,
    *,
    board: Any,
    store: ArticleStore,
    note: str = "",
    submitted_lane: str = config.LANE_SUBMITTED,
    verification_graph: Optional[Any] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Human approval: write the approved section and move the card to submitted.

    The number verification pass follows when *verification_graph* is given.
    """
    case = await load_case(card_id, board=board, store=store)
    state: EditorState = {
        **case.to_state(run_id="human"),
        "status": ReviewStatus.APPROVED,
        "review_notes": note or "Approved by a human editor.",
        "review_summary": "Approved manually from the board.",
    }
    result = await approve_article_node(
        state, board=board, submitted_lane=submitted_lane, now=now or datetime.now(timezone.utc)
    )
    report = result["board_report"]
    logger.info("generation_graph.human_approved", card_id=card_id, moved=report.moved)
    await verify_after_approval(
        card_id, case.article_content, case.source_material, verification_graph, case.article_id
    )
    return {
        "case_id": card_id,
        "status": ReviewStatus.APPROVED.value,
        "article_id": case.article_id,
        "board_report": report.model_dump(),
    }
