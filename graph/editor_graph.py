"""LangGraph review loop: review, then approve, revise or escalate.

Topology::

    START -> review_article --approved--------> approve_article -> [verify_numbers] -> END
                  ^        --needs_revision---> request_revision
                  |        --escalated--------> escalate_to_human -> END
                  |                                   ^
                  +------- pending <- request_revision -- escalated

The loop is bounded by the review rule in ``agents.editor.decide_status``:
at most ``MAX_REVIEW_ATTEMPTS`` judgments run before a terminal node.
"""

import uuid
from functools import partial
from typing import Any, Optional

import structlog
from langgraph.graph import END, START, StateGraph

from agents.editor import review_article_node
from agents.finalizer import approve_article_node, escalate_to_human_node
from agents.reviser import request_revision_node
from app.config import BOARD_SAFE_BODY_LIMIT, LANE_NEEDS_REVIEW, LANE_SUBMITTED, MAX_REVIEW_ATTEMPTS
from graph.checkpointer import get_checkpointer, thread_config
from graph.state import EditorState, ReviewCase, ReviewStatus
from graph.verification_graph import verify_approved_node
from memory.article_store import ArticleStore

logger = structlog.get_logger(__name__)

# Node name constants (prevents typos)
REVIEW = "review_article"
APPROVE = "approve_article"
REVISE = "request_revision"
ESCALATE = "escalate_to_human"
VERIFY_NUMBERS = "verify_numbers"

# Each judgment is followed by at most one revision; terminal nodes add three steps.
RECURSION_LIMIT = MAX_REVIEW_ATTEMPTS * 2 + 5


# ---------------------------------------------------------------------------
# Conditional Routing Functions
# ---------------------------------------------------------------------------

def route_after_review(state: EditorState) -> str:
    """Map the review outcome to the next node. Unknown values escalate."""
    status = state.get("status")
    if status == ReviewStatus.APPROVED:
        return APPROVE
    if status == ReviewStatus.NEEDS_REVISION:
        return REVISE
    if status != ReviewStatus.ESCALATED:
        logger.warning("editor_graph.unknown_status", status=str(status), case_id=state.get("case_id"))
    return ESCALATE


def route_after_revision(state: EditorState) -> str:
    """Back to review after a new draft; straight to escalation if regeneration failed."""
    if state.get("status") == ReviewStatus.PENDING:
        return REVIEW
    return ESCALATE


# ---------------------------------------------------------------------------
# Graph Construction
# ---------------------------------------------------------------------------

def build_graph(
    *,
    judge: Any,
    generator: Any,
    board: Any,
    store: Optional[ArticleStore] = None,
    submitted_lane: str = LANE_SUBMITTED,
    review_lane: str = LANE_NEEDS_REVIEW,
    body_limit: int = BOARD_SAFE_BODY_LIMIT,
    verification_graph: Optional[Any] = None,
) -> StateGraph:
    """Construct the editor StateGraph with its collaborators bound to the nodes.

    With a compiled *verification_graph* the approved path runs the number
    verification pass before ending.
    """
    builder = StateGraph(EditorState)

    builder.add_node(REVIEW, partial(review_article_node, judge=judge))
    builder.add_node(REVISE, partial(request_revision_node, generator=generator, store=store))
    builder.add_node(APPROVE, partial(
        approve_article_node, board=board, body_limit=body_limit, submitted_lane=submitted_lane
    ))
    builder.add_node(ESCALATE, partial(
        escalate_to_human_node, board=board, body_limit=body_limit, review_lane=review_lane
    ))

    builder.add_edge(START, REVIEW)
    builder.add_conditional_edges(
        REVIEW, route_after_review, {APPROVE: APPROVE, REVISE: REVISE, ESCALATE: ESCALATE}
    )
    builder.add_conditional_edges(
        REVISE, route_after_revision, {REVIEW: REVIEW, ESCALATE: ESCALATE}
    )
    if verification_graph is not None:
        builder.add_node(VERIFY_NUMBERS, partial(verify_approved_node, verification_graph=verification_graph))
        builder.add_edge(APPROVE, VERIFY_NUMBERS)
        builder.add_edge(VERIFY_NUMBERS, END)
    else:
        builder.add_edge(APPROVE, END)
    builder.add_edge(ESCALATE, END)

    return builder


def compile_graph(**collaborators: Any):
    """Build and compile the editor graph with a checkpointer."""
    compiled = build_graph(**collaborators).compile(checkpointer=get_checkpointer())
    logger.debug("editor_graph.compiled")
    return compiled


async def run_review(case: ReviewCase, graph: Any) -> EditorState:
    """Drive *case* through the compiled editor *graph* to a terminal status.

    Each call uses a fresh thread id so a card can be reviewed again later
    without inheriting an old run's state.
    """
    run_id = uuid.uuid4().hex[:8]
    config = {**thread_config(case.case_id, run_id), "recursion_limit": RECURSION_LIMIT}
    log = logger.bind(case_id=case.case_id, run_id=run_id)
    log.info("editor_graph.run_started", revision_count=case.revision_count)

    final_state: EditorState = await graph.ainvoke(case.to_state(run_id), config)

    log.info(
        "editor_graph.run_finished",
        status=ReviewStatus(final_state["status"]).value,
        revision_count=final_state["revision_count"],
        judge_calls=final_state.get("judge_calls", 0),
    )
    return final_state
