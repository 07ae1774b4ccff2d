"""
graph/verification_graph.py

Number verification run after an article is approved:

    START -> verify_numbers -> write_verification -> END

Enabled with EDITOR_NUMBER_VERIFICATION_ENABLED. The pass only reports; it
never changes the review outcome.
"""

import uuid
from functools import partial
from typing import Any, Optional

import structlog
from langgraph.graph import END, START, StateGraph

from agents.number_verifier import verify_numbers_node, write_verification_node
from app.config import BOARD_SAFE_BODY_LIMIT
from graph.checkpointer import get_checkpointer, thread_config
from graph.state import EditorState, SourceMaterial, VerificationState

logger = structlog.get_logger(__name__)

VERIFY = "verify_numbers"
WRITE = "write_verification"


def build_graph(*, verifier: Any, board: Any, body_limit: int = BOARD_SAFE_BODY_LIMIT) -> StateGraph:
    builder = StateGraph(VerificationState)
    builder.add_node(VERIFY, partial(verify_numbers_node, verifier=verifier))
    builder.add_node(WRITE, partial(write_verification_node, board=board, body_limit=body_limit))
    builder.add_edge(START, VERIFY)
    builder.add_edge(VERIFY, WRITE)
    builder.add_edge(WRITE, END)
    return builder


def compile_graph(**collaborators: Any):
    return build_graph(**collaborators).compile(checkpointer=get_checkpointer())


async def run_verification(
    case_id: str,
    article_content: str,
    source_material: SourceMaterial,
    graph: Any,
    article_id: str = "",
) -> VerificationState:
    run_id = uuid.uuid4().hex[:8]
    state: VerificationState = {
        "case_id": case_id,
        "run_id": run_id,
        "article_id": article_id,
        "article_content": article_content,
        "source_material": source_material,
        "check": None,
        "board_report": None,
    }
    return await graph.ainvoke(state, thread_config(case_id, "verify", run_id))


async def verify_after_approval(
    case_id: str,
    article_content: str,
    source_material: SourceMaterial,
    graph: Optional[Any],
    article_id: str = "",
) -> Optional[VerificationState]:
    """Run the verification pass if one is configured.

    Errors are logged and dropped: the article is already approved, and a
    retry of the calling step would regenerate or re-approve it.
    """
    if graph is None:
        return None
    try:
        return await run_verification(case_id, article_content, source_material, graph, article_id)
    except Exception as e:
        logger.error("verification_graph.failed", case_id=case_id, error=str(e),
                     error_type=e.__class__.__name__)
        return None


async def verify_approved_node(state: EditorState, *, verification_graph: Any) -> dict:
    """Editor-graph node run after ``approve_article``."""
    await verify_after_approval(
        state["case_id"],
        state.get("final_article") or state["article_content"],
        state["source_material"],
        verification_graph,
        state.get("article_id", ""),
    )
    return {}
