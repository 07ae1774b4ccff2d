"""LangGraph node that regenerates a draft from the editor's feedback."""

from typing import Any, Dict, Optional

import structlog

from agents.editor import ensure_active
from graph.state import EditorState, ReviewStatus
from memory.article_store import ArticleStore

logger = structlog.get_logger(__name__)

REVISION_DELIMITER = "--- REVISION REQUEST ---"


def build_revision_prompt(original_prompt: str, feedback: str, revision_number: int) -> str:
    """Original prompt plus a delimited block carrying the latest feedback."""
    feedback = feedback.strip() or "Address the issues raised in the previous review."
    return (
        f"{original_prompt}\n\n{REVISION_DELIMITER}\n"
        f"Editor Feedback (Revision {revision_number}):\n{feedback}\n\n"
        "Please regenerate the article addressing the feedback above while "
        "maintaining accuracy to the source material."
    )


async def request_revision_node(
    state: EditorState,
    *,
    generator: Any,
    store: Optional[ArticleStore] = None,
) -> Dict[str, Any]:
    """Regenerate the article with the augmented prompt.

    A generator failure escalates the case at once without touching
    ``revision_count``: no new draft exists, and a broken generator is not
    worth another attempt.

    Args:
        state: Current editor state; status must be ``needs_revision``.
        generator: Object exposing ``async generate(prompt, profile_name,
            context, source=...)``, bounded by its own hard timeout.
        store: Article store updated with the new draft when given.
    """
    ensure_active(state)

    case_id = state["case_id"]
    revision_count = state.get("revision_count", 0)
    log = logger.bind(case_id=case_id, revision=revision_count + 1)

    prompt = build_revision_prompt(
        state["original_prompt"], state.get("revision_feedback", ""), revision_count + 1
    )

    try:
        article = await generator.generate(
            prompt,
            state.get("writer_app", "story"),
            state.get("writer_context") or {},
            source=state["source_material"],
        )
    except Exception as e:
        log.error("reviser.regeneration_failed", error=str(e), error_type=e.__class__.__name__)
        return {
            "status": ReviewStatus.ESCALATED,
            "escalation_reason": f"Article regeneration failed: {e.__class__.__name__}: {e}",
        }

    article_id = state.get("article_id", "")
    if store is not None and article_id:
        existing = store.get(article_id) or {}
        store.put(article_id, {
            **existing,
            "card_id": case_id,
            "content": article,
            "revision": revision_count + 1,
        })

    log.info("reviser.regenerated", length=len(article))
    return {
        "article_content": article,
        "revision_count": revision_count + 1,
        "status": ReviewStatus.PENDING,
    }
