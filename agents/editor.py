"""LangGraph node that reviews a generated article and decides what happens next."""

from typing import Any, Dict

import structlog

from app.config import MAX_REVIEW_ATTEMPTS, MAX_REVISION_INDEX
from app.errors import JudgmentParseError, TerminalStateError
from graph.state import EditorState, Judgment, ReviewStatus, SourceMaterial
from tools.judge import CHECKS_PERFORMED

logger = structlog.get_logger(__name__)


def decide_status(judgment: Judgment, revision_count: int) -> ReviewStatus:
    """Transition rule of the review loop.

    Approval wins; otherwise the last permitted attempt escalates and any
    earlier attempt asks for a revision.
    """
    if judgment.approved:
        return ReviewStatus.APPROVED
    if revision_count >= MAX_REVISION_INDEX:
        return ReviewStatus.ESCALATED
    return ReviewStatus.NEEDS_REVISION


def render_source_text(source: SourceMaterial) -> str:
    """Reference text handed to the judge: best body plus identifying lines."""
    text = source.best_text()
    if source.ticker:
        text += f"\n\nTicker: {source.ticker}"
    if source.date:
        text += f"\n\nDate: {source.date}"
    if source.url:
        text += f"\n\nSource URL: {source.url}"
    return text.strip()


def build_review_summary(judgment: Judgment, status: ReviewStatus, attempt: int) -> str:
    checks = ", ".join(CHECKS_PERFORMED)
    outcome = {
        ReviewStatus.APPROVED: "approved",
        ReviewStatus.NEEDS_REVISION: "revision requested",
        ReviewStatus.ESCALATED: "escalated to human review",
    }.get(status, status.value)
    summary = (
        f"Review attempt {attempt} of {MAX_REVIEW_ATTEMPTS}. "
        f"Checks performed: {checks}. Outcome: {outcome}."
    )
    if judgment.issues:
        summary += f" {len(judgment.issues)} issue(s) raised."
    return summary


def ensure_active(state: EditorState) -> None:
    """Raise if the case already reached a terminal status."""
    status = ReviewStatus(state.get("status", ReviewStatus.PENDING))
    if status.is_terminal:
        raise TerminalStateError(
            f"Case {state.get('case_id')} is already {status.value}; no further changes allowed"
        )


async def review_article_node(state: EditorState, *, judge: Any) -> Dict[str, Any]:
    """Judge the current draft and set the next status.

    Any failure to obtain a verdict becomes a fail-closed ``Judgment`` that
    still counts against the attempt budget.

    Args:
        state: Current editor state.
        judge: Object exposing ``async judge(source_text, prompt, draft_text,
            prior_feedback, *, title, source_url, attempt)``.

    Returns:
        Partial state update.
    """
    ensure_active(state)

    case_id = state["case_id"]
    revision_count = state.get("revision_count", 0)
    attempt = revision_count + 1
    source: SourceMaterial = state["source_material"]
    log = logger.bind(case_id=case_id, attempt=attempt)

    try:
        judgment = await judge.judge(
            render_source_text(source),
            state["original_prompt"],
            state["article_content"],
            list(state.get("all_revision_feedback") or []),
            title=source.title,
            source_url=source.url,
            attempt=attempt,
        )
    except JudgmentParseError as e:
        log.warning("editor.judgment_unparseable", error=str(e))
        judgment = Judgment.system_error(str(e))
    except Exception as e:
        log.error("editor.judgment_failed", error=str(e), error_type=e.__class__.__name__)
        judgment = Judgment.system_error(f"{e.__class__.__name__}: {e}")

    status = decide_status(judgment, revision_count)

    update: Dict[str, Any] = {
        "status": status,
        "revision_feedback": judgment.feedback,
        "review_issues": judgment.issues,
        "review_notes": judgment.notes,
        "review_summary": build_review_summary(judgment, status, attempt),
        "judge_calls": state.get("judge_calls", 0) + 1,
    }

    if status is ReviewStatus.NEEDS_REVISION:
        update["all_revision_feedback"] = [judgment.feedback]
    elif status is ReviewStatus.ESCALATED:
        issues = "; ".join(judgment.issues) or "none listed"
        update["escalation_reason"] = (
            f"Failed review after {attempt} revision attempts. Issues: {issues}"
        )
    else:
        update["final_article"] = state["article_content"]

    log.info(
        "editor.review_completed",
        status=status.value,
        approved=judgment.approved,
        issues=len(judgment.issues),
    )
    return update
