"""Terminal actions of the review loop: write the outcome back to the card.

Both actions re-read the card before writing, remove any section a previous
run left behind, append one fresh section and keep the card-state envelope at
the end. Each board call is attempted independently and its outcome recorded
in a ``BoardWriteReport``; a failed call never undoes a decided outcome.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog

from agents.number_verifier import strip_verification_section
from app import config
from app.errors import CardStateError, PipelineError
from graph.state import BoardWriteReport, CardState, EditorState, ReviewStatus
from memory.card_codec import decode_card_state, encode_card_state, fit_card_state, strip_card_state
from tools.text_cleaning import clean_for_board, first_heading, html_to_text, strip_control_chars, truncate

logger = structlog.get_logger(__name__)

APPROVED_HEADING = "## ✅ Editor Approved"
ESCALATED_HEADING = "## ⚠️ Needs Human Review"
SECTION_RULE = "\n\n---\n\n"

SUMMARY_LIMIT = 500
NOTES_LIMIT = 800
ISSUE_LIMIT = 200
MAX_ISSUES_SHOWN = 5
FEEDBACK_LIMIT = 300
MAX_FEEDBACK_SHOWN = 3
REASON_LIMIT = 300
COMMENT_PREVIEW_LIMIT = 500

# Room the base body must keep before the minimal escalation section is used.
_MIN_BASE_ROOM = 200
_TRUNCATION_NOTE = "\n\n*(description truncated)*"

_TERMINAL_SECTION = re.compile(
    r"(?:\n*---\n+)?(?:## ✅ Editor Approved|## ⚠️ Needs Human Review)[\s\S]*?(?=\n\n---\n|\Z)"
)
_GENERATE_LINK = re.compile(r"\*\*\[Generate Article\]\([^)]*\)\*\*(?:\n+---\n*)?")


def article_view_url(article_id: str) -> str:
    if article_id:
        return f"{config.APP_URL}/articles/{article_id}"
    return f"{config.APP_URL}/articles"


def actions_block(card_id: str) -> str:
    """The human decision links. Always written verbatim."""
    return (
        "**Actions:**\n"
        f"- [Approve & Submit]({config.APP_URL}/editor/approve/{card_id})\n"
        f"- [Request More Revisions]({config.APP_URL}/editor/request-revision/{card_id})\n"
    )


def split_card_body(body: str) -> Tuple[str, Optional[CardState]]:
    """Separate a card body into its visible base text and its card state.

    Removes the Generate Article link, every previously written terminal
    section and any number verification report so a fresh section can be
    appended exactly once.
    """
    try:
        state = decode_card_state(body)
    except CardStateError as e:
        logger.warning("finalizer.card_state_unreadable", error=str(e))
        state = None

    base = strip_card_state(body)
    base = _GENERATE_LINK.sub("", base)
    base = _TERMINAL_SECTION.sub("", base)
    base = strip_verification_section(base)
    return base.strip(), state


def _capped_list(items: List[str], max_shown: int, item_limit: int, noun: str) -> List[str]:
    lines = [truncate(clean_for_board(i), item_limit) for i in items[:max_shown]]
    if len(items) > max_shown:
        lines.append(f"... and {len(items) - max_shown} more {noun}(s)")
    return lines


def build_approved_section(state: EditorState, title: str, approved_at: datetime) -> str:
    lines = [
        f"{APPROVED_HEADING}\n",
        f"**Title:** {strip_control_chars(title)}\n",
        f"**View Article:** [View Generated Article]({article_view_url(state.get('article_id', ''))})\n",
        f"**Revisions:** {state.get('revision_count', 0)}\n",
        f"**Approved:** {approved_at.strftime('%Y-%m-%d %H:%M UTC')}\n",
    ]
    if state.get("review_summary"):
        lines.append(f"**Review Summary:** {truncate(clean_for_board(state['review_summary']), SUMMARY_LIMIT)}\n")
    if state.get("review_notes"):
        lines.append(f"**Review Notes:** {truncate(clean_for_board(state['review_notes']), NOTES_LIMIT)}\n")
    history = [f for f in state.get("all_revision_feedback") or [] if f]
    if history:
        lines.append("**Revision History:**\n")
        for idx, feedback in enumerate(history, start=1):
            lines.append(f"**Revision {idx}:** {truncate(clean_for_board(feedback), FEEDBACK_LIMIT)}\n")
    return "\n".join(lines).rstrip() + "\n"


def build_escalation_section(state: EditorState) -> str:
    card_id = state["case_id"]
    attempts = state.get("revision_count", 0) + 1
    parts = [
        f"{ESCALATED_HEADING}\n",
        f"After {attempts} revision attempt(s), this article needs human review.\n",
    ]
    if state.get("review_summary"):
        parts.append(f"**Review Summary:**\n{truncate(clean_for_board(state['review_summary']), SUMMARY_LIMIT)}\n")
    if state.get("review_notes"):
        parts.append(f"**Review Notes:**\n{truncate(clean_for_board(state['review_notes']), NOTES_LIMIT)}\n")

    issues = list(state.get("review_issues") or [])
    if issues:
        shown = _capped_list(issues, MAX_ISSUES_SHOWN, ISSUE_LIMIT, "issue")
        parts.append("**Issues Found:**\n" + "\n".join(f"- {i}" for i in shown) + "\n")

    history = list(state.get("all_revision_feedback") or [])
    if history:
        shown = _capped_list(history, MAX_FEEDBACK_SHOWN, FEEDBACK_LIMIT, "revision")
        rendered = [
            line if line.startswith("... and") else f"**Revision {idx}:** {line or '(no feedback)'}"
            for idx, line in enumerate(shown, start=1)
        ]
        parts.append("**Revision History:**\n" + "\n\n".join(rendered) + "\n")

    reason = state.get("escalation_reason") or "Review did not approve the article."
    parts.append(f"**Reason for Escalation:**\n{truncate(clean_for_board(reason), REASON_LIMIT)}\n")
    parts.append(f"**Generated Article:**\n[View Article]({article_view_url(state.get('article_id', ''))})\n")
    parts.append(actions_block(card_id))
    return "\n".join(parts)


def minimal_escalation_section(state: EditorState) -> str:
    attempts = state.get("revision_count", 0) + 1
    return (
        f"{ESCALATED_HEADING}\n\n"
        f"After {attempts} revision attempt(s), this article needs human review.\n\n"
        f"**Generated Article:**\n[View Article]({article_view_url(state.get('article_id', ''))})\n\n"
        f"{actions_block(state['case_id'])}"
    )


def fit_body(base: str, section: str, tail: str, limit: int) -> Optional[str]:
    """Join base, section and tail within *limit*, shortening only *base*.

    Returns ``None`` when the section and tail alone leave too little room.
    """
    full = _join(base, section, tail)
    if len(full) <= limit:
        return full
    room = limit - len(_join("", section, tail)) - len(SECTION_RULE) - len(_TRUNCATION_NOTE)
    if room < _MIN_BASE_ROOM:
        return None
    return _join(base[:room].rstrip() + _TRUNCATION_NOTE, section, tail)


def _join(base: str, section: str, tail: str) -> str:
    body = f"{base}{SECTION_RULE}{section}" if base else section
    if tail:
        body = f"{body.rstrip()}\n\n{tail}"
    return body


def compose_escalation_body(
    base: str, state: EditorState, tail: str, limit: int
) -> str:
    """Final card body for an escalated case, never longer than *limit*.

    The base description is truncated first; if that is not enough the full
    write-up is replaced by the minimal section. The Actions block is never
    shortened.
    """
    body = fit_body(base, build_escalation_section(state), tail, limit)
    if body is not None:
        return body

    logger.warning("finalizer.escalation_minimal_section", case_id=state["case_id"], limit=limit)
    minimal = minimal_escalation_section(state)
    for candidate_tail in (tail, ""):
        body = fit_body(base, minimal, candidate_tail, limit)
        if body is not None:
            return body
        if len(_join("", minimal, candidate_tail)) <= limit:
            return _join("", minimal, candidate_tail)
    return actions_block(state["case_id"])


def _updated_card_state(previous: Optional[CardState], state: EditorState) -> CardState:
    base = previous or CardState(
        source=state["source_material"],
        pitch=state.get("original_prompt", ""),
        writer_app=state.get("writer_app", "story"),
        writer_context=state.get("writer_context") or {},
    )
    return base.model_copy(update={
        "article_id": state.get("article_id", ""),
        "status": ReviewStatus(state["status"]),
        "revision_count": state.get("revision_count", 0),
        "all_revision_feedback": list(state.get("all_revision_feedback") or []),
    })


def _envelope(previous: Optional[CardState], state: EditorState, limit: int) -> str:
    return encode_card_state(fit_card_state(_updated_card_state(previous, state), limit // 3))


async def approve_article_node(
    state: EditorState,
    *,
    board: Any,
    body_limit: int = config.BOARD_SAFE_BODY_LIMIT,
    submitted_lane: str = config.LANE_SUBMITTED,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Write the approved section, comment, and move the card to the submitted lane."""
    card_id = state["case_id"]
    log = logger.bind(case_id=card_id)
    report = BoardWriteReport()
    article = state["article_content"]
    title = first_heading(article)
    approved_at = now or datetime.now(timezone.utc)

    try:
        card = await board.get_card(card_id)
        base, previous = split_card_body(card.body)
        section = build_approved_section(state, title, approved_at)
        tail = _envelope(previous, state, body_limit)
        body = fit_body(base, section, tail, body_limit) or fit_body("", section, "", body_limit)
        if body is None:
            body = truncate(section, body_limit)
        await board.update_card_body(card_id, body)
        report.description_updated = True
    except PipelineError as e:
        report.description_updated = False
        report.description_error = str(e)
        log.warning("finalizer.approved_description_failed", error=str(e))

    preview = truncate(html_to_text(article), COMMENT_PREVIEW_LIMIT)
    comment = f"**✅ Article Approved by Editor**\n\n**Title:** {title}\n\n"
    if state.get("review_notes"):
        comment += f"**Review:** {truncate(clean_for_board(state['review_notes']), 300)}\n\n"
    comment += f"**Preview:** {preview}\n\n[View Full Article]({article_view_url(state.get('article_id', ''))})"
    try:
        await board.add_comment(card_id, comment)
        report.comment_added = True
    except PipelineError as e:
        report.comment_added = False
        report.comment_error = str(e)
        log.warning("finalizer.approved_comment_failed", error=str(e))

    if submitted_lane:
        try:
            await board.move_card(card_id, submitted_lane)
            report.moved = True
        except PipelineError as e:
            report.moved = False
            report.move_error = str(e)
            log.error("finalizer.approved_move_failed", error=str(e), lane_id=submitted_lane)
    else:
        log.warning("finalizer.submitted_lane_not_configured")

    log.info("finalizer.approved", **report.model_dump(exclude={"move_error", "description_error", "comment_error"}))
    return {"final_article": article, "board_report": report}


async def escalate_to_human_node(
    state: EditorState,
    *,
    board: Any,
    body_limit: int = config.BOARD_SAFE_BODY_LIMIT,
    review_lane: str = config.LANE_NEEDS_REVIEW,
) -> Dict[str, Any]:
    """Move the card to the review lane, then write the escalation record.

    The move goes first. A failed move is an error (the card sits in the wrong
    lane); a failed description write is only a warning.
    """
    card_id = state["case_id"]
    log = logger.bind(case_id=card_id)
    report = BoardWriteReport()

    if review_lane:
        try:
            await board.move_card(card_id, review_lane)
            report.moved = True
        except PipelineError as e:
            report.moved = False
            report.move_error = str(e)
            log.error("finalizer.escalation_move_failed", error=str(e), lane_id=review_lane)
    else:
        log.warning("finalizer.review_lane_not_configured")

    try:
        card = await board.get_card(card_id)
        base, previous = split_card_body(card.body)
        tail = _envelope(previous, state, body_limit)
        body = compose_escalation_body(base, state, tail, body_limit)
        await board.update_card_body(card_id, body)
        report.description_updated = True
    except PipelineError as e:
        report.description_updated = False
        report.description_error = str(e)
        log.warning("finalizer.escalation_description_failed", error=str(e))

    attempts = state.get("revision_count", 0) + 1
    comment = (
        "⚠️ **Escalated to Human Review**\n\n"
        f"Editor attempted {attempts} revision(s) but the article still needs review.\n\n"
    )
    issues = _capped_list(list(state.get("review_issues") or []), MAX_ISSUES_SHOWN, ISSUE_LIMIT, "issue")
    if issues:
        comment += "**Issues Found:**\n" + "\n".join(f"- {i}" for i in issues) + "\n\n"
    if state.get("escalation_reason"):
        comment += f"**Reason:** {truncate(clean_for_board(state['escalation_reason']), REASON_LIMIT)}"
    try:
        await board.add_comment(card_id, comment.strip())
        report.comment_added = True
    except PipelineError as e:
        report.comment_added = False
        report.comment_error = str(e)
        log.warning("finalizer.escalation_comment_failed", error=str(e))

    log.info("finalizer.escalated", move_failed=report.move_failed,
             description_updated=report.description_updated)
    return {"final_article": None, "board_report": report}


def count_markers(body: str) -> Dict[str, int]:
    """Occurrences of each terminal section heading in *body*."""
    return {
        "approved": body.count(APPROVED_HEADING),
        "escalated": body.count(ESCALATED_HEADING),
    }
