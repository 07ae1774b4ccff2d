"""Number verification after approval: check the figures, report on the card.

The check never changes a decided outcome. It writes one "Number
Verification" section (replacing any earlier one) after the rest of the card
body, keeps the card-state envelope last, and adds a summary comment.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from app import config
from app.errors import PipelineError
from graph.state import BoardWriteReport, NumberCheck, VerificationState, VerificationStatus
from memory.card_codec import card_state_blocks, strip_card_state
from tools.text_cleaning import clean_for_board, html_to_text, truncate

logger = structlog.get_logger(__name__)

VERIFICATION_HEADING = "## 🔢 Number Verification"
SECTION_RULE = "\n\n---\n\n"

DISCREPANCY_LIMIT = 300
MAX_DISCREPANCIES_SHOWN = 10
MAX_DISCREPANCIES_IN_COMMENT = 3
NOTES_LIMIT = 1000
# Below this much room the section is skipped and only the comment is written.
_MIN_SECTION_ROOM = 120

_VERIFICATION_SECTION = re.compile(
    r"(?:\n*---\n+)?## 🔢 Number Verification[\s\S]*?(?=\n\n---\n|\Z)"
)

_STATUS_LABELS = {
    VerificationStatus.VERIFIED: "✅ Verified",
    VerificationStatus.DISCREPANCIES_FOUND: "⚠️ Discrepancies Found",
    VerificationStatus.ERROR: "❌ Error",
}
_COMMENT_LABELS = {
    VerificationStatus.VERIFIED: "✅ All numbers verified",
    VerificationStatus.DISCREPANCIES_FOUND: "⚠️ Discrepancies found",
    VerificationStatus.ERROR: "❌ Error",
}


def strip_verification_section(body: str) -> str:
    return _VERIFICATION_SECTION.sub("", body or "").rstrip()


async def verify_numbers_node(state: VerificationState, *, verifier: Any) -> Dict[str, Any]:
    """Ask the verifier to compare figures; any failure becomes an ``error`` result."""
    log = logger.bind(case_id=state["case_id"])
    source = state["source_material"]
    source_text = html_to_text(source.best_text())
    article_text = html_to_text(state.get("article_content", ""))

    if not source_text:
        log.warning("number_verifier.no_source_text")
        return {"check": NumberCheck.error(
            "Unable to verify: Source material not available",
            "Source material was empty or could not be read from the card.",
        )}
    if not article_text:
        log.warning("number_verifier.no_article_text")
        return {"check": NumberCheck.error(
            "Unable to verify: Article content not available",
            "Generated article content was empty.",
        )}

    try:
        check = await verifier.verify(source_text, article_text, title=source.title)
    except Exception as e:
        log.error("number_verifier.check_failed", error=str(e), error_type=e.__class__.__name__)
        return {"check": NumberCheck.error(
            f"Verification error: {e.__class__.__name__}",
            f"Error during verification: {e}",
        )}
    return {"check": check}


def build_verification_section(check: NumberCheck, checked_at: datetime) -> str:
    lines = [
        f"{VERIFICATION_HEADING}\n",
        f"**Status:** {_STATUS_LABELS[check.status]}\n",
        f"**Summary:** {truncate(clean_for_board(check.summary), 300)}\n",
        f"**Verified Numbers:** {check.verified_count}\n",
        f"**Verified:** {checked_at.strftime('%Y-%m-%d %H:%M UTC')}\n",
    ]
    if check.discrepancies:
        lines.append("### ⚠️ Discrepancies Found\n")
        shown = check.discrepancies[:MAX_DISCREPANCIES_SHOWN]
        lines.extend(
            f"{idx}. {truncate(clean_for_board(d), DISCREPANCY_LIMIT)}" for idx, d in enumerate(shown, start=1)
        )
        if len(check.discrepancies) > len(shown):
            lines.append(f"... and {len(check.discrepancies) - len(shown)} more")
        lines.append("")
    if check.notes:
        lines.append(f"### 📝 Verification Notes\n\n{truncate(clean_for_board(check.notes), NOTES_LIMIT)}\n")
    return "\n".join(lines).rstrip() + "\n"


def compose_verification_body(body: str, section: str, limit: int) -> Optional[str]:
    """Card body with *section* after the existing text and the envelope last.

    The section is shortened to fit *limit*; ``None`` when there is no room.
    """
    envelope = card_state_blocks(body)
    base = strip_verification_section(strip_card_state(body))
    tail = f"\n\n{envelope}" if envelope else ""
    room = limit - len(base) - len(SECTION_RULE) - len(tail)
    if room < _MIN_SECTION_ROOM:
        return None
    return f"{base}{SECTION_RULE}{truncate(section, room).rstrip()}{tail}"


def verification_comment(check: NumberCheck) -> str:
    text = (
        "🔢 **Number Verification Complete**\n\n"
        f"**Status:** {_COMMENT_LABELS[check.status]}\n\n"
        f"{truncate(clean_for_board(check.summary), 300)}"
    )
    if check.discrepancies:
        text += f"\n\n**Discrepancies:** {len(check.discrepancies)}\n"
        shown = check.discrepancies[:MAX_DISCREPANCIES_IN_COMMENT]
        text += "\n".join(
            f"{idx}. {truncate(clean_for_board(d), DISCREPANCY_LIMIT)}" for idx, d in enumerate(shown, start=1)
        )
        if len(check.discrepancies) > len(shown):
            text += (
                f"\n\n... and {len(check.discrepancies) - len(shown)} more. "
                "See the card description for full details."
            )
    return text


async def write_verification_node(
    state: VerificationState,
    *,
    board: Any,
    body_limit: int = config.BOARD_SAFE_BODY_LIMIT,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Write the verification section and comment; board failures are recorded, not raised."""
    card_id = state["case_id"]
    log = logger.bind(case_id=card_id)
    check: NumberCheck = state.get("check") or NumberCheck.error("Verification did not run")
    report = BoardWriteReport()

    try:
        card = await board.get_card(card_id)
        section = build_verification_section(check, now or datetime.now(timezone.utc))
        body = compose_verification_body(card.body, section, body_limit)
        if body is None:
            report.description_updated = False
            report.description_error = "no room for the verification section"
            log.warning("number_verifier.section_skipped", limit=body_limit)
        else:
            await board.update_card_body(card_id, body)
            report.description_updated = True
    except PipelineError as e:
        report.description_updated = False
        report.description_error = str(e)
        log.warning("number_verifier.description_failed", error=str(e))

    try:
        await board.add_comment(card_id, verification_comment(check))
        report.comment_added = True
    except PipelineError as e:
        report.comment_added = False
        report.comment_error = str(e)
        log.warning("number_verifier.comment_failed", error=str(e))

    log.info("number_verifier.reported", status=check.status.value,
             discrepancies=len(check.discrepancies), description_updated=report.description_updated)
    return {"board_report": report}
