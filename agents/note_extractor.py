"""Analyst-note extraction: tickers, firm and rating hints from emails and PDFs."""

import re
from collections import Counter
from typing import Any, Dict, List, Optional

import structlog

from agents.pitch_drafter import build_pitch
from app import config
from app.errors import ConfigurationError, SourceFetchError
from graph.state import Pitch, PitchState, SourceKind, SourceMaterial
from tools.email_source import Attachment, EmailMessage
from tools.pdf_text import extract_pdf_text
from tools.text_cleaning import truncate

logger = structlog.get_logger(__name__)

NOTE_TEXT_LIMIT = 20000

# Upper-case words that look like symbols but rarely are.
TICKER_STOPWORDS = frozenset({
    "A", "I", "AI", "AM", "AN", "AND", "ARE", "AS", "AT", "BE", "BUY", "BY", "CEO", "CFO",
    "CPI", "EPS", "ESG", "ETF", "EU", "FDA", "FOR", "FQ", "FY", "GDP", "HOLD", "IN", "IPO",
    "IS", "IT", "LLC", "LTD", "MA", "NA", "NEW", "NO", "NOT", "OF", "ON", "OR", "PDF",
    "PE", "PM", "PT", "Q1", "Q2", "Q3", "Q4", "RE", "SEC", "SELL", "TO", "UK", "UP",
    "US", "USA", "USD", "VS", "WE", "YOY", "YTD",
})

_EXCHANGE_TICKER = re.compile(r"\b(?:NYSE|NASDAQ|Nasdaq|AMEX|NYSEARCA|OTC)\s*:\s*([A-Z]{1,5}(?:\.[A-Z])?)\b")
_BRACKET_TICKER = re.compile(r"\[([A-Z]{1,5}(?:\.[A-Z])?)\]")
_PAREN_TICKER = re.compile(r"\(([A-Z]{1,5}(?:\.[A-Z])?)\)")
_BARE_TICKER = re.compile(r"\b([A-Z]{2,5})\b")

_FIRM = re.compile(
    r"\b(Goldman Sachs|Morgan Stanley|J\.?P\.? Morgan|Bank of America|BofA|Citi(?:group)?|"
    r"Wells Fargo|Barclays|UBS|Deutsche Bank|Jefferies|Piper Sandler|Raymond James|"
    r"Wedbush|Needham|Oppenheimer|Bernstein|Evercore(?: ISI)?|Mizuho|KeyBanc|Truist|"
    r"Stifel|Cowen|RBC Capital|BMO Capital|Baird|Loop Capital|Rosenblatt)\b"
)
_RATING = re.compile(
    r"\b(upgrade[sd]?|downgrade[sd]?|initiate[sd]?|reiterate[sd]?|maintain(?:s|ed)?)\b.{0,60}?"
    r"\b(buy|sell|hold|neutral|overweight|underweight|outperform|underperform|equal[- ]weight)\b",
    re.IGNORECASE | re.DOTALL,
)
_PRICE_TARGET = re.compile(r"price target\D{0,30}\$?\s?(\d{1,5}(?:\.\d{1,2})?)", re.IGNORECASE)


def extract_tickers(text: str, limit: int = 5) -> List[str]:
    """Most likely symbols in *text*, best first.

    Exchange-prefixed symbols score highest, then bracketed, then
    parenthesised ones; bare upper-case words count once each and two-letter
    words are penalised.
    """
    scores: Counter = Counter()
    for match in _EXCHANGE_TICKER.finditer(text):
        scores[match.group(1)] += 20
    for match in _BRACKET_TICKER.finditer(text):
        scores[match.group(1)] += 10
    for match in _PAREN_TICKER.finditer(text):
        scores[match.group(1)] += 5
    for match in _BARE_TICKER.finditer(text):
        scores[match.group(1)] += 1

    ranked = []
    for symbol, score in scores.items():
        if symbol in TICKER_STOPWORDS:
            continue
        if len(symbol) <= 2:
            score -= 3
        if score >= 3:
            ranked.append((score, symbol))
    ranked.sort(key=lambda item: (-item[0], item[1]))
    return [symbol for _, symbol in ranked[:limit]]


def extract_firm(text: str, sender: str = "") -> str:
    match = _FIRM.search(text)
    if match:
        return match.group(1)
    domain = re.search(r"@([\w-]+)\.", sender)
    return domain.group(1).replace("-", " ").title() if domain else ""


def rating_hint(text: str) -> str:
    parts = []
    rating = _RATING.search(text)
    if rating:
        parts.append(f"{rating.group(1).capitalize()} to {rating.group(2).capitalize()}")
    target = _PRICE_TARGET.search(text)
    if target:
        parts.append(f"price target ${target.group(1)}")
    return ", ".join(parts)


def note_from_text(message: EmailMessage, text: str, filename: str = "") -> SourceMaterial:
    """SourceMaterial for one note (an attachment, or the email body itself)."""
    combined = f"{message.subject}\n{text}"
    tickers = extract_tickers(combined)
    firm = extract_firm(combined, message.sender)
    hint = rating_hint(combined)
    extra: Dict[str, Any] = {"sender": message.sender, "email_uid": message.uid}
    if filename:
        extra["filename"] = filename
    if hint:
        extra["rating"] = hint
    return SourceMaterial(
        title=message.subject or filename or "Analyst note",
        content=truncate(text, NOTE_TEXT_LIMIT),
        teaser=hint or truncate(text.strip(), 300),
        url=f"email://{message.uid}/{filename}" if filename else f"email://{message.uid}",
        ticker=tickers[0] if tickers else "",
        stocks=tickers,
        date=message.date,
        firm=firm,
        kind=SourceKind.ANALYST_NOTE,
        extra=extra,
    )


def card_title(note: SourceMaterial) -> str:
    prefix = f"{note.ticker}: " if note.ticker else ""
    firm = f"{note.firm} - " if note.firm and note.firm not in note.title else ""
    return f"{prefix}{firm}{note.title}"


def pitches_for_email(message: EmailMessage, lane_id: str = config.LANE_ANALYST_NOTES) -> List[Pitch]:
    """One pitch per PDF attachment, or one for the email body when it has none."""
    pitches: List[Pitch] = []
    for attachment in message.attachments:
        pitches.append(_pitch_for_attachment(message, attachment, lane_id))
    if not pitches and message.text.strip():
        note = note_from_text(message, message.text)
        pitches.append(build_pitch(note, writer_app="story", lane_id=lane_id, title=card_title(note)))
    return pitches


def _pitch_for_attachment(message: EmailMessage, attachment: Attachment, lane_id: str) -> Pitch:
    text = extract_pdf_text(attachment.data, attachment.filename) or message.text
    note = note_from_text(message, text, attachment.filename)
    return build_pitch(
        note,
        writer_app="story",
        lane_id=lane_id,
        title=card_title(note),
        attachment={
            "data": attachment.data,
            "filename": attachment.filename,
            "mime_type": attachment.mime_type,
        },
    )


# ---------------------------------------------------------------------------
# Graph nodes
# ---------------------------------------------------------------------------


async def fetch_emails_node(state: PitchState, *, email_source: Any) -> Dict[str, Any]:
    try:
        emails = await email_source.fetch()
    except (ConfigurationError, SourceFetchError) as e:
        logger.error("note_extractor.fetch_failed", error=str(e))
        return {"emails": [], "error": str(e)}
    return {"emails": emails}


def extract_notes_node(state: PitchState, *, lane_id: Optional[str] = None) -> Dict[str, Any]:
    lane_id = lane_id if lane_id is not None else config.LANE_ANALYST_NOTES
    if state.get("error"):
        return {"pitches": []}

    pitches: List[Pitch] = []
    for message in state.get("emails") or []:
        found = pitches_for_email(message, lane_id)
        if not found:
            logger.debug("note_extractor.empty_message", uid=message.uid)
        pitches.extend(found)

    logger.info("note_extractor.notes_extracted", emails=len(state.get("emails") or []), pitches=len(pitches))
    return {"pitches": pitches, "sources": [p.source for p in pitches]}
