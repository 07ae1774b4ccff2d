"""Card-state envelope: the snapshot a card body carries about its own work.

The board is the store of record, so everything the generation and review
pipelines need is serialised into the card description as a hidden HTML
comment::

    <!-- CARD_STATE:v1:<base64 of compact JSON> -->

Older cards carry ``<!-- PR_DATA:... -->``, ``<!-- NOTE_DATA:... -->`` or a
fenced ``metadata`` block instead; those are still readable and come back as a
v1 ``CardState``.
"""

import base64
import binascii
import json
import re
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from app.errors import CardStateError
from graph.state import CardState, SourceKind, SourceMaterial

logger = structlog.get_logger(__name__)

CURRENT_VERSION = 1

_ENVELOPE = re.compile(r"<!--\s*CARD_STATE:v(\d+):([A-Za-z0-9+/=]+)\s*-->")
_LEGACY_COMMENT = re.compile(r"<!--\s*(PR_DATA|NOTE_DATA):\s*([A-Za-z0-9+/=]+)\s*-->")
_LEGACY_FENCE = re.compile(
    r"```metadata[^`]*?(PR_DATA|NOTE_DATA):\s*([A-Za-z0-9+/=]+)[^`]*```", re.DOTALL
)
_ANY_STATE_BLOCK = re.compile(
    r"\n*(?:<!--\s*(?:CARD_STATE:v\d+:|PR_DATA:|NOTE_DATA:)[^>]*-->|```metadata[^`]*```)"
)

# Staged trimming limits, applied in order until the envelope fits.
_BODY_LIMIT = 5000
_TEASER_LIMIT = 1000
_ESSENTIAL_BODY_LIMIT = 2000
_ESSENTIAL_TEASER_LIMIT = 500


def _b64encode(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _b64decode(blob: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(base64.b64decode(blob, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CardStateError(f"Card state payload is not valid base64 JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise CardStateError("Card state payload is not a JSON object")
    return decoded


def encode_card_state(state: CardState) -> str:
    """Render *state* as the hidden envelope comment."""
    payload = state.model_dump(mode="json")
    return f"<!-- CARD_STATE:v{state.version}:{_b64encode(payload)} -->"


def decode_card_state(body: str) -> Optional[CardState]:
    """Read the card state out of a card body.

    Returns:
        The decoded state, or ``None`` when the body carries no envelope at all.

    Raises:
        CardStateError: If an envelope is present but unreadable or of an
            unsupported version.
    """
    if not body:
        return None

    match = _ENVELOPE.search(body)
    if match:
        version = int(match.group(1))
        if version != CURRENT_VERSION:
            raise CardStateError(f"Unsupported card state version v{version}")
        payload = _b64decode(match.group(2))
        try:
            return CardState.model_validate(payload)
        except ValidationError as e:
            raise CardStateError(f"Card state failed validation: {e}") from e

    legacy = _LEGACY_COMMENT.search(body) or _LEGACY_FENCE.search(body)
    if legacy:
        tag, blob = legacy.group(1), legacy.group(2)
        logger.info("card_codec.legacy_block_decoded", tag=tag)
        return _from_legacy(tag, _b64decode(blob))

    return None


def strip_card_state(body: str) -> str:
    """Remove every envelope (current or legacy) from *body*."""
    return _ANY_STATE_BLOCK.sub("", body or "").rstrip()


def card_state_blocks(body: str) -> str:
    """Every envelope in *body*, verbatim, for carrying over to a rewritten body."""
    return "\n\n".join(m.group(0).strip() for m in _ANY_STATE_BLOCK.finditer(body or ""))


def append_card_state(body: str, state: CardState) -> str:
    """Replace whatever envelope *body* holds with a fresh one for *state*."""
    return f"{strip_card_state(body)}\n\n{encode_card_state(state)}"


def fit_card_state(state: CardState, budget: int) -> CardState:
    """Shrink *state* until its envelope is at most *budget* characters.

    Trimming is staged: long text fields are capped first, then only the
    essential fields are kept, then the minimal identifying set.
    """
    source = state.source
    trimmed = state.model_copy(
        update={
            "source": source.model_copy(
                update={
                    "body": _cap(source.body, _BODY_LIMIT),
                    "content": _cap(source.content, _BODY_LIMIT),
                    "teaser": _cap(source.teaser, _TEASER_LIMIT),
                }
            )
        }
    )
    if len(encode_card_state(trimmed)) <= budget:
        return trimmed

    logger.warning("card_codec.state_too_large", stage="essential", budget=budget)
    essential = trimmed.model_copy(
        update={
            "pitch": _cap(trimmed.pitch, _ESSENTIAL_TEASER_LIMIT),
            "source": trimmed.source.model_copy(
                update={
                    "body": trimmed.source.body[:_ESSENTIAL_BODY_LIMIT],
                    "teaser": trimmed.source.teaser[:_ESSENTIAL_TEASER_LIMIT],
                    "content": "",
                    "extra": {},
                }
            ),
        }
    )
    if len(encode_card_state(essential)) <= budget:
        return essential

    logger.warning("card_codec.state_too_large", stage="minimal", budget=budget)
    minimal_source = SourceMaterial(
        title=source.title,
        url=source.url,
        ticker=source.ticker,
        stocks=source.stocks,
        date=source.date,
        firm=source.firm,
        kind=source.kind,
    )
    return essential.model_copy(
        update={"pitch": "", "source": minimal_source, "all_revision_feedback": []}
    )


def _cap(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _stock_symbols(stocks: Any) -> List[str]:
    symbols = []
    for stock in stocks or []:
        if isinstance(stock, str):
            symbol = stock
        elif isinstance(stock, dict):
            symbol = stock.get("ticker") or stock.get("symbol") or stock.get("name") or ""
        else:
            symbol = ""
        if symbol:
            symbols.append(str(symbol).upper().strip())
    return symbols


def _from_legacy(tag: str, data: Dict[str, Any]) -> CardState:
    """Map an old PR_DATA / NOTE_DATA blob onto the current schema."""
    stocks = _stock_symbols(data.get("stocks"))
    ticker = str(data.get("ticker") or (stocks[0] if stocks else "")).upper()
    known = {
        "title", "headline", "subject", "body", "teaser", "content", "text",
        "url", "link", "ticker", "stocks", "created", "date", "firm",
    }
    source = SourceMaterial(
        title=data.get("title") or data.get("headline") or data.get("subject") or "",
        body=data.get("body") or "",
        teaser=data.get("teaser") or "",
        content=data.get("content") or data.get("text") or "",
        url=data.get("url") or data.get("link") or "",
        ticker=ticker,
        date=str(data.get("created") or data.get("date") or ""),
        firm=data.get("firm") or "",
        stocks=stocks,
        kind=SourceKind.ANALYST_NOTE if tag == "NOTE_DATA" else SourceKind.PRESS_RELEASE,
        extra={k: v for k, v in data.items() if k not in known},
    )
    writer_app = "story" if tag == "NOTE_DATA" else "pr-story"
    return CardState(source=source, writer_app=writer_app)
