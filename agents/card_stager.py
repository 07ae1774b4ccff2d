"""Stage pitches as board cards, at most once per source item."""

import time
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import structlog

from app import config
from app.errors import CardStateError, PipelineError
from graph.state import CardState, Pitch, PitchState, StagedCard
from memory.card_codec import decode_card_state, encode_card_state, fit_card_state
from memory.staging import SeenKeys
from tools.board import generate_article_link
from tools.text_cleaning import strip_control_chars, truncate

logger = structlog.get_logger(__name__)

TITLE_LIMIT = 250


def card_state_for(pitch: Pitch) -> CardState:
    return CardState(
        source=pitch.source,
        pitch=pitch.text,
        writer_app=pitch.writer_app,
        writer_context=pitch.writer_context,
        staging_key=pitch.staging_key,
        lane_id=pitch.lane_id,
    )


def build_card_body(pitch: Pitch, card_id: str = "", limit: int = config.BOARD_SAFE_BODY_LIMIT) -> str:
    """Card description: action link, pitch, source line and the state envelope.

    The pitch text is shortened when the whole body would exceed *limit*.
    """
    header = f"{generate_article_link(card_id, pitch.writer_app)}\n\n---\n\n" if card_id else ""
    footer = ""
    if pitch.source.url:
        footer += f"\n\n**Source:** [View Original]({pitch.source.url})"
    if pitch.source.ticker:
        footer += f"\n**Ticker:** {pitch.source.ticker}"

    envelope = encode_card_state(fit_card_state(card_state_for(pitch), limit // 2))
    text = strip_control_chars(pitch.text)
    room = limit - len(header) - len(footer) - len(envelope) - 2
    return f"{header}{truncate(text, max(room, 0))}{footer}\n\n{envelope}"


class CardStager:
    """Creates cards for pitches, skipping any already on the board.

    A pitch is skipped when its staging key is in the process-local
    ``SeenKeys`` or in the envelope of any card in its own lane or in one of
    the downstream lanes generated cards move through (in progress, needs
    review, submitted). A lane's keys are cached for *lane_ttl* seconds.
    """

    def __init__(
        self,
        board: Any,
        seen: Optional[SeenKeys] = None,
        downstream_lanes: Optional[Sequence[str]] = None,
        lane_ttl: float = config.STAGING_LANE_TTL_SECONDS,
    ) -> None:
        self.board = board
        self.seen = seen if seen is not None else SeenKeys()
        self.downstream_lanes = downstream_lanes
        self.lane_ttl = lane_ttl
        self._lane_keys: Dict[str, Tuple[float, Set[str]]] = {}

    def _lanes_for(self, lane_id: str) -> List[str]:
        downstream = (
            self.downstream_lanes
            if self.downstream_lanes is not None
            else (config.LANE_IN_PROGRESS, config.LANE_NEEDS_REVIEW, config.LANE_SUBMITTED)
        )
        lanes = [lane_id]
        for lane in downstream:
            if lane and lane not in lanes:
                lanes.append(lane)
        return lanes

    async def _keys_in_lane(self, lane_id: str) -> Set[str]:
        cached = self._lane_keys.get(lane_id)
        if cached is not None and time.monotonic() - cached[0] < self.lane_ttl:
            return cached[1]

        keys: Set[str] = set()
        try:
            cards = await self.board.list_cards(lane_id)
        except PipelineError as e:
            logger.warning("card_stager.lane_read_failed", lane_id=lane_id, error=str(e))
            return keys
        for card in cards:
            try:
                state = decode_card_state(card.body)
            except CardStateError:
                continue
            if state is not None and state.staging_key:
                keys.add(state.staging_key)
        self._lane_keys[lane_id] = (time.monotonic(), keys)
        return keys

    async def already_staged(self, pitch: Pitch) -> bool:
        """Whether *pitch* already has a card in this process or on the board."""
        if pitch.staging_key in self.seen:
            return True
        for lane_id in self._lanes_for(pitch.lane_id):
            if pitch.staging_key in await self._keys_in_lane(lane_id):
                return True
        return False

    async def stage(self, pitch: Pitch) -> Optional[StagedCard]:
        """Create the card for *pitch*; ``None`` when it was already staged.

        Raises:
            PipelineError: Card creation failed. Failures after creation (the
                link update, the attachment) are logged, not raised.
        """
        log = logger.bind(staging_key=pitch.staging_key, lane_id=pitch.lane_id)
        if not pitch.lane_id:
            log.warning("card_stager.no_lane", title=pitch.title[:80])
            return None
        if await self.already_staged(pitch):
            log.info("card_stager.duplicate_skipped", title=pitch.title[:80])
            self.seen.add(pitch.staging_key)
            return None

        title = truncate(strip_control_chars(pitch.title), TITLE_LIMIT)
        ref = await self.board.create_card(pitch.lane_id, title, build_card_body(pitch))
        self.seen.add(pitch.staging_key)
        cached = self._lane_keys.get(pitch.lane_id)
        if cached is not None:
            cached[1].add(pitch.staging_key)

        try:
            await self.board.update_card_body(ref.id, build_card_body(pitch, card_id=ref.id))
        except PipelineError as e:
            log.warning("card_stager.link_update_failed", card_id=ref.id, error=str(e))

        if pitch.attachment:
            try:
                await self.board.attach_file(
                    ref.id,
                    pitch.attachment["data"],
                    pitch.attachment.get("filename", "attachment.pdf"),
                    pitch.attachment.get("mime_type", "application/pdf"),
                )
            except PipelineError as e:
                log.warning("card_stager.attachment_failed", card_id=ref.id, error=str(e))

        log.info("card_stager.card_staged", card_id=ref.id, title=title[:80])
        return StagedCard(card_id=ref.id, url=ref.url, title=title, staging_key=pitch.staging_key)

    async def stage_all(self, pitches: List[Pitch]) -> Tuple[List[StagedCard], List[str]]:
        """Stage every pitch; returns (staged cards, skipped or failed titles)."""
        staged: List[StagedCard] = []
        skipped: List[str] = []
        for pitch in pitches:
            try:
                card = await self.stage(pitch)
            except PipelineError as e:
                logger.error("card_stager.create_failed", title=pitch.title[:80], error=str(e))
                skipped.append(pitch.title)
                continue
            if card is None:
                skipped.append(pitch.title)
            else:
                staged.append(card)
        return staged, skipped


async def stage_cards_node(state: PitchState, *, stager: CardStager) -> Dict[str, Any]:
    """Stage the drafted pitches.

    Raises:
        PipelineError: When every pitch failed to stage because of a board
            error, so a synchronous caller sees the failure.
    """
    pitches = state.get("pitches") or []
    if not pitches:
        return {"staged": [], "skipped": []}

    staged: List[StagedCard] = []
    skipped: List[str] = []
    errors: List[PipelineError] = []
    for pitch in pitches:
        try:
            card = await stager.stage(pitch)
        except PipelineError as e:
            logger.error("card_stager.create_failed", title=pitch.title[:80], error=str(e))
            errors.append(e)
            skipped.append(pitch.title)
            continue
        if card is None:
            skipped.append(pitch.title)
        else:
            staged.append(card)

    if errors and not staged and len(errors) == len(pitches):
        raise errors[0]
    return {"staged": staged, "skipped": skipped}
