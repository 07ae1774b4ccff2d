"""Shared data models and graph state for the newsroom pipelines.

This module defines the pydantic models that travel between nodes (source
material, pitches, judgments, board write reports, the card-state snapshot) and
the TypedDict states of the LangGraph workflows. List fields that must
only ever grow use ``operator.add`` reducers so a node returns just the new
entries and LangGraph appends them.
"""

import operator
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from pydantic import BaseModel, Field


class ReviewStatus(str, Enum):
    """Status of a review case. ``approved`` and ``escalated`` are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (ReviewStatus.APPROVED, ReviewStatus.ESCALATED)


class SourceKind(str, Enum):
    NEWS = "news"
    PRESS_RELEASE = "press_release"
    ANALYST_NOTE = "analyst_note"
    RSS = "rss"


class SourceMaterial(BaseModel):
    """Normalised reference content a pitch and its article are built from.

    Attributes:
        title: Headline or email subject.
        body: Full text, possibly HTML.
        teaser: Short summary supplied by the source.
        content: Alternative full-text field (used by notes and RSS items).
        url: Canonical link to the source item.
        ticker: Primary stock symbol, if known.
        date: Publication date as an ISO string.
        firm: Analyst firm for analyst notes.
        stocks: Every symbol the source mentions.
        kind: Which ingestion path produced the item.
        extra: Free-form source-specific fields.
    """

    title: str = Field("", description="Headline or subject")
    body: str = Field("", description="Full text, possibly HTML")
    teaser: str = Field("", description="Short summary")
    content: str = Field("", description="Alternative full-text field")
    url: str = Field("", description="Link to the source item")
    ticker: str = Field("", description="Primary stock symbol")
    date: str = Field("", description="Publication date (ISO)")
    firm: str = Field("", description="Analyst firm")
    stocks: List[str] = Field(default_factory=list, description="Mentioned symbols")
    kind: SourceKind = Field(SourceKind.NEWS, description="Ingestion path")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Source-specific fields")

    def best_text(self) -> str:
        """Body, then content, then teaser: the first one that is non-empty."""
        return self.body or self.content or self.teaser


class Pitch(BaseModel):
    """A drafted proposal waiting to be staged as a board card."""

    title: str = Field(..., description="Card title")
    text: str = Field(..., description="Human-readable pitch")
    source: SourceMaterial
    lane_id: str = Field("", description="Target lane; empty means unroutable")
    writer_app: str = Field("story", description="Endpoint profile used at generation time")
    writer_context: Dict[str, Any] = Field(default_factory=dict)
    staging_key: str = Field("", description="At-most-once key for card creation")
    attachment: Optional[Dict[str, Any]] = Field(
        None, description="Optional file to attach: {data, filename, mime_type}"
    )


class StagedCard(BaseModel):
    card_id: str
    url: str = ""
    title: str = ""
    staging_key: str = ""


class Judgment(BaseModel):
    """Structured verdict returned by the judgment collaborator."""

    approved: bool = False
    notes: str = ""
    feedback: str = ""
    issues: List[str] = Field(default_factory=list)

    @classmethod
    def system_error(cls, reason: str) -> "Judgment":
        """A fail-closed verdict used whenever no real judgment could be produced."""
        return cls(
            approved=False,
            notes=f"Automated review failed: {reason}",
            feedback="",
            issues=["review system error"],
        )


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    DISCREPANCIES_FOUND = "discrepancies_found"
    ERROR = "error"


class NumberCheck(BaseModel):
    """Outcome of comparing an article's figures with its source.

    Each discrepancy reads ``"Source: X, Article: Y (context)"``.
    """

    status: VerificationStatus = VerificationStatus.ERROR
    summary: str = ""
    verified_count: int = 0
    discrepancies: List[str] = Field(default_factory=list)
    notes: str = ""

    @classmethod
    def error(cls, summary: str, notes: str = "") -> "NumberCheck":
        return cls(status=VerificationStatus.ERROR, summary=summary, notes=notes)


class BoardWriteReport(BaseModel):
    """Independent outcome of each board call made by a terminal action.

    ``None`` means the call was not attempted (for example no lane configured).
    """

    moved: Optional[bool] = None
    move_error: str = ""
    description_updated: Optional[bool] = None
    description_error: str = ""
    comment_added: Optional[bool] = None
    comment_error: str = ""

    @property
    def move_failed(self) -> bool:
        return self.moved is False


class CardState(BaseModel):
    """Snapshot embedded in a card body so the board can act as the store of record."""

    version: int = 1
    source: SourceMaterial = Field(default_factory=SourceMaterial)
    pitch: str = ""
    writer_app: str = "story"
    writer_context: Dict[str, Any] = Field(default_factory=dict)
    staging_key: str = ""
    lane_id: str = ""
    article_id: str = ""
    status: Optional[ReviewStatus] = None
    revision_count: int = 0
    all_revision_feedback: List[str] = Field(default_factory=list)


class ReviewCase(BaseModel):
    """The unit of work driven through the editor loop.

    Mirrors ``EditorState`` and is used to seed and read back the graph.
    """

    case_id: str
    article_content: str
    source_material: SourceMaterial
    original_prompt: str
    article_id: str = ""
    revision_count: int = Field(0, ge=0)
    revision_feedback: str = ""
    all_revision_feedback: List[str] = Field(default_factory=list)
    review_issues: List[str] = Field(default_factory=list)
    review_notes: str = ""
    review_summary: str = ""
    escalation_reason: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    writer_app: str = "story"
    writer_context: Dict[str, Any] = Field(default_factory=dict)

    def to_state(self, run_id: str = "") -> "EditorState":
        return {
            **self.model_dump(),
            "source_material": self.source_material,
            "status": self.status,
            "run_id": run_id,
            "judge_calls": 0,
            "final_article": None,
            "board_report": None,
        }

    @classmethod
    def from_state(cls, state: "EditorState") -> "ReviewCase":
        return cls.model_validate({k: v for k, v in state.items() if k in cls.model_fields})


# ---------------------------------------------------------------------------
# Graph states
# ---------------------------------------------------------------------------


class EditorState(TypedDict):
    """State of the review loop.

    Attributes:
        case_id: Board card id; one case per card.
        run_id: Identifier of this loop invocation (used as the thread id).
        article_id: Key of the stored article for view links.
        article_content: Latest draft.
        source_material: Ground truth for the review. Never replaced.
        original_prompt: Intended angle and constraints. Never replaced.
        revision_count: Completed regenerations, 0-based.
        revision_feedback: Feedback from the most recent judgment.
        all_revision_feedback: One entry per needs_revision transition.
        review_issues: Issues raised in the most recent judgment.
        review_notes: Notes from the most recent judgment.
        review_summary: Human-readable list of the checks performed.
        status: Current ReviewStatus.
        escalation_reason: Why the case was escalated.
        writer_app: Endpoint profile used for regeneration.
        writer_context: Source-selection parameters for regeneration.
        judge_calls: Number of judgments requested in this run.
        final_article: Approved article, None otherwise.
        board_report: BoardWriteReport of the terminal action.
    """

    case_id: str
    run_id: str
    article_id: str
    article_content: str
    source_material: SourceMaterial
    original_prompt: str
    revision_count: int
    revision_feedback: str
    all_revision_feedback: Annotated[List[str], operator.add]
    review_issues: List[str]
    review_notes: str
    review_summary: str
    status: ReviewStatus
    escalation_reason: str
    writer_app: str
    writer_context: Dict[str, Any]
    judge_calls: int
    final_article: Optional[str]
    board_report: Optional[BoardWriteReport]


class PitchState(TypedDict):
    """State of the linear ingestion pipelines (news/PR topic and analyst notes)."""

    run_id: str
    topic: str
    pr_only: bool
    emails: List[Any]
    sources: List[SourceMaterial]
    pitches: List[Pitch]
    staged: Annotated[List[StagedCard], operator.add]
    skipped: Annotated[List[str], operator.add]
    used_fallback: bool
    error: Optional[str]


class GenerationState(TypedDict):
    """State of the gated pipeline triggered from a card's Generate link."""

    card_id: str
    run_id: str
    card_title: str
    card_state: Optional[CardState]
    origin_lane_id: str
    writer_app: str
    prompt: str
    article_content: str
    article_id: str
    review: Optional[Dict[str, Any]]
    error: Optional[str]


class VerificationState(TypedDict):
    """State of the number verification pass run after approval."""

    case_id: str
    run_id: str
    article_id: str
    article_content: str
    source_material: SourceMaterial
    check: Optional[NumberCheck]
    board_report: Optional[BoardWriteReport]
