"""LLM-backed article judge.

The judge compares a draft with its source material and the prompt it was
written from, and returns a ``Judgment``. Anything that is not a well-formed
verdict raises ``JudgmentParseError``; callers decide what a failed judgment
means (the editor loop treats it as a non-approval).
"""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

import structlog
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import ChatOllama

from app.config import JUDGE_TEMPERATURE, MAX_REVIEW_ATTEMPTS, OLLAMA_BASE_URL, OLLAMA_MODEL
from app.errors import JudgmentParseError
from graph.state import Judgment
from tools.text_cleaning import html_to_text, truncate

logger = structlog.get_logger(__name__)

SOURCE_LIMIT = 8000
PROMPT_LIMIT = 2000
ARTICLE_LIMIT = 6000
MAX_KEY_TERMS = 10

CHECKS_PERFORMED = (
    "Accuracy",
    "Completeness",
    "Formatting & Links",
    "Prompt Adherence",
    "Factual Consistency",
    "Quality",
)

_JUDGE_PROMPT = ChatPromptTemplate.from_messages([
    ("system", (
        "You are a senior financial news editor reviewing a generated article before "
        "it is submitted. Be practical: approve articles that are accurate, complete "
        "and readable even if they are not perfect. Reply with a single JSON object "
        "and nothing else."
    )),
    ("human", (
        "REVISION ATTEMPT {attempt} of {max_attempts}\n\n"
        "SOURCE MATERIAL:\n{source_text}\n\n"
        "ORIGINAL PROMPT / ANGLE:\n{prompt}\n\n"
        "GENERATED ARTICLE:\n{article}\n"
        "{key_terms_check}{source_link_check}{prior_feedback}\n\n"
        "Evaluate the article on:\n"
        "1. Accuracy: does it represent the source material? Minor simplifications are fine.\n"
        "2. Completeness: does it cover the main points, including every major topic "
        "named in the headline?\n"
        "3. Formatting & Links: proper HTML paragraphs; when a source URL exists the "
        "article ends with a clickable \"Read the full source article\" link.\n"
        "4. Prompt Adherence: does it follow the intended angle?\n"
        "5. Factual Consistency: are the major claims consistent?\n"
        "6. Quality: grammar, flow, clarity, structure.\n\n"
        "Respond with JSON only:\n"
        "{{\"approved\": true|false, \"reviewNotes\": \"...\", "
        "\"revisionFeedback\": \"specific instructions for the writer, empty if approved\", "
        "\"issues\": [\"...\"]}}"
    )),
])


def key_terms(title: str) -> List[str]:
    """Major topics named in a headline, split on ``; , & |``."""
    terms = [t.strip() for t in re.split(r"[;,&|]", title or "")]
    return [t for t in terms if 2 < len(t) < 100][:MAX_KEY_TERMS]


def _source_link_check(source_url: str, draft_html: str) -> str:
    if not source_url:
        return ""
    has_text = re.search(r"Read the full source article", draft_html, re.I)
    has_anchor = re.search(r"<a\s+[^>]*href", draft_html, re.I)
    if has_text and has_anchor:
        return ""
    problem = (
        "has the link text but it is NOT a clickable HTML hyperlink"
        if has_text
        else "is missing the required \"Read the full source article\" link"
    )
    return (
        f"\n\nFORMATTING ISSUE: the source URL is available "
        f"({truncate(source_url, 80)}), but the article {problem}."
    )


def _coerce(payload: Dict[str, Any], raw: str) -> Judgment:
    approved = payload.get("approved")
    if not isinstance(approved, bool):
        raise JudgmentParseError("Judgment is missing a boolean 'approved' field", raw=raw)

    issues = payload.get("issues") or []
    if isinstance(issues, str):
        issues = [issues]
    return Judgment(
        approved=approved,
        notes=str(payload.get("reviewNotes") or payload.get("notes") or ""),
        feedback=str(payload.get("revisionFeedback") or payload.get("feedback") or ""),
        issues=[str(i) for i in issues if str(i).strip()],
    )


def first_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """First JSON object found in a model reply, or ``None``.

    Tries:
      1. Direct ``json.loads`` on the whole reply.
      2. The body of a fenced code block.
      3. The outermost ``{...}`` span.
    """
    text = (raw or "").strip()
    candidates = [text]
    fence = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fence:
        candidates.append(fence.group(1).strip())
    span = re.search(r"\{.*\}", text, re.DOTALL)
    if span:
        candidates.append(span.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_judgment(raw: str) -> Judgment:
    """Parse a model reply into a ``Judgment``.

    Raises:
        JudgmentParseError: If the reply holds no JSON object with a boolean
            ``approved`` field.
    """
    text = (raw or "").strip()
    if not text:
        raise JudgmentParseError("Empty judgment", raw=raw)

    payload = first_json_object(text)
    if payload is None:
        logger.warning("judge.parse_failed", response_snippet=text[:100])
        raise JudgmentParseError("Judgment is not valid JSON", raw=raw)
    return _coerce(payload, raw)


class LLMJudge:
    """Judgment collaborator backed by a local Ollama model."""

    def __init__(self, llm: Optional[Any] = None) -> None:
        self.llm = llm or ChatOllama(
            model=OLLAMA_MODEL, base_url=OLLAMA_BASE_URL, temperature=JUDGE_TEMPERATURE
        )

    async def judge(
        self,
        source_text: str,
        prompt: str,
        draft_text: str,
        prior_feedback: Sequence[str] = (),
        *,
        title: str = "",
        source_url: str = "",
        attempt: int = 1,
    ) -> Judgment:
        """Ask the model for a verdict on *draft_text*.

        Raises:
            JudgmentParseError: The reply was not a usable verdict.
            Exception: Whatever the model client raises on transport failure.
        """
        terms = key_terms(title)
        key_terms_check = (
            f"\n\nCRITICAL CHECK: the source headline mentions these key topics: "
            f"{', '.join(terms)}. Flag any that the article omits."
            if terms
            else ""
        )
        previous = [f for f in prior_feedback if f]
        prior = (
            "\n\nPREVIOUS FEEDBACK (check it was addressed):\n"
            + "\n".join(f"- {truncate(f, 500)}" for f in previous)
            if previous
            else ""
        )

        chain = _JUDGE_PROMPT | self.llm | StrOutputParser()
        raw: str = await chain.ainvoke({
            "attempt": attempt,
            "max_attempts": MAX_REVIEW_ATTEMPTS,
            "source_text": truncate(source_text, SOURCE_LIMIT, "... (truncated)"),
            "prompt": truncate(prompt, PROMPT_LIMIT, "... (truncated)"),
            "article": truncate(html_to_text(draft_text), ARTICLE_LIMIT, "... (truncated)"),
            "key_terms_check": key_terms_check,
            "source_link_check": _source_link_check(source_url, draft_text),
            "prior_feedback": prior,
        })

        judgment = parse_judgment(raw)
        logger.info(
            "judge.verdict",
            approved=judgment.approved,
            issues=len(judgment.issues),
            attempt=attempt,
        )
        return judgment
