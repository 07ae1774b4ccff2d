"""LLM-backed check of the figures an article quotes.

Compares dollar amounts, percentages, counts and dated figures between the
source material and the generated article. Nothing is rewritten: the result
only reports what matched and what did not.
"""

from typing import Any, Dict, List, Optional

import structlog
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import ChatOllama

from app.config import OLLAMA_BASE_URL, OLLAMA_MODEL
from app.errors import JudgmentParseError
from graph.state import NumberCheck, VerificationStatus
from tools.judge import first_json_object
from tools.text_cleaning import truncate

logger = structlog.get_logger(__name__)

SOURCE_LIMIT = 10000
ARTICLE_LIMIT = 8000

_CHECK_PROMPT = ChatPromptTemplate.from_messages([
    ("system", (
        "You are a fact-checker verifying numerical accuracy between a source document "
        "and a generated article. Reply with a single JSON object and nothing else."
    )),
    ("human", (
        "SOURCE MATERIAL:\nTitle/Headline: {title}\n{source_text}\n\n"
        "GENERATED ARTICLE:\n{article}\n\n"
        "Extract the numerical data from both documents and compare it. Focus on:\n"
        "1. Dollar amounts (e.g. $1.2B, $500 million)\n"
        "2. Percentages (e.g. 45%, 3.2 percent)\n"
        "3. Counts and quantities (e.g. 1,000 units, 25 employees)\n"
        "4. Dates given with specific numbers (e.g. Q3 2025)\n"
        "5. Financial metrics such as revenue, earnings and growth rates\n\n"
        "Different formats of the same value match (\"$1.2B\" equals \"$1.2 billion\"), "
        "and so do close roundings (45.2% and 45%). Ignore ordinals, page numbers and "
        "section numbers. Only flag real mismatches.\n\n"
        "Respond with JSON only:\n"
        "{{\"status\": \"verified\" | \"discrepancies_found\", "
        "\"summary\": \"e.g. Verified 12 numbers, found 2 discrepancies\", "
        "\"verifiedCount\": 0, "
        "\"discrepancies\": [{{\"sourceValue\": \"...\", \"articleValue\": \"...\", \"context\": \"...\"}}], "
        "\"notes\": \"...\"}}"
    )),
])


def _discrepancy_lines(items: Any) -> List[str]:
    if not isinstance(items, list):
        return []
    lines = []
    for item in items:
        if isinstance(item, str) and item.strip():
            lines.append(item.strip())
        elif isinstance(item, dict) and item.get("sourceValue") and item.get("articleValue"):
            context = f" ({item['context']})" if item.get("context") else ""
            lines.append(f"Source: {item['sourceValue']}, Article: {item['articleValue']}{context}")
    return lines


def parse_number_check(raw: str) -> NumberCheck:
    """Parse a model reply into a ``NumberCheck``.

    A reply that says ``verified`` is taken at its word; otherwise the status
    follows whether any well-formed discrepancy was listed.

    Raises:
        JudgmentParseError: If the reply holds no JSON object.
    """
    payload: Optional[Dict[str, Any]] = first_json_object(raw)
    if payload is None:
        logger.warning("number_check.parse_failed", response_snippet=(raw or "")[:100])
        raise JudgmentParseError("Number check is not valid JSON", raw=raw)

    discrepancies = _discrepancy_lines(payload.get("discrepancies"))
    if payload.get("status") == VerificationStatus.VERIFIED.value or not discrepancies:
        status = VerificationStatus.VERIFIED
    else:
        status = VerificationStatus.DISCREPANCIES_FOUND

    try:
        verified_count = int(payload.get("verifiedCount") or 0)
    except (TypeError, ValueError):
        verified_count = 0

    return NumberCheck(
        status=status,
        summary=str(payload.get("summary") or f"Verified {verified_count} numbers"),
        verified_count=verified_count,
        discrepancies=discrepancies,
        notes=str(payload.get("notes") or ""),
    )


class NumberVerifier:
    """Number check collaborator backed by a local Ollama model."""

    def __init__(self, llm: Optional[Any] = None) -> None:
        self.llm = llm or ChatOllama(model=OLLAMA_MODEL, base_url=OLLAMA_BASE_URL, temperature=0)

    async def verify(self, source_text: str, article_text: str, *, title: str = "") -> NumberCheck:
        """Compare the figures in *article_text* with *source_text*.

        Raises:
            JudgmentParseError: The reply was not usable.
            Exception: Whatever the model client raises on transport failure.
        """
        chain = _CHECK_PROMPT | self.llm | StrOutputParser()
        raw: str = await chain.ainvoke({
            "title": title or "N/A",
            "source_text": truncate(source_text, SOURCE_LIMIT, "... (truncated)"),
            "article": truncate(article_text, ARTICLE_LIMIT, "... (truncated)"),
        })
        check = parse_number_check(raw)
        logger.info(
            "number_check.result",
            status=check.status.value,
            verified=check.verified_count,
            discrepancies=len(check.discrepancies),
        )
        return check
