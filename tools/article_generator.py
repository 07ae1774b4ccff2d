"""
tools/article_generator.py
==========================
Client for the external article generation services.

Each service flavour is described by an ``EndpointProfile`` record: which
path to call, how request fields map onto the pitch and its source material,
which fields must be present and which static flags to send. A single
``build_request`` turns (prompt, source, context) into a JSON body for any
profile, so adding a flavour means adding a row, not a branch.
"""

import asyncio
import html
import re
from typing import Any, Dict, Mapping, Optional, Tuple

import aiohttp
import structlog
from pydantic import BaseModel, ConfigDict, Field

from app import config
from app.errors import GenerationError, GenerationHttpError, GenerationTimeoutError
from graph.state import SourceMaterial

logger = structlog.get_logger(__name__)


class EndpointProfile(BaseModel):
    """Request-shaping rules for one generation endpoint.

    Attributes:
        name: Profile key used on cards and in ``selectedApp``.
        app: Service name used to resolve ``ARTICLE_GEN_APP_<APP>_URL``.
        path: Path appended to the service base URL.
        fields: Request field name -> input name (see ``resolve_inputs``).
        required: Request fields that must be non-empty.
        static: Constant fields sent with every request.
        append_source_link: Add a "Read the full source article" link to
            story responses that lack one.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    app: str
    path: str = ""
    fields: Dict[str, str] = Field(default_factory=dict)
    required: Tuple[str, ...] = ()
    static: Dict[str, Any] = Field(default_factory=dict)
    append_source_link: bool = False


_STORY_FIELDS = {
    "ticker": "ticker",
    "sourceText": "source_text",
    "headline": "headline",
    "date": "date",
    "sourceUrl": "source_url",
    "instructions": "prompt",
}

PROFILES: Dict[str, EndpointProfile] = {
    p.name: p
    for p in (
        EndpointProfile(
            name="story",
            app="story",
            path="/api/generate/story",
            fields=_STORY_FIELDS,
            required=("sourceText",),
            static={"includeCTA": True, "includeSubheads": True},
            append_source_link=True,
        ),
        EndpointProfile(
            name="pr-story",
            app="story",
            path="/api/generate/pr-story",
            fields=_STORY_FIELDS,
            required=("sourceText",),
            static={"includeCTA": True, "includeSubheads": True},
            append_source_link=True,
        ),
        EndpointProfile(
            name="wgo",
            app="wgo",
            path="/api/generate/story",
            fields={
                "ticker": "ticker",
                "sourceText": "source_text",
                "headline": "headline",
                "date": "date",
                "instructions": "prompt",
            },
            required=("ticker", "sourceText"),
            append_source_link=True,
        ),
        EndpointProfile(
            name="wgo-no-news",
            app="wgo",
            path="/api/generate/wgo-no-news",
            fields={"ticker": "ticker", "instructions": "prompt"},
            required=("ticker",),
        ),
        EndpointProfile(
            name="technical-analysis",
            app="wgo",
            path="/api/generate/technical-analysis",
            fields={
                "tickers": "ticker",
                "scrapedContent": "source_text",
                "selectedArticles": "selected_articles",
                "instructions": "prompt",
            },
            required=("tickers",),
        ),
        EndpointProfile(
            name="comprehensive",
            app="comprehensive",
            path="/api/generate/comprehensive-article",
            fields={"sourceText": "source_text", "ticker": "ticker", "instructions": "prompt"},
            required=("sourceText",),
            static={
                "includeMarketData": True,
                "includeCTA": True,
                "includeSubheadings": True,
                "includeRelatedArticles": True,
            },
        ),
        EndpointProfile(
            name="generic",
            app="generic",
            fields={"pitch": "prompt", "topic": "topic"},
            required=("pitch",),
        ),
    )
}


def get_profile(name: str) -> EndpointProfile:
    """Look up a profile by name, falling back to ``generic`` for unknown names."""
    profile = PROFILES.get(name)
    if profile is None:
        logger.warning("article_generator.unknown_profile", profile=name)
        return PROFILES["generic"]
    return profile


def resolve_inputs(
    prompt: str, source: Optional[SourceMaterial], context: Mapping[str, Any]
) -> Dict[str, Any]:
    """Collect every named input a profile may refer to.

    Explicit *context* values win over values derived from *source*; source
    text falls back to the prompt so no story request goes out empty.
    """
    source = source or SourceMaterial()
    ticker = context.get("ticker") or source.ticker or (source.stocks[0] if source.stocks else "")
    inputs: Dict[str, Any] = {
        "prompt": prompt,
        "ticker": str(ticker).upper() if ticker else "",
        "source_text": context.get("source_text") or source.best_text() or prompt,
        "headline": context.get("headline") or source.title,
        "date": context.get("date") or source.date,
        "source_url": context.get("source_url") or source.url,
        "topic": context.get("topic") or ticker or source.title,
        "selected_articles": context.get("selected_articles") or (
            [{"title": source.title, "body": source.best_text(), "url": source.url}]
            if source.title or source.url
            else []
        ),
    }
    return inputs


def build_request(
    profile: EndpointProfile,
    prompt: str,
    source: Optional[SourceMaterial] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Shape the JSON body for *profile*.

    Empty optional fields are left out. Required fields that resolve empty
    fall back to the prompt when they carry text, otherwise a
    ``GenerationError`` is raised before any network call.
    """
    inputs = resolve_inputs(prompt, source, context or {})
    body: Dict[str, Any] = {}

    for field_name, input_name in profile.fields.items():
        value = inputs.get(input_name)
        if value in (None, "", []):
            continue
        body[field_name] = value

    for field_name in profile.required:
        if body.get(field_name):
            continue
        input_name = profile.fields.get(field_name, "")
        if input_name in ("source_text", "prompt") and prompt.strip():
            body[field_name] = prompt
            logger.warning("article_generator.required_field_from_prompt",
                           profile=profile.name, field=field_name)
        else:
            raise GenerationError(f"Profile {profile.name!r} requires {field_name!r}")

    body.update(profile.static)
    return body


def _with_source_link(story: str, source: Optional[SourceMaterial]) -> str:
    has_link = re.search(r"Read the full source article", story, re.I) and re.search(
        r"<a\s+[^>]*href", story, re.I
    )
    if has_link or source is None or not source.url:
        return story
    title = html.escape(source.title or "Source Article")
    cleaned = re.sub(r"Read the full source article:.*$", "", story, flags=re.I).strip()
    return (
        f"{cleaned}\n\n<p><a href=\"{html.escape(source.url, quote=True)}\" target=\"_blank\" "
        f"rel=\"noopener noreferrer\">Read the full source article: {title}</a></p>"
    )


def extract_article(
    data: Any, profile: EndpointProfile, source: Optional[SourceMaterial] = None
) -> str:
    """Pull the article text out of a service response.

    Raises:
        GenerationError: If the response carries no usable text.
    """
    if isinstance(data, str) and data.strip():
        return data
    if not isinstance(data, dict):
        raise GenerationError("Generation response is not a JSON object")

    analyses = data.get("analyses")
    if isinstance(analyses, list) and analyses:
        first = analyses[0] if isinstance(analyses[0], dict) else {}
        text = first.get("analysis") or first.get("content")
        if text:
            return text

    if data.get("story"):
        story = data["story"]
        return _with_source_link(story, source) if profile.append_source_link else story

    if data.get("article"):
        article = data["article"]
        related = data.get("relatedArticles") or []
        if related:
            links = "\n".join(
                f"<li><a href=\"{html.escape(r.get('url', '#'), quote=True)}\">"
                f"{html.escape(r.get('title') or r.get('headline') or 'Untitled Article')}</a></li>"
                for r in related[:3]
                if isinstance(r, dict)
            )
            article += f"\n\n<h3>Read Next</h3>\n<ul>\n{links}\n</ul>"
        return article

    for key in ("content", "html", "text"):
        if data.get(key):
            return data[key]

    raise GenerationError(f"Generation response had none of the known fields: {sorted(data)}")


class ArticleGenerator:
    """Calls the generation services with a hard timeout.

    Args:
        timeout_seconds: Upper bound for one generation call, end to end.
    """

    def __init__(self, timeout_seconds: float = config.ARTICLE_GEN_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    def endpoint_url(self, profile: EndpointProfile) -> str:
        return f"{config.writer_app_url(profile.app)}{profile.path}"

    async def _post_json(self, url: str, body: Dict[str, Any]) -> Tuple[int, Any]:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=body) as resp:
                if resp.content_type == "application/json":
                    data = await resp.json()
                else:
                    data = await resp.text()
                return resp.status, data

    async def generate(
        self,
        prompt: str,
        profile_name: str,
        context: Optional[Mapping[str, Any]] = None,
        source: Optional[SourceMaterial] = None,
    ) -> str:
        """Generate an article.

        Raises:
            GenerationTimeoutError: The service did not answer in time.
            GenerationHttpError: The service answered with a non-2xx status.
            GenerationError: The request could not be shaped or the response
                carried no article.
            ConfigurationError: No URL is configured for the profile's service.
        """
        profile = get_profile(profile_name)
        body = build_request(profile, prompt, source, context)
        url = self.endpoint_url(profile)
        log = logger.bind(profile=profile.name, url=url)
        log.info("article_generator.request", fields=sorted(body))

        try:
            status, data = await asyncio.wait_for(
                self._post_json(url, body), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            log.error("article_generator.timeout", timeout_seconds=self.timeout_seconds)
            raise GenerationTimeoutError(
                f"No response from {profile.name} within {self.timeout_seconds:.0f}s"
            ) from e
        except aiohttp.ClientError as e:
            log.error("article_generator.connection_failed", error=str(e))
            raise GenerationError(f"Could not reach {url}: {e}") from e

        if not 200 <= status < 300:
            message = data.get("error", "") if isinstance(data, dict) else str(data)[:200]
            log.error("article_generator.http_error", status=status, message=message)
            raise GenerationHttpError(status, message)

        article = extract_article(data, profile, source)
        log.info("article_generator.success", length=len(article))
        return article


__all__ = [
    "ArticleGenerator",
    "EndpointProfile",
    "PROFILES",
    "build_request",
    "extract_article",
    "get_profile",
]
