"""
FastAPI surface of the newsroom desk.

Synchronous steps (pitching, the analyst scan, human approval, article reads)
answer with their result; card-level continuations (generation, review,
revision) are acknowledged with 202 and run in the background.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from app.desk import Desk
from app.errors import (
    BoardError,
    ConfigurationError,
    GenerationError,
    InvalidLaneError,
    NotFoundError,
    PipelineError,
    SourceFetchError,
)

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for API responses."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_LANE = "INVALID_LANE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
    GENERATION_FAILED = "GENERATION_FAILED"
    BOARD_ERROR = "BOARD_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Most specific class first.
_ERROR_MAP = [
    (NotFoundError, status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND),
    (InvalidLaneError, status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INVALID_LANE),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE, ErrorCode.CONFIGURATION_ERROR),
    (SourceFetchError, status.HTTP_502_BAD_GATEWAY, ErrorCode.SOURCE_UNAVAILABLE),
    (GenerationError, status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.GENERATION_FAILED),
    (BoardError, status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.BOARD_ERROR),
]


def classify_error(exc: PipelineError) -> tuple:
    for error_type, status_code, code in _ERROR_MAP:
        if isinstance(exc, error_type):
            return status_code, code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR


class PitchRequest(BaseModel):
    topic: str = Field(..., min_length=1, description="Ticker or keywords")
    pr_only: bool = Field(False, description="Press releases only")


class RevisionRequest(BaseModel):
    note: str = ""


def create_app(desk: Optional[Desk] = None) -> FastAPI:
    """Build the application around *desk* (built from configuration if omitted)."""
    app = FastAPI(
        title="Newsroom Desk",
        description="Pitch staging, article generation and editorial review",
        version="0.1.0",
    )
    app.state.desk = desk

    def get_desk() -> Desk:
        if app.state.desk is None:
            app.state.desk = Desk.from_config()
        return app.state.desk

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        status_code, code = classify_error(exc)
        log = logger.bind(method=request.method, path=request.url.path, error_code=code.value)
        if status_code >= 500:
            log.error("server.pipeline_error", error=str(exc), error_type=exc.__class__.__name__)
        else:
            log.info("server.pipeline_error", error=str(exc))
        return JSONResponse(
            status_code=status_code,
            content={"error_code": code.value, "message": str(exc), "error_type": exc.__class__.__name__},
        )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        current = app.state.desk
        return {"status": "healthy", "pending_tasks": current.runner.pending if current else 0}

    @app.post("/pitches")
    async def create_pitch(body: PitchRequest) -> Dict[str, Any]:
        return await get_desk().pitch(body.topic.strip(), pr_only=body.pr_only)

    @app.post("/analyst-notes/scan")
    async def scan_analyst_notes() -> Dict[str, Any]:
        return await get_desk().scan_analyst_notes()

    @app.api_route("/board/generate-article/{card_id}", methods=["GET", "POST"],
                   status_code=status.HTTP_202_ACCEPTED)
    async def generate_article(card_id: str, selectedApp: str = Query("", max_length=64)) -> Dict[str, Any]:
        get_desk().submit_generation(card_id, writer_app=selectedApp)
        return {"status": "accepted", "card_id": card_id,
                "message": "Article generation started; the card will be updated when review finishes."}

    @app.post("/editor/review/{card_id}", status_code=status.HTTP_202_ACCEPTED)
    async def review(card_id: str) -> Dict[str, Any]:
        get_desk().submit_review(card_id)
        return {"status": "accepted", "card_id": card_id}

    @app.api_route("/editor/approve/{card_id}", methods=["GET", "POST"])
    async def approve(card_id: str, note: str = "") -> Dict[str, Any]:
        return await get_desk().approve(card_id, note=note)

    @app.api_route("/editor/request-revision/{card_id}", methods=["GET", "POST"],
                   status_code=status.HTTP_202_ACCEPTED)
    async def request_revision(card_id: str, request: Request, note: str = "") -> Dict[str, Any]:
        if request.method == "POST" and not note:
            try:
                payload = RevisionRequest.model_validate(await request.json())
                note = payload.note
            except ValueError:
                note = ""
        get_desk().submit_revision(card_id, note=note)
        return {"status": "accepted", "card_id": card_id}

    @app.get("/articles")
    async def list_articles() -> List[Dict[str, Any]]:
        return [
            {k: record.get(k) for k in ("id", "card_id", "title", "revision", "stored_at")}
            for record in get_desk().store.list()
        ]

    @app.get("/articles/{article_id}")
    async def get_article(article_id: str, format: str = Query("json", pattern="^(json|html)$")) -> Any:
        record = get_desk().store.get(article_id)
        if record is None:
            raise NotFoundError(f"Article {article_id} not found", status=404)
        if format == "html":
            return HTMLResponse(record.get("content", ""))
        return record

    return app
