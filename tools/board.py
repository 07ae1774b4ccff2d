"""
tools/board.py
==============
Async client for the Trello-compatible kanban board.

Cards, lanes (Trello "lists"), comments and attachments. Transient failures
(5xx, 429, network errors) are retried with exponential backoff and jitter;
everything else surfaces immediately as a ``BoardError`` subclass.
"""

import asyncio
import random
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel

from app import config
from app.errors import (
    BoardError,
    BoardWriteError,
    ConfigurationError,
    InvalidLaneError,
    NotFoundError,
)

logger = structlog.get_logger(__name__)

MAX_RETRIES = 3
BACKOFF_FACTOR = 2.0


class CardRef(BaseModel):
    id: str
    url: str = ""


class Card(BaseModel):
    id: str
    title: str = ""
    body: str = ""
    lane_id: str = ""
    url: str = ""


class Comment(BaseModel):
    id: str = ""
    text: str = ""
    date: str = ""


class BoardClient:
    """Thin async wrapper over the board REST API.

    Args:
        api_key: Board API key. Defaults to ``TRELLO_API_KEY``.
        token: Board API token. Defaults to ``TRELLO_TOKEN``.
        base_url: API root.
        body_limit: Hard ceiling for card descriptions.
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject a
            ``MockTransport`` here).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        token: Optional[str] = None,
        base_url: str = config.TRELLO_API_URL,
        body_limit: int = config.BOARD_BODY_LIMIT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else config.TRELLO_API_KEY
        self.token = token if token is not None else config.TRELLO_TOKEN
        self.base_url = base_url.rstrip("/")
        self.body_limit = body_limit
        self._client = client

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _auth(self) -> Dict[str, str]:
        if not self.api_key or not self.token:
            raise ConfigurationError("TRELLO_API_KEY and TRELLO_TOKEN must be set")
        return {"key": self.api_key, "token": self.token}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        query = {**self._auth(), **(params or {})}
        log = logger.bind(method=method, path=path)

        for attempt in range(MAX_RETRIES):
            try:
                if self._client is not None:
                    response = await self._client.request(
                        method, url, params=query, data=data, files=files
                    )
                else:
                    async with httpx.AsyncClient(timeout=config.BOARD_TIMEOUT_SECONDS) as client:
                        response = await client.request(
                            method, url, params=query, data=data, files=files
                        )
                response.raise_for_status()
                return response.json() if response.content else None

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                is_transient = status >= 500 or status == 429
                if is_transient and attempt < MAX_RETRIES - 1:
                    delay = random.uniform(0, BACKOFF_FACTOR ** attempt)
                    log.warning("board.status_error_retry", status_code=status,
                                attempt=attempt + 1, next_delay=delay)
                    await asyncio.sleep(delay)
                    continue
                raise BoardError(f"{method} {path} failed: {e.response.text[:200]}",
                                 status=status) from e

            except httpx.RequestError as e:
                if attempt < MAX_RETRIES - 1:
                    delay = random.uniform(0, BACKOFF_FACTOR ** attempt)
                    log.warning("board.network_error_retry", error=str(e),
                                attempt=attempt + 1, next_delay=delay)
                    await asyncio.sleep(delay)
                    continue
                raise BoardError(f"{method} {path} failed: {e}") from e

        raise BoardError(f"{method} {path} failed after {MAX_RETRIES} attempts")

    async def _write(self, method: str, path: str, card_id: str = "", **kwargs: Any) -> Any:
        """Run a mutation and translate failures into the write-error family."""
        try:
            return await self._request(method, path, **kwargs)
        except BoardError as e:
            if e.status == 404 and card_id:
                raise NotFoundError(f"Card {card_id} not found", status=404) from e
            raise BoardWriteError(str(e), status=e.status) from e

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def create_card(self, lane_id: str, title: str, body: str) -> CardRef:
        if not lane_id:
            raise InvalidLaneError("No lane id given for card creation")
        body = self._check_body(body)
        try:
            payload = await self._request(
                "POST", "/cards",
                params={"idList": lane_id},
                data={"name": title, "desc": body, "pos": "top"},
            )
        except BoardError as e:
            if e.status in (400, 404) and "list" in str(e).lower():
                raise InvalidLaneError(f"Lane {lane_id} not found", status=e.status) from e
            raise BoardWriteError(str(e), status=e.status) from e
        ref = CardRef(id=payload["id"], url=payload.get("shortUrl") or payload.get("url", ""))
        logger.info("board.card_created", card_id=ref.id, lane_id=lane_id, title=title[:80])
        return ref

    async def get_card(self, card_id: str) -> Card:
        try:
            payload = await self._request(
                "GET", f"/cards/{card_id}", params={"fields": "name,desc,idList,shortUrl"}
            )
        except BoardError as e:
            if e.status in (400, 404):
                raise NotFoundError(f"Card {card_id} not found", status=e.status) from e
            raise
        return Card(
            id=payload.get("id", card_id),
            title=payload.get("name", ""),
            body=payload.get("desc", ""),
            lane_id=payload.get("idList", ""),
            url=payload.get("shortUrl", ""),
        )

    async def move_card(self, card_id: str, lane_id: str) -> None:
        if not lane_id:
            raise InvalidLaneError("No lane id given for card move")
        try:
            await self._request("PUT", f"/cards/{card_id}", params={"idList": lane_id})
        except BoardError as e:
            message = str(e).lower()
            if e.status in (400, 404) and ("list" in message or "idlist" in message):
                raise InvalidLaneError(f"Lane {lane_id} not found", status=e.status) from e
            if e.status == 404:
                raise NotFoundError(f"Card {card_id} not found", status=404) from e
            raise BoardWriteError(str(e), status=e.status) from e
        logger.info("board.card_moved", card_id=card_id, lane_id=lane_id)

    async def update_card_body(self, card_id: str, body: str) -> None:
        body = self._check_body(body)
        # Form-encoded so long bodies do not end up in the query string.
        await self._write("PUT", f"/cards/{card_id}", card_id, data={"desc": body})
        logger.info("board.card_body_updated", card_id=card_id, length=len(body))

    async def list_cards(self, lane_id: str) -> List[Card]:
        payload = await self._request(
            "GET", f"/lists/{lane_id}/cards", params={"fields": "name,desc,idList,shortUrl"}
        )
        return [
            Card(id=c["id"], title=c.get("name", ""), body=c.get("desc", ""),
                 lane_id=c.get("idList", lane_id), url=c.get("shortUrl", ""))
            for c in payload or []
        ]

    # ------------------------------------------------------------------
    # Comments and attachments
    # ------------------------------------------------------------------

    async def add_comment(self, card_id: str, text: str) -> None:
        await self._write(
            "POST", f"/cards/{card_id}/actions/comments", card_id, data={"text": text}
        )
        logger.info("board.comment_added", card_id=card_id, length=len(text))

    async def get_comments(self, card_id: str) -> List[Comment]:
        payload = await self._request(
            "GET", f"/cards/{card_id}/actions", params={"filter": "commentCard"}
        )
        return [
            Comment(id=a.get("id", ""), text=a.get("data", {}).get("text", ""),
                    date=a.get("date", ""))
            for a in payload or []
        ]

    async def attach_file(
        self, card_id: str, data: bytes, filename: str, mime_type: str = "application/pdf"
    ) -> None:
        await self._write(
            "POST", f"/cards/{card_id}/attachments", card_id,
            data={"name": filename, "mimeType": mime_type},
            files={"file": (filename, data, mime_type)},
        )
        logger.info("board.file_attached", card_id=card_id, filename=filename, size=len(data))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_body(self, body: str) -> str:
        if len(body) > self.body_limit:
            raise BoardWriteError(
                f"Card body of {len(body)} characters exceeds the {self.body_limit} limit"
            )
        return body


def generate_article_url(card_id: str, writer_app: str = "story") -> str:
    return f"{config.APP_URL}/board/generate-article/{card_id}?selectedApp={writer_app}"


def generate_article_link(card_id: str, writer_app: str = "story") -> str:
    """The action link placed at the top of a staged card."""
    return f"**[Generate Article]({generate_article_url(card_id, writer_app)})**"
