"""
tools/email_source.py
=====================
Analyst-note emails over IMAP.

imaplib is blocking, so the whole fetch runs in a worker thread via
``asyncio.to_thread``. Messages are returned as ``EmailMessage`` records with
their text body and any PDF attachments; nothing is marked as read.
"""

import asyncio
import email
import imaplib
from datetime import date, datetime, timedelta
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field

from app import config
from app.errors import ConfigurationError, SourceFetchError
from tools.text_cleaning import html_to_text

logger = structlog.get_logger(__name__)


class Attachment(BaseModel):
    filename: str
    mime_type: str
    data: bytes


class EmailMessage(BaseModel):
    uid: str
    subject: str = ""
    sender: str = ""
    date: str = ""
    text: str = ""
    attachments: List[Attachment] = Field(default_factory=list)


def _decode(value: Optional[str]) -> str:
    if not value:
        return ""
    return str(make_header(decode_header(value)))


def _body_and_attachments(message: Message) -> Tuple[str, List[Attachment]]:
    plain, html_parts, attachments = [], [], []
    for part in message.walk():
        if part.is_multipart():
            continue
        content_type = part.get_content_type()
        filename = _decode(part.get_filename())
        payload = part.get_payload(decode=True) or b""
        if filename or part.get_content_disposition() == "attachment":
            if content_type == "application/pdf" or filename.lower().endswith(".pdf"):
                attachments.append(Attachment(
                    filename=filename or "note.pdf", mime_type="application/pdf", data=payload
                ))
            continue
        charset = part.get_content_charset() or "utf-8"
        text = payload.decode(charset, errors="replace")
        if content_type == "text/plain":
            plain.append(text)
        elif content_type == "text/html":
            html_parts.append(html_to_text(text))
    body = "\n".join(plain) if plain else "\n".join(html_parts)
    return body.strip(), attachments


def parse_message(uid: str, raw: bytes) -> EmailMessage:
    message = email.message_from_bytes(raw)
    text, attachments = _body_and_attachments(message)
    date_header = message.get("Date", "")
    try:
        sent = parsedate_to_datetime(date_header).isoformat() if date_header else ""
    except (TypeError, ValueError):
        sent = date_header
    return EmailMessage(
        uid=uid,
        subject=_decode(message.get("Subject")),
        sender=_decode(message.get("From")),
        date=sent,
        text=text,
        attachments=attachments,
    )


class EmailSource:
    """Reads recent messages from one IMAP mailbox."""

    def __init__(
        self,
        host: str = config.IMAP_HOST,
        port: int = config.IMAP_PORT,
        user: str = config.IMAP_USER,
        password: str = config.IMAP_PASSWORD,
        mailbox: str = config.IMAP_MAILBOX,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.mailbox = mailbox

    def _fetch_sync(self, since: date, sender_filter: str, limit: int) -> List[EmailMessage]:
        criteria = ["SINCE", since.strftime("%d-%b-%Y")]
        if sender_filter:
            criteria += ["FROM", f'"{sender_filter}"']

        messages: List[EmailMessage] = []
        with imaplib.IMAP4_SSL(self.host, self.port) as conn:
            conn.login(self.user, self.password)
            conn.select(self.mailbox, readonly=True)
            status, data = conn.uid("SEARCH", None, *criteria)
            if status != "OK":
                raise SourceFetchError(f"IMAP search failed: {status}")
            uids = data[0].split()[-limit:] if data and data[0] else []
            for uid in reversed(uids):
                status, parts = conn.uid("FETCH", uid, "(BODY.PEEK[])")
                if status != "OK" or not parts or not isinstance(parts[0], tuple):
                    logger.warning("email_source.fetch_failed", uid=uid.decode())
                    continue
                messages.append(parse_message(uid.decode(), parts[0][1]))
        return messages

    async def fetch(
        self,
        since: Optional[date] = None,
        sender_filter: str = config.ANALYST_SENDER_FILTER,
        limit: int = 20,
    ) -> List[EmailMessage]:
        """Messages received since *since* (default: yesterday), newest first.

        Raises:
            ConfigurationError: Credentials are missing.
            SourceFetchError: The IMAP exchange failed.
        """
        if not self.user or not self.password:
            raise ConfigurationError("IMAP_USER and IMAP_PASSWORD must be set")
        since = since or (datetime.now().date() - timedelta(days=1))
        try:
            messages = await asyncio.to_thread(self._fetch_sync, since, sender_filter, limit)
        except (imaplib.IMAP4.error, OSError) as e:
            raise SourceFetchError(f"IMAP fetch failed: {e}") from e
        logger.info("email_source.fetched", count=len(messages), since=since.isoformat())
        return messages
