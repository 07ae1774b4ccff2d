"""
tools/text_cleaning.py
======================
HTML-to-text, control-character stripping and length capping.

Every string written to the board or sent to the judgment model passes
through here, so the helpers are pure and never raise on odd input.
"""

import html
import re

from bs4 import BeautifulSoup, Comment

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_WHITESPACE = re.compile(r"\s+")
_HEADING = re.compile(r"<h[1-6][^>]*>(.*?)</h[1-6]>", re.IGNORECASE | re.DOTALL)

ELLIPSIS = "..."


def _drop_noise(soup: BeautifulSoup) -> None:
    """Remove non-content elements from the soup in place."""
    for tag in soup.find_all(["script", "style", "noscript", "svg"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()


def html_to_text(markup: str) -> str:
    """Return the visible text of an HTML fragment on one line."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    _drop_noise(soup)
    text = soup.get_text(separator=" ", strip=True)
    return _WHITESPACE.sub(" ", html.unescape(text)).strip()


def strip_control_chars(text: str) -> str:
    return _CONTROL_CHARS.sub("", text or "")


def clean_for_board(text: str) -> str:
    """Plain text safe for a card body: no tags, no control characters."""
    return strip_control_chars(html_to_text(text))


def truncate(text: str, limit: int, suffix: str = ELLIPSIS) -> str:
    """Cut *text* to at most *limit* characters, marking the cut with *suffix*.

    The suffix counts toward the limit, so ``len(result) <= limit`` always holds.
    """
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    if limit <= len(suffix):
        return text[:limit]
    return text[: limit - len(suffix)] + suffix


def truncate_words(text: str, limit: int) -> str:
    """Like :func:`truncate` but never cuts a word in half when a space is available."""
    if len(text) <= limit:
        return text
    cut = text[: max(limit - len(ELLIPSIS), 0)]
    last_space = cut.rfind(" ")
    if last_space > 0:
        cut = cut[:last_space]
    return cut + ELLIPSIS


def first_heading(markup: str, default: str = "Generated Article") -> str:
    """Text of the first ``<h1>``-``<h6>`` element, or *default*."""
    match = _HEADING.search(markup or "")
    if not match:
        return default
    title = html_to_text(match.group(1))
    return title or default
