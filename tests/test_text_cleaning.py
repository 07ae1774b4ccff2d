"""Text helpers and configuration lookups."""

import pytest

from app import config
from app.errors import ConfigurationError
from tools.text_cleaning import (
    clean_for_board,
    first_heading,
    html_to_text,
    strip_control_chars,
    truncate,
    truncate_words,
)


def test_html_to_text_drops_scripts_and_comments():
    markup = "<p>Hello <b>world</b></p><script>x()</script><!-- hidden --><p>&amp; more</p>"
    assert html_to_text(markup) == "Hello world & more"


def test_clean_for_board_strips_control_characters():
    assert clean_for_board("<p>a\x07b\x1bc</p>") == "abc"
    assert strip_control_chars("tab\tand\nnewline") == "tab\tand\nnewline"


@pytest.mark.parametrize(
    "text, limit, expected",
    [
        ("short", 10, "short"),
        ("abcdefghij", 8, "abcde..."),
        ("abcdef", 2, "ab"),
        ("anything", 0, ""),
    ],
)
def test_truncate_never_exceeds_the_limit(text, limit, expected):
    assert truncate(text, limit) == expected
    assert len(truncate(text, limit)) <= max(limit, 0)


def test_truncate_words_cuts_on_a_space():
    assert truncate_words("alpha beta gamma delta", 14) == "alpha beta..."


def test_first_heading():
    assert first_heading("<p>x</p><h2>Acme <em>beats</em></h2>") == "Acme beats"
    assert first_heading("<p>no heading</p>") == "Generated Article"


def test_writer_app_url_prefers_the_app_variable(monkeypatch):
    monkeypatch.setenv("ARTICLE_GEN_APP_PR_STORY_URL", "http://pr.test/")
    monkeypatch.setattr(config, "ARTICLE_GEN_API_URL", "http://default.test")
    assert config.writer_app_url("pr-story") == "http://pr.test"
    assert config.writer_app_url("story") == "http://default.test"


def test_writer_app_url_without_any_endpoint(monkeypatch):
    monkeypatch.delenv("ARTICLE_GEN_APP_STORY_URL", raising=False)
    monkeypatch.setattr(config, "ARTICLE_GEN_API_URL", "")
    with pytest.raises(ConfigurationError, match="ARTICLE_GEN_APP_STORY_URL"):
        config.writer_app_url("story")


def test_require(monkeypatch):
    monkeypatch.setenv("NEWSROOM_TEST_VALUE", "x")
    monkeypatch.delenv("NEWSROOM_MISSING", raising=False)
    assert config.require("NEWSROOM_TEST_VALUE") == "x"
    with pytest.raises(ConfigurationError):
        config.require("NEWSROOM_MISSING")
