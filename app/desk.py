"""Wiring: collaborators, compiled graphs and the background runner in one place.

The HTTP server, the scheduler and the CLI all work through a ``Desk``.
Tests build one from fakes; production code calls ``Desk.from_config()``.
"""

from typing import Any, Dict, Optional

import structlog

from agents.card_stager import CardStager
from agents.pitch_drafter import run_news_cycle, run_pr_monitor
from app import config
from app.tasks import TaskRunner
from graph import editor_graph, generation_graph, pitch_graph, verification_graph
from memory.article_store import ArticleStore, DiskArticleStore
from memory.staging import SeenKeys

logger = structlog.get_logger(__name__)


class Desk:
    """Everything a request or a scheduled job needs.

    Args:
        board: Board client.
        generator: Article generation client.
        judge: Judgment collaborator.
        store: Keyed article store.
        news: News and press-release source.
        rss: RSS feed reader.
        email_source: Analyst-note mailbox.
        runner: Background task runner; built from *board* when omitted.
        verifier: Number check collaborator. When given, approved articles
            get a number verification pass.
    """

    def __init__(
        self,
        *,
        board: Any,
        generator: Any,
        judge: Any,
        store: ArticleStore,
        news: Any = None,
        rss: Any = None,
        email_source: Any = None,
        runner: Optional[TaskRunner] = None,
        verifier: Any = None,
    ) -> None:
        self.board = board
        self.generator = generator
        self.judge = judge
        self.store = store
        self.news = news
        self.rss = rss
        self.email_source = email_source
        self.runner = runner or TaskRunner(board)
        self.stager = CardStager(board, SeenKeys(config.SEEN_KEYS_CAPACITY))

        self.verification_graph = (
            verification_graph.compile_graph(verifier=verifier, board=board)
            if verifier is not None
            else None
        )
        self.editor_graph = editor_graph.compile_graph(
            judge=judge, generator=generator, board=board, store=store,
            verification_graph=self.verification_graph,
        )
        self.generation_graph = generation_graph.compile_graph(
            board=board, generator=generator, store=store, editor_graph=self.editor_graph
        )
        self.topic_graph = pitch_graph.compile_topic_graph(news=news, stager=self.stager)
        self.notes_graph = pitch_graph.compile_notes_graph(email_source=email_source, stager=self.stager)

    @classmethod
    def from_config(cls) -> "Desk":
        from tools.article_generator import ArticleGenerator
        from tools.board import BoardClient
        from tools.email_source import EmailSource
        from tools.judge import LLMJudge
        from tools.news_source import NewsSource
        from tools.number_check import NumberVerifier
        from tools.rss_feed import RssFeed

        logger.info("desk.building", store_dir=str(config.ARTICLE_STORE_DIR))
        return cls(
            board=BoardClient(),
            generator=ArticleGenerator(),
            judge=LLMJudge(),
            store=DiskArticleStore(config.ARTICLE_STORE_DIR),
            news=NewsSource(),
            rss=RssFeed(),
            email_source=EmailSource(),
            verifier=NumberVerifier() if config.NUMBER_VERIFICATION_ENABLED else None,
        )

    # ------------------------------------------------------------------
    # Synchronous pipelines
    # ------------------------------------------------------------------

    async def pitch(self, topic: str, pr_only: bool = False) -> Dict[str, Any]:
        return await pitch_graph.run_topic_pipeline(topic, self.topic_graph, pr_only=pr_only)

    async def scan_analyst_notes(self) -> Dict[str, Any]:
        return await pitch_graph.run_notes_pipeline(self.notes_graph)

    async def news_cycle(self) -> Dict[str, int]:
        return await run_news_cycle(self.rss, self.stager)

    async def pr_monitor(self) -> Dict[str, int]:
        return await run_pr_monitor(self.news, self.stager)

    async def approve(self, card_id: str, note: str = "") -> Dict[str, Any]:
        return await self.runner.run_now(
            card_id,
            lambda: generation_graph.approve_card(
                card_id, board=self.board, store=self.store, note=note,
                verification_graph=self.verification_graph,
            ),
        )

    # ------------------------------------------------------------------
    # Background continuations
    # ------------------------------------------------------------------

    def submit_generation(self, card_id: str, writer_app: str = "") -> None:
        self.runner.submit(
            card_id,
            lambda: generation_graph.run_generation(card_id, self.generation_graph, writer_app=writer_app),
            name="generate_article",
        )

    def submit_review(self, card_id: str) -> None:
        self.runner.submit(
            card_id,
            lambda: generation_graph.review_card(
                card_id, board=self.board, store=self.store, editor_graph=self.editor_graph
            ),
            name="review_article",
        )

    def submit_revision(self, card_id: str, note: str = "") -> None:
        self.runner.submit(
            card_id,
            lambda: generation_graph.revise_card(
                card_id, note, board=self.board, store=self.store,
                generator=self.generator, editor_graph=self.editor_graph,
            ),
            name="request_revision",
        )
