"""LangGraph checkpointer setup.

Durable state lives on the board card, so graph checkpoints only need to
survive for the lifetime of the process: they give each run a thread-scoped
snapshot for inspection and resumption within the process.

Example:
    >>> from graph.checkpointer import get_checkpointer
    >>> graph = builder.compile(checkpointer=get_checkpointer())
    >>> graph.ainvoke(state, {"configurable": {"thread_id": "card-123:run-1"}})
"""

from __future__ import annotations

import structlog
from langgraph.checkpoint.memory import MemorySaver

logger = structlog.get_logger(__name__)


class CheckpointerError(RuntimeError):
    """Custom exception for checkpointer initialization failures."""


def get_checkpointer() -> MemorySaver:
    """Create an in-process checkpointer.

    Raises:
        CheckpointerError: If the saver cannot be constructed.
    """
    try:
        saver = MemorySaver()
    except Exception as e:
        logger.error("checkpointer.init_failed", error=str(e), error_type=e.__class__.__name__)
        raise CheckpointerError(f"Failed to initialize checkpointer: {e}") from e

    logger.debug("checkpointer.initialized", checkpointer_type="memory")
    return saver


def thread_config(*parts: str) -> dict:
    """Runnable config with a thread id built from *parts* (card id, run id)."""
    return {"configurable": {"thread_id": ":".join(p for p in parts if p)}}


__all__ = ["get_checkpointer", "thread_config", "CheckpointerError"]
