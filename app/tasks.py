"""Background continuations for per-card work.

HTTP handlers acknowledge at once and hand the real work to ``TaskRunner``.
Each step runs as a detached asyncio task, is retried with backoff, and
steps for the same case never overlap. When every attempt fails the case is
not dropped: a dead-letter comment is written to the card.
"""

import asyncio
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

import structlog

from app import config
from app.errors import PipelineError
from tools.text_cleaning import truncate

logger = structlog.get_logger(__name__)

Step = Callable[[], Awaitable[Any]]


class TaskRunner:
    """Runs case steps in the background with at-least-once semantics.

    Args:
        board: Board client used for dead-letter comments.
        max_attempts: Attempts per step before giving up.
        backoff_seconds: Base delay; attempt *n* waits up to ``base * 2**n``.
    """

    def __init__(
        self,
        board: Any,
        max_attempts: int = config.TASK_MAX_ATTEMPTS,
        backoff_seconds: float = config.TASK_BACKOFF_SECONDS,
    ) -> None:
        self.board = board
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def _case_lock(self, case_id: str) -> AsyncIterator[None]:
        """Hold the lock of *case_id*; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.get(case_id)
        if lock is None:
            lock = self._locks[case_id] = asyncio.Lock()
        self._lock_users[case_id] = self._lock_users.get(case_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[case_id] -= 1
            if not self._lock_users[case_id]:
                del self._lock_users[case_id]
                del self._locks[case_id]

    def submit(self, case_id: str, step: Step, name: str = "step") -> asyncio.Task:
        """Schedule *step* for *case_id* and return immediately."""
        task = asyncio.create_task(self._run(case_id, step, name), name=f"{name}:{case_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("tasks.submitted", case_id=case_id, step=name)
        return task

    async def run_now(self, case_id: str, step: Step) -> Any:
        """Run *step* in the caller's task, still serialised with background steps.

        Exceptions propagate to the caller; there is no retry.
        """
        async with self._case_lock(case_id):
            return await step()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def active_cases(self) -> int:
        """Cases with a step running or waiting."""
        return len(self._locks)

    async def drain(self) -> None:
        """Wait for every submitted task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, case_id: str, step: Step, name: str) -> Optional[Any]:
        log = logger.bind(case_id=case_id, step=name)
        async with self._case_lock(case_id):
            last_error: Optional[BaseException] = None
            for attempt in range(1, self.max_attempts + 1):
                try:
                    result = await step()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    last_error = e
                    log.warning("tasks.attempt_failed", attempt=attempt, error=str(e),
                                error_type=e.__class__.__name__)
                    if attempt < self.max_attempts:
                        await asyncio.sleep(random.uniform(0, self.backoff_seconds * 2 ** (attempt - 1)))
                    continue
                log.info("tasks.completed", attempt=attempt)
                return result

            log.error("tasks.dead_letter", attempts=self.max_attempts, error=str(last_error))
            await self._dead_letter(case_id, name, last_error)
            return None

    async def _dead_letter(self, case_id: str, name: str, error: Optional[BaseException]) -> None:
        detail = f"{error.__class__.__name__}: {error}" if error else "unknown error"
        text = (
            f"❌ **Automation failed** ({name})\n\n"
            f"Gave up after {self.max_attempts} attempt(s): {truncate(detail, 500)}\n\n"
            "The card needs manual attention."
        )
        try:
            await self.board.add_comment(case_id, text)
        except PipelineError as e:
            logger.error("tasks.dead_letter_comment_failed", case_id=case_id, error=str(e))
