"""Keyed store for generated articles.

Generated articles are looked up by id from the card's "View Article" link,
so they need a home outside any single request. The store is an explicit
object handed to the pipelines and the HTTP layer rather than a module-level
dict, which keeps tests isolated.

Typical usage:
    from memory.article_store import DiskArticleStore

    store = DiskArticleStore()
    store.put("a1b2", {"card_id": "abc", "content": "<h1>...</h1>"})
    article = store.get("a1b2")
"""

import hashlib
import json
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from app.config import ARTICLE_STORE_DIR

logger = structlog.get_logger(__name__)


class ArticleStore(ABC):
    """Minimal keyed-store interface: ``get``, ``put``, ``list``."""

    @abstractmethod
    def get(self, article_id: str) -> Optional[Dict[str, Any]]:
        """Return the record for *article_id*, or ``None`` when unknown."""

    @abstractmethod
    def put(self, article_id: str, value: Dict[str, Any]) -> None:
        """Store *value* under *article_id*, replacing any previous record."""

    @abstractmethod
    def list(self) -> List[Dict[str, Any]]:
        """Every stored record, newest first."""


class InMemoryArticleStore(ArticleStore):
    """Process-local store. Used by tests and single-process deployments."""

    def __init__(self) -> None:
        self._items: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    def get(self, article_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._items.get(article_id)
            return dict(item) if item is not None else None

    def put(self, article_id: str, value: Dict[str, Any]) -> None:
        with self._lock:
            self._items[article_id] = {**value, "id": article_id, "stored_at": time.time()}

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            items = [dict(v) for v in self._items.values()]
        return sorted(items, key=lambda v: v.get("stored_at", 0), reverse=True)


class DiskArticleStore(ArticleStore):
    """One JSON file per article with atomic writes.

    Attributes:
        store_dir: Directory holding the article files.
        logger: Structured logger bound with the store directory.
        _lock: Reentrant lock guarding file access.
    """

    def __init__(self, store_dir: Path = ARTICLE_STORE_DIR) -> None:
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(store_dir=str(self.store_dir))
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _key_to_path(self, article_id: str) -> Path:
        digest = hashlib.md5(article_id.encode("utf-8")).hexdigest()
        return self.store_dir / f"{digest}.json"

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            self.logger.warning("article_store.corrupted_file", path=str(path), error=str(e))
            return None
        except OSError as e:
            self.logger.error("article_store.read_failed", path=str(path), error=str(e))
            return None

        if not isinstance(payload, dict) or "id" not in payload:
            self.logger.warning("article_store.invalid_format", path=str(path))
            return None
        return payload

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, article_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            path = self._key_to_path(article_id)
            if not path.exists():
                self.logger.debug("article_store.miss", article_id=article_id)
                return None
            return self._read(path)

    def put(self, article_id: str, value: Dict[str, Any]) -> None:
        """Write the record through a temporary file and an atomic rename.

        Raises:
            OSError: If the file cannot be written.
        """
        payload = {**value, "id": article_id, "stored_at": time.time()}
        with self._lock:
            path = self._key_to_path(article_id)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.store_dir,
                suffix=".tmp",
                delete=False,
            ) as tf:
                json.dump(payload, tf, ensure_ascii=False, indent=2)
                temp_path = tf.name
            try:
                os.replace(temp_path, path)
            except OSError:
                Path(temp_path).unlink(missing_ok=True)
                raise
            self.logger.info("article_store.write", article_id=article_id, path=str(path))

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [r for r in (self._read(p) for p in self.store_dir.glob("*.json")) if r]
        return sorted(records, key=lambda v: v.get("stored_at", 0), reverse=True)
