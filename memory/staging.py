"""At-most-once keys for card creation."""

import hashlib
import threading
from collections import OrderedDict

from app.config import SEEN_KEYS_CAPACITY


def staging_key(url: str, title: str) -> str:
    """Stable key for a source item: normalised URL plus normalised title."""
    normalised = f"{(url or '').strip().lower()}|{' '.join((title or '').lower().split())}"
    return hashlib.sha1(normalised.encode("utf-8")).hexdigest()


class SeenKeys:
    """Bounded set of keys already staged by this process.

    The oldest keys are evicted first once *capacity* is reached. The board
    itself remains the authority; this only saves a round trip.
    """

    def __init__(self, capacity: int = SEEN_KEYS_CAPACITY) -> None:
        self.capacity = capacity
        self._keys: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> None:
        with self._lock:
            self._keys[key] = None
            self._keys.move_to_end(key)
            while len(self._keys) > self.capacity:
                self._keys.popitem(last=False)
