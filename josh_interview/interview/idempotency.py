"""
Request guard that lets an inbound message trigger at most one LLM extraction.
"""
import threading
from typing import Iterable, Optional, Set


def extraction_request_key(user_id: str, inbound_message_sid: str) -> str:
    return f"{user_id}:{inbound_message_sid}"


class ExtractionRequestGuard:
    """
    Thread-safe set of extraction request keys.

    try_acquire checks and inserts under one lock, so two callers racing on the
    same key can never both proceed.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None):
        self._keys: Set[str] = set(keys or ())
        self._lock = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        """Return True if the key was new (and is now recorded), False if seen before."""
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def release(self, key: str) -> None:
        """Forget a key once its turn is persisted and replays are caught by the session."""
        with self._lock:
            self._keys.discard(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
