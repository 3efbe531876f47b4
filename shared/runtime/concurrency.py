"""Lock-guarded shared state primitives.

Both types are safe to use from the event loop and from worker threads.
Every compound operation (load-or-store, check-and-set) runs under a single
lock acquisition.
"""

from __future__ import annotations

from threading import Lock
from typing import Dict, Generic, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TopicCell:
    """
    Single-writer cell holding the active forum topic id.

    An empty cell means no session topic is active.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._value: Optional[str] = None

    def load(self) -> Optional[str]:
        with self._lock:
            return self._value

    def store(self, value: Optional[str]) -> None:
        with self._lock:
            self._value = value or None

    def clear(self) -> None:
        self.store(None)


class ConcurrentMap(Generic[K, V]):
    def __init__(self) -> None:
        self._lock = Lock()
        self._items: Dict[K, V] = {}

    def load(self, key: K) -> Tuple[Optional[V], bool]:
        with self._lock:
            if key in self._items:
                return self._items[key], True
            return None, False

    def store(self, key: K, value: V) -> None:
        with self._lock:
            self._items[key] = value

    def load_or_store(self, key: K, value: V) -> Tuple[V, bool]:
        """
        Return (existing, True) if key is present, otherwise store value and
        return (value, False).
        """
        with self._lock:
            if key in self._items:
                return self._items[key], True
            self._items[key] = value
            return value, False

    def delete(self, key: K) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


__all__ = ["TopicCell", "ConcurrentMap"]
