"""
Thread-safe status publication.

Each published status struct lives in a StatusCell. The component that owns
the cell is the only writer; observers either poll ``get()`` or register a
listener that receives every new snapshot.
"""

import dataclasses
import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StatusCell(Generic[T]):
    """Holds an immutable snapshot and swaps it atomically."""

    def __init__(self, initial: T):
        self._value = initial
        self._lock = threading.Lock()
        self._listeners: List[Callable[[T], None]] = []

    def get(self) -> T:
        with self._lock:
            return self._value

    def update(self, **changes) -> T:
        """Replace fields of the current snapshot and notify listeners."""
        with self._lock:
            self._value = dataclasses.replace(self._value, **changes)
            value = self._value
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(value)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)
        return value

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe
