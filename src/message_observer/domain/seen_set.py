from __future__ import annotations

import threading
from typing import Protocol


class MessageIdStore(Protocol):
    """Protocol for at-least-once redelivery suppression keyed by broker message id."""

    def is_new(self, message_id: str) -> bool:
        """Return True exactly once per id and mark it seen in the same step."""
        ...


class SeenSet:
    """Process-lifetime set of processed message ids; entries are never removed."""

    def __init__(self) -> None:
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def is_new(self, message_id: str) -> bool:
        with self._lock:
            if message_id in self._ids:
                return False
            self._ids.add(message_id)
            return True
