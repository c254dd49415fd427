from __future__ import annotations

from message_observer.harness.observer import MessageObserver, start_listening
from message_observer.harness.waiter import MessageMatcher, WaitState

__all__ = [
    "MessageMatcher",
    "MessageObserver",
    "WaitState",
    "start_listening",
]
