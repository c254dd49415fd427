from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from message_observer.harness.waiter import MessageMatcher


class TransientError(Exception):
    """An error that is likely to succeed when retried (e.g. network issues)."""


class PermanentError(Exception):
    """An error that will not go away by retrying the same call unchanged."""


class TransientPollError(TransientError):
    """The long-poll receive failed in a way that usually heals (timeouts, throttling, 5xx)."""


class PermanentPollError(PermanentError):
    """The long-poll receive failed because of configuration or permissions."""


class MalformedEnvelopeError(PermanentError):
    """A queue message body does not match any known delivery envelope."""


class MessageWaitTimeout(TimeoutError):
    """No observed message matched within the wait's timeout."""

    def __init__(self, matcher: MessageMatcher, timeout_seconds: float) -> None:
        self.matcher = matcher
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds:g}s waiting for {matcher.source_type.value} "
            f"message from {matcher.source_id!r} with payload {matcher.payload!r}"
        )

