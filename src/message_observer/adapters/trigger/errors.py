from __future__ import annotations


class TriggerError(Exception):
    """Base class for failures while triggering an action under test."""


class TriggerAuthError(TriggerError):
    """Authentication/authorization failed (typically HTTP 401/403)."""


class TriggerNotFoundError(TriggerError):
    """The action endpoint does not exist (HTTP 404)."""


class TriggerRateLimitError(TriggerError):
    """Request was rate limited (HTTP 429) and retries were exhausted."""


class TriggerServerError(TriggerError):
    """Server-side failure or retry exhaustion (typically HTTP 5xx or transport errors)."""
