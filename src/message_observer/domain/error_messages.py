"""Error message constants for consistent poll-failure reporting."""
from __future__ import annotations


class ErrorMessages:
    """Centralized error message constants."""

    # Transport
    CONNECT_ERROR = "Could not connect to the queue endpoint"
    TRANSPORT_ERROR = "Transport error while reading the long-poll response"
    CREDENTIALS_MISSING = "No AWS credentials available"

    # Service
    SERVICE_ERROR = "Queue service error {code} (status={status})"
    THROTTLED = "Queue service throttled the receive call ({code})"
    QUEUE_MISSING = "Queue does not exist or is not accessible ({code})"
    ACCESS_DENIED = "Access denied to queue ({code})"

    # Envelope
    ENVELOPE_NOT_UTF8 = "Body is not valid UTF-8"
    ENVELOPE_NOT_JSON = "Body is not valid JSON"
    ENVELOPE_NOT_OBJECT = "Body is not a JSON object"
    ENVELOPE_UNKNOWN = "Body has neither TopicArn nor eventBusName"
    ENVELOPE_NO_PAYLOAD = "{field} is missing or not usable as a payload"


def format_service_error(code: str, status: int | None) -> str:
    return ErrorMessages.SERVICE_ERROR.format(code=code or "unknown", status=status)
