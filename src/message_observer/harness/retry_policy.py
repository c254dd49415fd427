from __future__ import annotations

from dataclasses import dataclass

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    NoRegionError,
    ParamValidationError,
    PartialCredentialsError,
)

from message_observer.domain.error_messages import ErrorMessages, format_service_error
from message_observer.domain.errors import (
    PermanentError,
    PermanentPollError,
    TransientError,
    TransientPollError,
)

_THROTTLING_CODES: frozenset[str] = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestThrottled",
        "RequestThrottledException",
        "TooManyRequestsException",
        "OverLimit",
        "KmsThrottled",
        "SlowDown",
    }
)

_MISSING_QUEUE_CODES: frozenset[str] = frozenset(
    {
        "AWS.SimpleQueueService.NonExistentQueue",
        "QueueDoesNotExist",
        "NonExistentQueue",
    }
)

_ACCESS_CODES: frozenset[str] = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "InvalidClientTokenId",
        "UnrecognizedClientException",
        "SignatureDoesNotMatch",
        "ExpiredToken",
        "InvalidSecurity",
        "KmsAccessDenied",
    }
)


@dataclass(frozen=True, slots=True)
class Backoff:
    base_seconds: float = 0.5
    max_seconds: float = 10.0

    def delay(self, attempt: int) -> float:
        # attempt is 0-based: first failure after a successful receive waits base_seconds.
        return min(self.max_seconds, self.base_seconds * (2 ** max(0, attempt)))


def _classify_client_error(exc: ClientError) -> TransientPollError | PermanentPollError:
    error = exc.response.get("Error", {}) if isinstance(exc.response, dict) else {}
    code = str(error.get("Code") or "")
    metadata = exc.response.get("ResponseMetadata", {}) if isinstance(exc.response, dict) else {}
    status = metadata.get("HTTPStatusCode")

    if code in _THROTTLING_CODES or status == 429:
        return TransientPollError(ErrorMessages.THROTTLED.format(code=code or status))
    if code in _MISSING_QUEUE_CODES:
        return PermanentPollError(ErrorMessages.QUEUE_MISSING.format(code=code))
    if code in _ACCESS_CODES or status in (401, 403):
        return PermanentPollError(ErrorMessages.ACCESS_DENIED.format(code=code or status))
    if isinstance(status, int) and 500 <= status <= 599:
        return TransientPollError(format_service_error(code, status))
    return PermanentPollError(format_service_error(code, status))


def classify_poll_error(exc: BaseException) -> TransientPollError | PermanentPollError:
    """
    Classify a failed receive into transient vs permanent.

    Both kinds are retried by the poller; the classification decides log level and
    how quickly the retries happen.
    """
    if isinstance(exc, (TransientPollError, PermanentPollError)):
        return exc
    if isinstance(exc, TransientError):
        return TransientPollError(str(exc) or exc.__class__.__name__)
    if isinstance(exc, PermanentError):
        return PermanentPollError(str(exc) or exc.__class__.__name__)

    if isinstance(exc, ClientError):
        return _classify_client_error(exc)
    if isinstance(exc, BotoConnectionError):
        return TransientPollError(ErrorMessages.CONNECT_ERROR)
    if isinstance(exc, HTTPClientError):
        return TransientPollError(ErrorMessages.TRANSPORT_ERROR)
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return PermanentPollError(ErrorMessages.CREDENTIALS_MISSING)
    if isinstance(exc, (ParamValidationError, NoRegionError)):
        return PermanentPollError(str(exc) or exc.__class__.__name__)
    if isinstance(exc, BotoCoreError):
        return TransientPollError(str(exc) or exc.__class__.__name__)

    if isinstance(exc, (TimeoutError, OSError)):
        return TransientPollError(f"{exc.__class__.__name__}: {exc}")

    return PermanentPollError(f"{exc.__class__.__name__}: {exc}")
