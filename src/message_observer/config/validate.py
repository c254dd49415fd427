from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit

from pydantic import ValidationError

from message_observer.config.settings import Settings


@dataclass(frozen=True)
class ConfigValidationIssue:
    path: str
    message: str


class ConfigValidationError(ValueError):
    def __init__(self, issues: Iterable[ConfigValidationIssue]):
        self.issues = list(issues)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = ["Configuration is invalid:"]
        for issue in self.issues:
            lines.append(f"- {issue.path}: {issue.message}")
        return "\n".join(lines)


def issues_from_pydantic_error(error: ValidationError) -> list[ConfigValidationIssue]:
    issues: list[ConfigValidationIssue] = []
    for item in error.errors(include_url=False):
        loc = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        msg = item.get("msg", "Invalid value")
        issues.append(ConfigValidationIssue(path=loc, message=msg))
    return issues


def _validate_http_url(
    *,
    url: str,
    path: str,
    issues: list[ConfigValidationIssue],
) -> None:
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        issues.append(
            ConfigValidationIssue(
                path=path,
                message=f"Expected an http(s) URL with a host, got {url!r}",
            )
        )


def validate_settings(settings: Settings) -> None:
    issues: list[ConfigValidationIssue] = []

    log_level = settings.observability.log_level.upper()
    allowed_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
    if log_level not in allowed_levels:
        issues.append(
            ConfigValidationIssue(
                path="observability.log_level",
                message=(
                    f"Unsupported log level {settings.observability.log_level!r} "
                    f"(allowed: {sorted(allowed_levels)})"
                ),
            )
        )

    _validate_http_url(url=settings.queue.url, path="queue.url", issues=issues)

    if settings.aws.endpoint_url:
        _validate_http_url(url=settings.aws.endpoint_url, path="aws.endpoint_url", issues=issues)

    if not settings.aws.region.strip():
        issues.append(ConfigValidationIssue(path="aws.region", message="Region must not be empty"))

    # Received messages must stay hidden for at least one long-poll cycle.
    visibility = settings.queue.visibility_timeout_seconds
    if visibility is not None and 0 < visibility < settings.queue.wait_time_seconds:
        issues.append(
            ConfigValidationIssue(
                path="queue.visibility_timeout_seconds",
                message=(
                    "Visibility timeout shorter than queue.wait_time_seconds causes "
                    "redelivery storms; use 0 or a value >= the long-poll wait."
                ),
            )
        )

    if issues:
        raise ConfigValidationError(issues)
