from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

from message_observer.config.redact import redact_settings_dict


def _scrub_event_dict(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    return redact_settings_dict(event_dict)


_LOG_FORMATS = frozenset({"json", "human"})


def _pick_log_format(explicit: str | None, json_logs: bool) -> str:
    for candidate in (explicit, os.environ.get("LOG_FORMAT")):
        normalized = (candidate or "").strip().lower()
        if normalized in _LOG_FORMATS:
            return normalized
    return "json" if json_logs else "human"


def configure_logging(
    *,
    log_level: str = "INFO",
    json_logs: bool = False,
    log_format: str | None = None,
    stream: Any = None,
) -> None:
    """
    Route structlog and stdlib logging through one stderr handler.

    An explicit `log_format` wins over LOG_FORMAT, which wins over `json_logs`;
    LOG_LEVEL overrides `log_level`. Logs go to stderr by default so
    commands that print observed messages keep stdout machine-readable.
    """
    resolved_level = ((os.environ.get("LOG_LEVEL") or "").strip() or log_level).upper()
    resolved_format = _pick_log_format(log_format, json_logs)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _scrub_event_dict,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer: Any
    if resolved_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    formatter = ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(resolved_level)

    # botocore logs every request/credential lookup at DEBUG/INFO.
    for noisy in ("botocore", "boto3", "urllib3", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *shared_processors,
            ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
