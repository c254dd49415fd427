"""Flat environment variable names and deprecated aliases.

Nested variables (``QUEUE__URL``) are read by pydantic-settings directly; this
module maps the flat names used by CI pipelines and deploy outputs onto the
nested settings, and warns when a deprecated name is still in use.
"""
from __future__ import annotations

import os
import warnings
from collections.abc import Iterable, Mapping
from typing import Any

# Mapping of deprecated env vars to their canonical names
_DEPRECATED_ALIASES: dict[str, str] = {
    "E2E_TEST_QUEUE_URL": "QUEUE_URL",
    "REST_API_URL": "API_BASE_URL",
}


def _warn_deprecated_env_var(old_name: str, new_name: str) -> None:
    warnings.warn(
        f"Environment variable '{old_name}' is deprecated. Use '{new_name}' instead. "
        f"Support for '{old_name}' will be removed in a future version.",
        DeprecationWarning,
        stacklevel=3,
    )


def _set_nested(data: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = data
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[path[-1]] = value


def _apply_alias_mappings(
    env: Mapping[str, str],
    data: dict[str, Any],
    mappings: Iterable[tuple[str, tuple[str, ...]]],
) -> None:
    for env_name, path in mappings:
        value = env.get(env_name)
        if value:
            _set_nested(data, path, value)


def _apply_deprecated_aliases(
    env: Mapping[str, str],
    data: dict[str, Any],
    deprecated_mappings: Iterable[tuple[str, str, tuple[str, ...]]],
) -> None:
    for old_name, new_name, path in deprecated_mappings:
        old_value = env.get(old_name)
        if not old_value:
            continue
        if env.get(new_name):
            continue
        _warn_deprecated_env_var(old_name, new_name)
        _set_nested(data, path, old_value)


_CANONICAL_MAPPINGS: tuple[tuple[str, tuple[str, ...]], ...] = (
    # AWS
    ("AWS_DEFAULT_REGION", ("aws", "region")),
    ("AWS_REGION", ("aws", "region")),
    ("AWS_ENDPOINT_URL", ("aws", "endpoint_url")),
    ("AWS_PROFILE", ("aws", "profile")),
    # Queue
    ("QUEUE_URL", ("queue", "url")),
    ("QUEUE_WAIT_TIME_SECONDS", ("queue", "wait_time_seconds")),
    ("QUEUE_MAX_MESSAGES", ("queue", "max_messages")),
    ("QUEUE_VISIBILITY_TIMEOUT_SECONDS", ("queue", "visibility_timeout_seconds")),
    ("QUEUE_DELETE_AFTER_RECEIVE", ("queue", "delete_after_receive")),
    # Harness
    ("HARNESS_REPLAY_CAPACITY", ("harness", "replay_capacity")),
    ("HARNESS_POLL_BACKOFF_SECONDS", ("harness", "poll_backoff_seconds")),
    ("HARNESS_POLL_BACKOFF_MAX_SECONDS", ("harness", "poll_backoff_max_seconds")),
    ("HARNESS_DEFAULT_WAIT_TIMEOUT_SECONDS", ("harness", "default_wait_timeout_seconds")),
    ("HARNESS_STOP_TIMEOUT_SECONDS", ("harness", "stop_timeout_seconds")),
    # Trigger
    ("API_BASE_URL", ("trigger", "api_base_url")),
    ("API_TIMEOUT_SECONDS", ("trigger", "timeout_seconds")),
    ("API_AUTH_TOKEN", ("trigger", "auth_token")),
    ("API_MAX_RETRIES", ("trigger", "max_retries")),
    # Observability
    ("LOG_LEVEL", ("observability", "log_level")),
    ("LOG_FORMAT", ("observability", "log_format")),
    ("LOG_JSON", ("observability", "json_logs")),
)

_DEPRECATED_VALUE_MAPPINGS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("E2E_TEST_QUEUE_URL", "QUEUE_URL", ("queue", "url")),
    ("REST_API_URL", "API_BASE_URL", ("trigger", "api_base_url")),
)


def get_flat_env_settings_source() -> dict[str, Any]:
    env = os.environ
    data: dict[str, Any] = {}

    _apply_alias_mappings(env, data, _CANONICAL_MAPPINGS)
    _apply_deprecated_aliases(env, data, _DEPRECATED_VALUE_MAPPINGS)

    return data
