from __future__ import annotations

import asyncio
import json
import os
import socket
import sys
from collections.abc import Callable
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    sys.path.insert(0, str(src_path))

    # Set required env vars for Settings validation during test collection
    os.environ["QUEUE_URL"] = "https://sqs.us-east-1.amazonaws.com/123456789012/e2e-test-queue"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture(autouse=True)
def _disable_network(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Prevent accidental real network calls in unit/integration tests.

    moto and respx mocks still work because they intercept above the socket layer.
    """
    if (os.environ.get("ALLOW_NETWORK_TESTS") or "").strip().lower() in {"1", "true", "yes"}:
        return

    def _blocked(*_args: object, **_kwargs: object) -> None:
        raise RuntimeError(
            "Network access is disabled in tests (set ALLOW_NETWORK_TESTS=1 to override)."
        )

    monkeypatch.setattr(socket, "create_connection", _blocked)
    monkeypatch.setattr(socket.socket, "connect", _blocked, raising=True)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


@pytest.fixture
def make_settings() -> Callable[..., Any]:
    from message_observer.config.settings import Settings

    def _make(overrides: dict[str, Any] | None = None) -> Settings:
        data: dict[str, Any] = {
            "aws": {"region": "us-east-1"},
            "queue": {
                "url": "https://sqs.us-east-1.amazonaws.com/123456789012/e2e-test-queue",
                "wait_time_seconds": 1,
            },
            "harness": {"poll_backoff_seconds": 0.01, "poll_backoff_max_seconds": 0.05},
        }
        if overrides:
            data = _deep_merge(data, overrides)
        return Settings.from_mapping(data)

    return _make


def sns_body(topic_arn: str, message: str, *, message_id: str = "sns-1") -> str:
    return json.dumps(
        {
            "Type": "Notification",
            "MessageId": message_id,
            "TopicArn": topic_arn,
            "Message": message,
            "Timestamp": "2026-10-19T09:00:00.000Z",
            "SignatureVersion": "1",
        }
    )


def bus_body(bus_name: str, event: Any) -> str:
    return json.dumps({"event": event, "eventBusName": bus_name})


@dataclass
class FakeReceiver:
    """Scripted long-poll receiver: each receive() pops one batch or raises one error."""

    batches: list[Any] = field(default_factory=list)
    deleted: list[Any] = field(default_factory=list)
    calls: int = 0
    idle_sleep: float = 0.005

    def push(self, *messages: Any) -> None:
        self.batches.append(list(messages))

    def fail(self, exc: Exception) -> None:
        self.batches.append(exc)

    async def receive(self) -> list[Any]:
        self.calls += 1
        if not self.batches:
            await asyncio.sleep(self.idle_sleep)
            return []
        item = self.batches.pop(0)
        if isinstance(item, Exception):
            raise item
        await asyncio.sleep(0)
        return item

    async def delete(self, messages: Any) -> None:
        self.deleted.extend(messages)


@pytest.fixture
def fake_receiver() -> FakeReceiver:
    return FakeReceiver()


@pytest.fixture
def bodies() -> Any:
    class _Bodies:
        sns = staticmethod(sns_body)
        bus = staticmethod(bus_body)

    return _Bodies
