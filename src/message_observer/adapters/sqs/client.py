from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol

import boto3
import structlog
from botocore.config import Config

from message_observer.domain.models import RawMessage

if TYPE_CHECKING:
    from message_observer.config.settings import Settings

log = structlog.get_logger(__name__)

MAX_WAIT_TIME_SECONDS = 20
MAX_BATCH_SIZE = 10


class QueueReceiver(Protocol):
    async def receive(self) -> list[RawMessage]: ...

    async def delete(self, messages: Sequence[RawMessage]) -> None: ...


def _as_raw_message(item: dict[str, Any]) -> RawMessage:
    return RawMessage(
        message_id=str(item.get("MessageId") or ""),
        body=str(item.get("Body") or ""),
        receipt_handle=item.get("ReceiptHandle"),
    )


def build_sqs_client(settings: Settings) -> Any:
    wait = settings.queue.wait_time_seconds
    config = Config(
        # Read timeout must outlast the server-side long poll.
        read_timeout=wait + 10,
        connect_timeout=5,
        retries={"max_attempts": 3, "mode": "standard"},
    )
    session = boto3.session.Session(profile_name=settings.aws.profile)
    return session.client(
        "sqs",
        region_name=settings.aws.region,
        endpoint_url=str(settings.aws.endpoint_url) if settings.aws.endpoint_url else None,
        config=config,
    )


class SqsQueueReceiver:
    """Long-poll receiver over a synchronous boto3 SQS client, run in worker threads."""

    def __init__(
        self,
        client: Any,
        *,
        queue_url: str,
        wait_time_seconds: int = MAX_WAIT_TIME_SECONDS,
        max_messages: int = MAX_BATCH_SIZE,
        visibility_timeout_seconds: int | None = None,
    ) -> None:
        if not queue_url:
            raise ValueError("queue_url is required")
        if not 0 <= wait_time_seconds <= MAX_WAIT_TIME_SECONDS:
            raise ValueError(f"wait_time_seconds must be between 0 and {MAX_WAIT_TIME_SECONDS}")
        if not 1 <= max_messages <= MAX_BATCH_SIZE:
            raise ValueError(f"max_messages must be between 1 and {MAX_BATCH_SIZE}")
        self._client = client
        self._queue_url = queue_url
        self._wait_time_seconds = int(wait_time_seconds)
        self._max_messages = int(max_messages)
        self._visibility_timeout_seconds = visibility_timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings, *, client: Any | None = None) -> SqsQueueReceiver:
        return cls(
            client if client is not None else build_sqs_client(settings),
            queue_url=settings.queue.url,
            wait_time_seconds=settings.queue.wait_time_seconds,
            max_messages=settings.queue.max_messages,
            visibility_timeout_seconds=settings.queue.visibility_timeout_seconds,
        )

    @property
    def queue_url(self) -> str:
        return self._queue_url

    def _receive_sync(self) -> list[RawMessage]:
        params: dict[str, Any] = {
            "QueueUrl": self._queue_url,
            "MaxNumberOfMessages": self._max_messages,
            "WaitTimeSeconds": self._wait_time_seconds,
        }
        if self._visibility_timeout_seconds is not None:
            params["VisibilityTimeout"] = self._visibility_timeout_seconds
        response = self._client.receive_message(**params)
        return [_as_raw_message(item) for item in response.get("Messages") or []]

    async def receive(self) -> list[RawMessage]:
        return await asyncio.to_thread(self._receive_sync)

    def _delete_sync(self, messages: Sequence[RawMessage]) -> None:
        entries = [
            {"Id": str(idx), "ReceiptHandle": message.receipt_handle}
            for idx, message in enumerate(messages)
            if message.receipt_handle
        ]
        for start in range(0, len(entries), MAX_BATCH_SIZE):
            batch = entries[start : start + MAX_BATCH_SIZE]
            response = self._client.delete_message_batch(QueueUrl=self._queue_url, Entries=batch)
            failed = response.get("Failed") or []
            if failed:
                log.warning(
                    "observer.delete_partially_failed",
                    failed=len(failed),
                    codes=sorted({str(item.get("Code")) for item in failed}),
                )

    async def delete(self, messages: Sequence[RawMessage]) -> None:
        if not messages:
            return
        await asyncio.to_thread(self._delete_sync, list(messages))
