from __future__ import annotations

import asyncio
from typing import Any

import structlog

from message_observer.adapters.sqs.client import QueueReceiver, SqsQueueReceiver
from message_observer.config.settings import Settings
from message_observer.domain.envelope import render_payload
from message_observer.domain.models import ObservedMessage, SourceType
from message_observer.domain.seen_set import SeenSet
from message_observer.harness.poller import QueuePoller
from message_observer.harness.replay_log import DEFAULT_CAPACITY, ReplayLog
from message_observer.harness.retry_policy import Backoff
from message_observer.harness.waiter import wait_for_message

log = structlog.get_logger(__name__)

DEFAULT_WAIT_TIMEOUT_SECONDS = 10.0
DEFAULT_STOP_TIMEOUT_SECONDS = 3.0


class MessageObserver:
    """
    Observes side-effect messages arriving on a test queue.

    Each instance owns its own seen-id set, replay log and poll task, so separate
    suites never share state. Usage::

        async with MessageObserver.from_settings(settings) as observer:
            await place_order("Fangtasia")
            await observer.wait_for_message("broadcast", topic_arn, payload)
    """

    def __init__(
        self,
        receiver: QueueReceiver,
        *,
        replay_capacity: int = DEFAULT_CAPACITY,
        backoff: Backoff | None = None,
        delete_after_receive: bool = False,
        default_wait_timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT_SECONDS,
    ) -> None:
        self._seen = SeenSet()
        self._log = ReplayLog(replay_capacity)
        self._poller = QueuePoller(
            receiver,
            self._seen,
            self._log,
            backoff=backoff,
            delete_after_receive=delete_after_receive,
        )
        self._default_wait_timeout = float(default_wait_timeout)
        self._stop_timeout = float(stop_timeout)
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @classmethod
    def from_settings(cls, settings: Settings, *, sqs_client: Any | None = None) -> MessageObserver:
        harness = settings.harness
        return cls(
            SqsQueueReceiver.from_settings(settings, client=sqs_client),
            replay_capacity=harness.replay_capacity,
            backoff=Backoff(
                base_seconds=harness.poll_backoff_seconds,
                max_seconds=harness.poll_backoff_max_seconds,
            ),
            delete_after_receive=settings.queue.delete_after_receive,
            default_wait_timeout=harness.default_wait_timeout_seconds,
            stop_timeout=harness.stop_timeout_seconds,
        )

    async def __aenter__(self) -> MessageObserver:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.stop()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def replay_log(self) -> ReplayLog:
        return self._log

    @property
    def messages(self) -> tuple[ObservedMessage, ...]:
        return self._log.snapshot()

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    async def start(self) -> asyncio.Task[None]:
        if self._task is not None and not self._task.done():
            return self._task

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._poller.run(self._stop_event),
            name=f"message-observer:{id(self):x}",
        )
        log.info("observer.started", replay_capacity=self._log.capacity)
        return self._task

    async def stop(self, *, timeout: float | None = None) -> None:
        task = self._task
        stop_event = self._stop_event
        if task is None or stop_event is None:
            return

        stop_event.set()
        wait = self._stop_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=wait)
        except TimeoutError:
            # Still blocked in a long poll; the receive itself is kept for the next start().
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
        finally:
            self._task = None
            self._stop_event = None
        log.info(
            "observer.stopped",
            observed=len(self._log),
            seen=len(self._seen),
            receive_in_flight=self._poller.receive_in_flight,
        )

    async def wait_for_message(
        self,
        source_type: SourceType | str,
        source_id: str,
        payload: Any,
        *,
        timeout: float | None = None,
        timeout_ms: float | None = None,
    ) -> ObservedMessage:
        """
        Resolve with the first observed message equal on source type, source id and
        payload, whether it arrived before or after this call.

        Raises MessageWaitTimeout when nothing matches within the timeout. Payloads
        that are not strings are rendered as compact JSON before comparison.
        """
        if timeout_ms is not None:
            seconds = float(timeout_ms) / 1000.0
        elif timeout is not None:
            seconds = float(timeout)
        else:
            seconds = self._default_wait_timeout

        if not self.running:
            log.warning("observer.wait_while_stopped", source_id=source_id)

        return await wait_for_message(
            self._log,
            source_type,
            source_id,
            render_payload(payload),
            seconds,
        )


async def start_listening(
    settings: Settings | None = None,
    *,
    sqs_client: Any | None = None,
) -> MessageObserver:
    if settings is None:
        from message_observer.config.load import load_settings

        settings = load_settings()
    observer = MessageObserver.from_settings(settings, sqs_client=sqs_client)
    await observer.start()
    return observer
