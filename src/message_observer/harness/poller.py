from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence

import structlog

from message_observer.adapters.sqs.client import QueueReceiver
from message_observer.domain.envelope import classify, to_observed
from message_observer.domain.errors import MalformedEnvelopeError, PermanentPollError
from message_observer.domain.models import RawMessage
from message_observer.domain.seen_set import MessageIdStore
from message_observer.harness.replay_log import ReplayLog
from message_observer.harness.retry_policy import Backoff, classify_poll_error
from message_observer.observability.metrics import (
    observer_dropped_total,
    observer_duplicates_total,
    observer_observed_total,
    observer_poll_errors_total,
    observer_received_total,
)

log = structlog.get_logger(__name__)


async def _sleep_or_stop(stop_event: asyncio.Event, delay: float) -> None:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay)
    except TimeoutError:
        pass


class QueuePoller:
    """Feeds long-poll receives through classify -> dedup -> replay log until stopped."""

    def __init__(
        self,
        receiver: QueueReceiver,
        seen: MessageIdStore,
        replay_log: ReplayLog,
        *,
        backoff: Backoff | None = None,
        delete_after_receive: bool = False,
        sleep: Callable[[asyncio.Event, float], Awaitable[None]] = _sleep_or_stop,
    ) -> None:
        self._receiver = receiver
        self._seen = seen
        self._log = replay_log
        self._backoff = backoff or Backoff()
        self._delete_after_receive = delete_after_receive
        self._sleep = sleep
        self._failures = 0
        self._inflight: asyncio.Future[list[RawMessage]] | None = None

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def receive_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def process(self, messages: Sequence[RawMessage]) -> int:
        """Dispatch a received batch in queue order; returns how many were appended."""
        appended = 0
        for raw in messages:
            observer_received_total.inc()
            try:
                observed = to_observed(classify(raw.body), raw.message_id)
            except MalformedEnvelopeError as exc:
                observer_dropped_total.labels(reason="unknown_envelope").inc()
                log.debug("observer.envelope_dropped", message_id=raw.message_id, reason=str(exc))
                continue

            if not self._seen.is_new(raw.message_id):
                observer_duplicates_total.inc()
                log.debug("observer.duplicate_dropped", message_id=raw.message_id)
                continue

            self._log.append(observed)
            observer_observed_total.labels(source_type=observed.source_type.value).inc()
            log.info(
                "observer.message_observed",
                message_id=raw.message_id,
                source_type=observed.source_type.value,
                source_id=observed.source_id,
            )
            appended += 1
        return appended

    async def _delete(self, messages: Sequence[RawMessage]) -> None:
        try:
            await self._receiver.delete(messages)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("observer.delete_failed", count=len(messages))

    async def _receive(self) -> list[RawMessage]:
        # A receive outlives a cancelled poll; the next poll collects its batch.
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._receiver.receive())
        inflight = self._inflight
        try:
            messages = await asyncio.shield(inflight)
        except asyncio.CancelledError:
            if inflight.cancelled():
                self._inflight = None
            raise
        except Exception:
            self._inflight = None
            raise
        self._inflight = None
        return messages

    async def poll_once(self) -> int:
        messages = await self._receive()
        self._failures = 0
        appended = self.process(messages)
        if self._delete_after_receive and messages:
            await self._delete(messages)
        return appended

    async def _on_failure(self, exc: Exception, stop_event: asyncio.Event) -> None:
        classified = classify_poll_error(exc)
        permanent = isinstance(classified, PermanentPollError)
        classification = "permanent" if permanent else "transient"
        observer_poll_errors_total.labels(classification=classification).inc()

        delay = (
            self._backoff.max_seconds if permanent else self._backoff.delay(self._failures)
        )
        self._failures += 1
        log_fn = log.error if permanent else log.warning
        log_fn(
            "observer.poll_failed",
            classification=classification,
            error=str(classified),
            consecutive_failures=self._failures,
            retry_in_seconds=delay,
        )
        await self._sleep(stop_event, delay)

    async def run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._on_failure(exc, stop_event)
