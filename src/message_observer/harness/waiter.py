from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from time import perf_counter

import structlog

from message_observer.domain.errors import MessageWaitTimeout
from message_observer.domain.models import ObservedMessage, SourceType
from message_observer.harness.replay_log import ReplayLog, Subscription
from message_observer.observability.metrics import observer_waits_total

log = structlog.get_logger(__name__)


class WaitState(StrEnum):
    PENDING = "pending"
    MATCHED = "matched"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class MessageMatcher:
    source_type: SourceType
    source_id: str
    payload: str

    def matches(self, message: ObservedMessage) -> bool:
        return (
            message.source_type == self.source_type
            and message.source_id == self.source_id
            and message.payload == self.payload
        )


class MessageWait:
    """
    One pending wait on a replay log.

    PENDING moves to exactly one terminal state (MATCHED, TIMED_OUT or CANCELLED);
    the subscription is retired on that transition.
    """

    def __init__(self, log_: ReplayLog, matcher: MessageMatcher) -> None:
        self._log = log_
        self.matcher = matcher
        self.state = WaitState.PENDING
        self._future: asyncio.Future[ObservedMessage] = (
            asyncio.get_running_loop().create_future()
        )
        self._subscription: Subscription | None = None

    def _on_message(self, message: ObservedMessage) -> None:
        if self.state is not WaitState.PENDING or not self.matcher.matches(message):
            return
        self._finish(WaitState.MATCHED)
        self._future.set_result(message)

    def _finish(self, state: WaitState) -> None:
        self.state = state
        if self._subscription is not None:
            self._subscription.close()
        observer_waits_total.labels(outcome=state.value).inc()

    async def result(self, timeout: float) -> ObservedMessage:
        # History replay happens inside subscribe(); a match there resolves the
        # future before any await.
        self._subscription = self._log.subscribe(self._on_message)
        if self.state is WaitState.MATCHED:
            self._subscription.close()
            return self._future.result()

        try:
            if timeout <= 0:
                raise TimeoutError
            return await asyncio.wait_for(asyncio.shield(self._future), timeout=timeout)
        except TimeoutError:
            if self._future.done():
                return self._future.result()
            self._finish(WaitState.TIMED_OUT)
            raise MessageWaitTimeout(self.matcher, timeout) from None
        except asyncio.CancelledError:
            if self.state is WaitState.PENDING:
                self._finish(WaitState.CANCELLED)
            raise
        finally:
            if self._subscription is not None:
                self._subscription.close()


async def wait_for_message(
    replay_log: ReplayLog,
    source_type: SourceType | str,
    source_id: str,
    payload: str,
    timeout: float,
) -> ObservedMessage:
    matcher = MessageMatcher(
        source_type=SourceType.parse(source_type),
        source_id=source_id,
        payload=payload,
    )
    started = perf_counter()
    wait = MessageWait(replay_log, matcher)
    try:
        message = await wait.result(timeout)
    except MessageWaitTimeout:
        log.warning(
            "observer.wait_timed_out",
            source_type=matcher.source_type.value,
            source_id=source_id,
            timeout_seconds=timeout,
        )
        raise
    log.debug(
        "observer.wait_matched",
        source_type=matcher.source_type.value,
        source_id=source_id,
        message_id=message.message_id,
        waited_seconds=round(perf_counter() - started, 3),
    )
    return message
