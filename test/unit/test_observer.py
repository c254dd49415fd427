from __future__ import annotations

import asyncio
import time

import boto3
import pytest
from moto import mock_aws

from message_observer.adapters.sqs.client import SqsQueueReceiver
from message_observer.domain.errors import MessageWaitTimeout
from message_observer.domain.models import RawMessage
from message_observer.harness import MessageObserver, start_listening
from message_observer.harness.retry_policy import Backoff

TOPIC = "arn:aws:sns:us-east-1:123456789012:restaurant-notifications"
BUS = "order-events-dev"
ORDER_X1 = '{"orderId":"X1","restaurantName":"Fangtasia"}'


def _observer(receiver, **kwargs) -> MessageObserver:
    kwargs.setdefault("backoff", Backoff(base_seconds=0.01, max_seconds=0.05))
    kwargs.setdefault("stop_timeout", 1.0)
    return MessageObserver(receiver, **kwargs)


def test_wait_resolves_from_polled_message(fake_receiver, bodies) -> None:
    fake_receiver.push(RawMessage("m-1", bodies.sns(TOPIC, ORDER_X1)))

    async def run() -> None:
        async with _observer(fake_receiver) as observer:
            message = await observer.wait_for_message("broadcast", TOPIC, ORDER_X1, timeout_ms=10_000)
            assert message.message_id == "m-1"
            assert observer.running
        assert not observer.running

    asyncio.run(run())


def test_start_is_idempotent(fake_receiver) -> None:
    async def run() -> None:
        observer = _observer(fake_receiver)
        first = await observer.start()
        second = await observer.start()
        assert first is second
        await observer.stop()
        await observer.stop()
        assert not observer.running

    asyncio.run(run())


def test_observer_can_restart_and_keeps_history(fake_receiver, bodies) -> None:
    async def run() -> None:
        observer = _observer(fake_receiver)
        fake_receiver.push(RawMessage("m-1", bodies.sns(TOPIC, ORDER_X1)))
        await observer.start()
        await observer.wait_for_message("broadcast", TOPIC, ORDER_X1, timeout=2.0)
        await observer.stop()

        fake_receiver.push(RawMessage("m-2", bodies.bus(BUS, {"orderId": "X2"})))
        await observer.start()
        message = await observer.wait_for_message("routedEvent", BUS, {"orderId": "X2"}, timeout=2.0)
        await observer.stop()

        assert message.payload == '{"orderId":"X2"}'
        assert [m.message_id for m in observer.messages] == ["m-1", "m-2"]
        assert observer.seen_count == 2

    asyncio.run(run())


def test_wait_while_stopped_still_consults_history(fake_receiver, bodies) -> None:
    async def run() -> None:
        observer = _observer(fake_receiver)
        await observer.start()
        fake_receiver.push(RawMessage("m-1", bodies.sns(TOPIC, ORDER_X1)))
        while len(observer.messages) < 1:
            await asyncio.sleep(0.005)
        await observer.stop()

        message = await observer.wait_for_message("broadcast", TOPIC, ORDER_X1, timeout=0.1)
        assert message.message_id == "m-1"

        with pytest.raises(MessageWaitTimeout):
            await observer.wait_for_message("broadcast", TOPIC, '{"orderId":"none"}', timeout=0.05)

    asyncio.run(run())


def test_instances_do_not_share_state(fake_receiver, bodies) -> None:
    first_receiver = fake_receiver
    second_receiver = type(fake_receiver)()
    first_receiver.push(RawMessage("m-1", bodies.sns(TOPIC, ORDER_X1)))

    async def run() -> None:
        async with _observer(first_receiver) as first, _observer(second_receiver) as second:
            await first.wait_for_message("broadcast", TOPIC, ORDER_X1, timeout=2.0)
            with pytest.raises(MessageWaitTimeout):
                await second.wait_for_message("broadcast", TOPIC, ORDER_X1, timeout=0.05)
            assert second.seen_count == 0

    asyncio.run(run())


def test_default_wait_timeout_applies(fake_receiver) -> None:
    async def run() -> None:
        async with _observer(fake_receiver, default_wait_timeout=0.05) as observer:
            with pytest.raises(MessageWaitTimeout) as exc_info:
                await observer.wait_for_message("broadcast", TOPIC, ORDER_X1)
        assert exc_info.value.timeout_seconds == pytest.approx(0.05)

    asyncio.run(run())


def test_stop_abandons_a_receive_that_outlasts_the_stop_timeout() -> None:
    class _HangingReceiver:
        async def receive(self):
            await asyncio.sleep(60)
            return []

        async def delete(self, messages) -> None:
            return None

    async def run() -> None:
        observer = _observer(_HangingReceiver(), stop_timeout=0.05)
        task = await observer.start()
        await asyncio.sleep(0.01)
        await asyncio.wait_for(observer.stop(), timeout=1.0)
        assert task.cancelled()
        assert not observer.running

    asyncio.run(run())


def test_restart_collects_batch_from_receive_outlasting_stop(bodies) -> None:
    with mock_aws():
        client = boto3.client("sqs", region_name="us-east-1")
        queue_url = client.create_queue(QueueName="observer-restart")["QueueUrl"]

        class _SlowLongPoll:
            def receive_message(self, **kwargs):
                time.sleep(0.3)
                return client.receive_message(**kwargs)

        receiver = SqsQueueReceiver(_SlowLongPoll(), queue_url=queue_url, wait_time_seconds=0)

        async def run() -> None:
            observer = _observer(receiver, stop_timeout=0.05)
            await observer.start()
            client.send_message(QueueUrl=queue_url, MessageBody=bodies.sns(TOPIC, ORDER_X1))
            await asyncio.sleep(0.01)
            await observer.stop()
            assert observer.seen_count == 0

            await observer.start()
            try:
                message = await observer.wait_for_message("broadcast", TOPIC, ORDER_X1, timeout=2.0)
            finally:
                await observer.stop()

            assert message.source_id == TOPIC
            assert observer.seen_count == 1

        asyncio.run(run())


def test_stop_propagates_cancellation_of_the_caller(fake_receiver) -> None:
    async def _slow_to_cancel() -> None:
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            await asyncio.sleep(0.2)
            raise

    async def run() -> None:
        observer = _observer(fake_receiver)
        observer._stop_event = asyncio.Event()  # noqa: SLF001
        observer._task = asyncio.create_task(_slow_to_cancel())  # noqa: SLF001
        stopper = asyncio.create_task(observer.stop(timeout=0.01))
        await asyncio.sleep(0.05)
        assert not stopper.done()

        stopper.cancel()
        with pytest.raises(asyncio.CancelledError):
            await stopper
        assert not observer.running

    asyncio.run(run())


def test_from_settings_wires_harness_and_queue(make_settings) -> None:
    settings = make_settings(
        {
            "queue": {"delete_after_receive": True, "max_messages": 5},
            "harness": {"replay_capacity": 7, "default_wait_timeout_seconds": 4},
        }
    )

    observer = MessageObserver.from_settings(settings, sqs_client=object())

    assert observer.replay_log.capacity == 7
    receiver = observer._poller._receiver  # noqa: SLF001
    assert isinstance(receiver, SqsQueueReceiver)
    assert receiver.queue_url == settings.queue.url


def test_start_listening_returns_running_observer(make_settings, monkeypatch, fake_receiver) -> None:
    monkeypatch.setattr(
        SqsQueueReceiver, "from_settings", classmethod(lambda cls, settings, client=None: fake_receiver)
    )

    async def run() -> None:
        observer = await start_listening(make_settings())
        try:
            assert observer.running
        finally:
            await observer.stop()

    asyncio.run(run())
