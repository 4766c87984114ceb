"""Integration tests for PostgresQueue against a real database."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import text

from courier.core.app import Courier
from courier.core.consumer import DispatchOutcome
from courier.core.models.app import ConsumerConfig, CourierConfig, IdleMode
from courier.core.models.queue import PostgresQueueConfig
from courier.core.queues.postgres import PostgresQueue
from tests.fixtures import targets

pytestmark = pytest.mark.integration

ATTRS = {'DeclaringType': 'app.Greeter', 'MethodName': 'greet'}


async def _row_count(queue: PostgresQueue) -> int:
    async with queue.session_factory() as session:
        result = await session.execute(
            text('SELECT count(*) FROM courier_messages WHERE queue_name = :q'),
            {'q': queue.config.queue_name},
        )
        return int(result.scalar_one())


@pytest.mark.asyncio
async def test_publish_then_receive(queue: PostgresQueue) -> None:
    message_id = await queue.publish(b'{"TypeName":"a.B","MethodName":"c","Value":1}', ATTRS)

    (received,) = await queue.receive(max_messages=5)

    assert received.message_id == message_id
    assert received.body == b'{"TypeName":"a.B","MethodName":"c","Value":1}'
    assert received.attributes == ATTRS
    assert received.receive_count == 1
    assert received.receipt


@pytest.mark.asyncio
async def test_receive_is_fifo_and_respects_limit(queue: PostgresQueue) -> None:
    for i in range(3):
        await queue.publish(f'{i}'.encode(), {})

    first = await queue.receive(max_messages=2)
    second = await queue.receive(max_messages=2)

    assert [m.body for m in first] == [b'0', b'1']
    assert [m.body for m in second] == [b'2']


@pytest.mark.asyncio
async def test_received_message_is_hidden_until_timeout(queue: PostgresQueue) -> None:
    await queue.publish(b'1', {})
    (first,) = await queue.receive()

    assert await queue.receive() == []

    await asyncio.sleep(1.2)
    (again,) = await queue.receive()
    assert again.message_id == first.message_id
    assert again.receive_count == 2
    assert again.receipt != first.receipt


@pytest.mark.asyncio
async def test_acknowledge_deletes(queue: PostgresQueue) -> None:
    await queue.publish(b'1', {})
    (received,) = await queue.receive()

    await queue.acknowledge(received)

    assert await _row_count(queue) == 0


@pytest.mark.asyncio
async def test_stale_receipt_does_not_delete(queue: PostgresQueue) -> None:
    await queue.publish(b'1', {})
    (stale,) = await queue.receive()
    await asyncio.sleep(1.2)
    (current,) = await queue.receive()

    await queue.acknowledge(stale)
    assert await _row_count(queue) == 1

    await queue.acknowledge(current)
    assert await _row_count(queue) == 0


@pytest.mark.asyncio
async def test_release_makes_message_visible(queue: PostgresQueue) -> None:
    await queue.publish(b'1', {})
    (received,) = await queue.receive()

    await queue.release(received)

    (again,) = await queue.receive()
    assert again.message_id == received.message_id
    assert again.receive_count == 2


@pytest.mark.asyncio
async def test_queue_names_are_isolated(
    queue: PostgresQueue, queue_config: PostgresQueueConfig
) -> None:
    other = PostgresQueue(queue_config.model_copy(update={'queue_name': 'other-' + queue_config.queue_name}))
    try:
        await other.publish(b'elsewhere', {})
        assert await queue.receive() == []
        (received,) = await other.receive()
        assert received.body == b'elsewhere'
        await other.acknowledge(received)
    finally:
        await other.close()


@pytest.mark.asyncio
async def test_concurrent_consumers_never_share_a_message(
    queue: PostgresQueue, queue_config: PostgresQueueConfig
) -> None:
    for i in range(10):
        await queue.publish(f'{i}'.encode(), {})

    second = PostgresQueue(queue_config)
    try:
        batches = await asyncio.gather(
            queue.receive(max_messages=5),
            second.receive(max_messages=5),
            queue.receive(max_messages=5),
        )
    finally:
        await second.close()

    ids = [m.message_id for batch in batches for m in batch]
    assert len(ids) == 10
    assert len(set(ids)) == 10


@pytest.mark.asyncio
async def test_ensure_schema_is_idempotent(queue_config: PostgresQueueConfig) -> None:
    first, second = PostgresQueue(queue_config), PostgresQueue(queue_config)
    try:
        await asyncio.gather(
            first.ensure_schema_initialized(), second.ensure_schema_initialized()
        )
        await first.ensure_schema_initialized()
    finally:
        await first.close()
        await second.close()


@pytest.mark.asyncio
async def test_schedule_and_consume_through_postgres(
    queue: PostgresQueue, queue_config: PostgresQueueConfig
) -> None:
    targets.reset_state()
    app = Courier(
        CourierConfig(
            queue=queue_config,
            consumer=ConsumerConfig(idle_mode=IdleMode.STOP, batch_size=10),
        ),
        queue=queue,
    )
    app.register(targets)

    await app.schedule(targets.Greeter().greet, 'grace')
    await app.schedule(targets.Board.announce, targets.Announcement(number=3, text='x'))
    await app.schedule(targets.Exploder().explode, 'kaboom')

    consumer = app.consumer()
    outcomes = [await consumer.handle(m) for m in await queue.receive(max_messages=10)]

    assert outcomes == [
        DispatchOutcome.COMPLETED,
        DispatchOutcome.COMPLETED,
        DispatchOutcome.FAILED,
    ]
    assert targets.Greeter.greeted == ['grace']
    assert [a.number for a in targets.Board.announced] == [3]
    # the failed message stays for redelivery
    assert await _row_count(queue) == 1
