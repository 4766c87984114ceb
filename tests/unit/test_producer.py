"""Unit tests for the Producer."""

from __future__ import annotations

import json
from typing import Mapping, Sequence

import pytest

from courier.core.codec.serde import SerializationError
from courier.core.errors import ErrorCode, UnsupportedTarget
from courier.core.models.envelope import Envelope
from courier.core.producer import Producer, build_envelope
from courier.core.queues.base import ReceivedMessage
from courier.core.queues.memory import InMemoryQueue
from tests.fixtures.targets import (
    Announcement,
    Board,
    Box,
    Greeter,
    Letter,
    Mailer,
    Route,
    Shapes,
    Signer,
)

pytestmark = pytest.mark.unit

MODULE = 'tests.fixtures.targets'


class BrokenQueue:
    """Queue whose publish always fails."""

    def __init__(self) -> None:
        self.calls = 0

    async def publish(self, body: bytes, attributes: Mapping[str, str]) -> str:
        self.calls += 1
        raise ConnectionError('queue unavailable')

    async def receive(self, max_messages: int = 1) -> Sequence[ReceivedMessage]:
        return []

    async def acknowledge(self, message: ReceivedMessage) -> None:
        return None

    async def release(self, message: ReceivedMessage) -> None:
        return None

    async def close(self) -> None:
        return None


class TestBuildEnvelope:
    def test_instance_method(self) -> None:
        envelope = build_envelope(Greeter().greet, 'fred')
        assert envelope == Envelope(
            type_name=f'{MODULE}.Greeter', method_name='greet', value='fred'
        )

    def test_static_method_with_model_argument(self) -> None:
        envelope = build_envelope(Board.announce, Announcement(number=7))
        assert envelope.type_name == f'{MODULE}.Board'
        assert envelope.value == {'number': 7, 'text': ''}

    def test_dataclass_argument(self) -> None:
        envelope = build_envelope(Mailer().send, Letter(recipient='a', body='b'))
        assert envelope.value == {'recipient': 'a', 'body': 'b'}

    def test_none_argument(self) -> None:
        with pytest.raises(SerializationError):
            build_envelope(Greeter().greet, None)


class TestSchedule:
    @pytest.mark.asyncio
    async def test_publishes_wire_document_and_attributes(self) -> None:
        queue = InMemoryQueue()
        envelope = await Producer(queue).schedule(Greeter().greet, 'fred')

        assert len(queue.published) == 1
        message = queue.published[0]
        assert json.loads(message.body) == {
            'TypeName': f'{MODULE}.Greeter',
            'MethodName': 'greet',
            'Value': 'fred',
        }
        assert message.attributes == {
            'DeclaringType': f'{MODULE}.Greeter',
            'MethodName': 'greet',
        }
        assert envelope.to_json() == message.body

    @pytest.mark.asyncio
    async def test_rejected_target_publishes_nothing(self) -> None:
        queue = InMemoryQueue()
        producer = Producer(queue)

        with pytest.raises(UnsupportedTarget) as exc_info:
            await producer.schedule(Box().put, 1)
        assert exc_info.value.code == ErrorCode.TARGET_GENERIC_TYPE

        with pytest.raises(UnsupportedTarget) as exc_info:
            await producer.schedule(Shapes().add, 1)
        assert exc_info.value.code == ErrorCode.TARGET_PARAMETER_COUNT

        with pytest.raises(UnsupportedTarget) as exc_info:
            await producer.schedule(Signer().sign, 'ann')
        assert exc_info.value.code == ErrorCode.TARGET_PARAMETER_COUNT

        with pytest.raises(UnsupportedTarget) as exc_info:
            await producer.schedule(Route().start, None)
        assert exc_info.value.code == ErrorCode.TARGET_UNSUPPORTED_PARAMETER_TYPE

        assert queue.published == []

    @pytest.mark.asyncio
    async def test_publish_error_propagates_without_retry(self) -> None:
        queue = BrokenQueue()
        with pytest.raises(ConnectionError, match='queue unavailable'):
            await Producer(queue).schedule(Greeter().greet, 'fred')
        assert queue.calls == 1

    @pytest.mark.asyncio
    async def test_each_call_publishes_once(self) -> None:
        queue = InMemoryQueue()
        producer = Producer(queue)
        await producer.schedule(Greeter().greet, 'a')
        await producer.schedule(Greeter().greet, 'a')
        assert len(queue.published) == 2
        assert queue.published[0].message_id != queue.published[1].message_id

    def test_schedule_sync(self) -> None:
        queue = InMemoryQueue()
        envelope = Producer(queue).schedule_sync(Board.announce, Announcement(number=2))
        assert envelope.method_name == 'announce'
        assert len(queue.published) == 1

    @pytest.mark.asyncio
    async def test_schedule_sync_inside_running_loop(self) -> None:
        queue = InMemoryQueue()
        Producer(queue).schedule_sync(Greeter().greet, 'fred')
        assert queue.pending_count() == 1
