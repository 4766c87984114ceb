# courier/core/producer.py
"""Turns a method reference plus one argument into a published envelope."""

from __future__ import annotations
from typing import Any, Callable

from courier.core.codec.serde import encode_argument
from courier.core.logging import get_logger
from courier.core.models.envelope import Envelope
from courier.core.queues.base import TaskQueue
from courier.core.targets import validate_target
from courier.core.utils.loop_runner import run_sync

logger = get_logger('producer')


def build_envelope(target: Callable[..., Any], argument: Any) -> Envelope:
    """
    Validate `target` and wrap it with its encoded argument.

    Raises:
        UnsupportedTarget: If the target breaks a shape rule.
        SerializationError: If the argument cannot be encoded.
    """
    descriptor = validate_target(target)
    return Envelope(
        type_name=descriptor.type_name,
        method_name=descriptor.method_name,
        value=encode_argument(argument),
    )


class Producer:
    """Schedules method calls for later, out-of-process execution.

    Holds nothing but the queue reference, so one instance can be shared by
    any number of concurrent callers.
    """

    def __init__(self, queue: TaskQueue) -> None:
        self.queue = queue

    async def schedule(self, target: Callable[..., Any], argument: Any) -> Envelope:
        """
        Publish one envelope describing `target(argument)`.

        Validation happens before anything touches the queue: a rejected
        target publishes nothing. Publish failures propagate unchanged and
        are not retried here.

        Returns:
            The envelope that was published.

        Raises:
            UnsupportedTarget: If the target cannot be dispatched by name.
            SerializationError: If the argument cannot be encoded.
        """
        envelope = build_envelope(target, argument)
        message_id = await self.queue.publish(envelope.to_json(), envelope.attributes())
        logger.debug(
            f'Scheduled {envelope.type_name}.{envelope.method_name} as message {message_id}'
        )
        return envelope

    def schedule_sync(self, target: Callable[..., Any], argument: Any) -> Envelope:
        """Blocking variant of schedule() for sync callers."""
        return run_sync(self.schedule, target, argument)
