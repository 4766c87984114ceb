# courier/core/queues/base.py
"""The message queue contract the producer and consumer are written against."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class ReceivedMessage:
    """
    One delivery of a queued message.

    - message_id: str # id assigned by publish()
    - body: bytes # the envelope wire document
    - attributes: Mapping[str, str] # advisory attributes set at publish time
    - receive_count: int # 1 on first delivery, incremented on every redelivery
    - receipt: str | None # token identifying this delivery, required to acknowledge it
    """

    message_id: str
    body: bytes
    attributes: Mapping[str, str] = field(default_factory=lambda: {})
    receive_count: int = 1
    receipt: Optional[str] = None


@runtime_checkable
class TaskQueue(Protocol):
    """
    At-least-once message queue.

    A received message stays invisible to other consumers until it is
    acknowledged (removed for good) or its visibility window runs out, after
    which it is delivered again.
    """

    async def publish(self, body: bytes, attributes: Mapping[str, str]) -> str:
        """Enqueue one message and return its id."""
        ...

    async def receive(self, max_messages: int = 1) -> Sequence[ReceivedMessage]:
        """Claim up to `max_messages` visible messages; empty when none are ready."""
        ...

    async def acknowledge(self, message: ReceivedMessage) -> None:
        """Delete a received message so it is never delivered again."""
        ...

    async def release(self, message: ReceivedMessage) -> None:
        """Make a received message visible again right away."""
        ...

    async def close(self) -> None:
        ...
