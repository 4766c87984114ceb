# courier/core/queues/memory.py
from __future__ import annotations
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from courier.core.logging import get_logger
from courier.core.queues.base import ReceivedMessage

logger = get_logger('queue.memory')


@dataclass
class _Entry:
    message_id: str
    body: bytes
    attributes: dict[str, str]
    receive_count: int = 0
    receipt: Optional[str] = None
    visible_at: float = 0.0  # time.monotonic() deadline while received; 0.0 means none


class InMemoryQueue:
    """
    Process-local FIFO queue with the same delivery semantics as PostgresQueue.

    Intended for tests and single-process setups. State is guarded by a
    threading lock, so it can be shared between event loops and threads.

    Args:
        visibility_timeout_ms: How long a received message stays hidden.
            None keeps it hidden until it is acknowledged or released.
    """

    def __init__(self, visibility_timeout_ms: Optional[int] = None) -> None:
        self.visibility_timeout_ms = visibility_timeout_ms
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._closed = False
        # Every publish() in order, acknowledged or not
        self.published: list[ReceivedMessage] = []

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError('queue is closed')

    def _is_visible(self, entry: _Entry, now: float) -> bool:
        if entry.receipt is None:
            return True
        return entry.visible_at != 0.0 and entry.visible_at <= now

    async def publish(self, body: bytes, attributes: Mapping[str, str]) -> str:
        message_id = str(uuid.uuid4())
        with self._lock:
            self._check_open()
            self._entries[message_id] = _Entry(message_id, bytes(body), dict(attributes))
            self.published.append(
                ReceivedMessage(message_id=message_id, body=bytes(body), attributes=dict(attributes))
            )
        logger.debug(f'Published message {message_id}')
        return message_id

    async def receive(self, max_messages: int = 1) -> Sequence[ReceivedMessage]:
        received: list[ReceivedMessage] = []
        now = time.monotonic()
        with self._lock:
            self._check_open()
            for entry in self._entries.values():
                if len(received) >= max_messages:
                    break
                if not self._is_visible(entry, now):
                    continue
                entry.receive_count += 1
                entry.receipt = uuid.uuid4().hex
                entry.visible_at = (
                    now + self.visibility_timeout_ms / 1000.0
                    if self.visibility_timeout_ms is not None
                    else 0.0
                )
                received.append(
                    ReceivedMessage(
                        message_id=entry.message_id,
                        body=entry.body,
                        attributes=dict(entry.attributes),
                        receive_count=entry.receive_count,
                        receipt=entry.receipt,
                    )
                )
        return received

    async def acknowledge(self, message: ReceivedMessage) -> None:
        with self._lock:
            entry = self._entries.get(message.message_id)
            if entry is None or entry.receipt != message.receipt:
                logger.warning(
                    f'Ignoring acknowledge of message {message.message_id}: '
                    'not held under this receipt'
                )
                return
            del self._entries[message.message_id]

    async def release(self, message: ReceivedMessage) -> None:
        with self._lock:
            entry = self._entries.get(message.message_id)
            if entry is not None and entry.receipt == message.receipt:
                entry.receipt = None
                entry.visible_at = 0.0

    async def close(self) -> None:
        with self._lock:
            self._closed = True

    def pending_count(self) -> int:
        """Messages not yet acknowledged, in flight ones included."""
        with self._lock:
            return len(self._entries)
