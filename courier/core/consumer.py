# courier/core/consumer.py
from __future__ import annotations
import asyncio
import inspect
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from courier.core.dispatcher import Dispatcher
from courier.core.errors import InvalidEnvelope, UnknownTarget
from courier.core.logging import get_logger
from courier.core.models.app import ConsumerConfig, IdleMode
from courier.core.models.envelope import Envelope
from courier.core.queues.base import ReceivedMessage, TaskQueue

logger = get_logger('consumer')

DeadLetterHandler = Callable[
    [ReceivedMessage, BaseException], Union[Awaitable[None], None]
]


class DispatchOutcome(str, Enum):
    COMPLETED = 'COMPLETED'  # dispatched and acknowledged
    DEAD_LETTERED = 'DEAD_LETTERED'  # poison or out of deliveries; acknowledged
    UNKNOWN_TARGET = 'UNKNOWN_TARGET'  # registration mismatch; left for redelivery
    FAILED = 'FAILED'  # the target (or dead-lettering) raised; left for redelivery


@dataclass
class _IdleBackoff:
    initial_ms: int
    max_ms: int
    attempts: int = 0

    def reset(self) -> None:
        self.attempts = 0

    def next_delay_seconds(self) -> float:
        self.attempts += 1
        base_ms = min(self.max_ms, int(self.initial_ms * (2 ** (self.attempts - 1))))
        jitter_range = base_ms * 0.25
        delay_ms = base_ms + random.uniform(-jitter_range, jitter_range)
        return max(0.01, delay_ms / 1000.0)


class Consumer:
    """
    Receive-and-dispatch loop on top of a TaskQueue.

    The dispatcher only executes; this class decides what happens to the
    message afterwards:
      - success: acknowledge
      - InvalidEnvelope: poison, hand to dead_letter and acknowledge
      - UnknownTarget: log the registration mismatch, leave for redelivery
      - anything else: log with traceback, leave for redelivery

    With ``max_receive_count`` set, a message failing on its last allowed
    delivery is dead-lettered instead of being left in the queue.
    """

    def __init__(
        self,
        queue: TaskQueue,
        dispatcher: Dispatcher,
        config: Optional[ConsumerConfig] = None,
        *,
        dead_letter: Optional[DeadLetterHandler] = None,
    ):
        self.queue = queue
        self.dispatcher = dispatcher
        self.cfg = config or ConsumerConfig()
        self.dead_letter = dead_letter
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        """Request the consumer to stop after the current batch."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def _sleep_with_stop(self, delay_seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay_seconds)
        except asyncio.TimeoutError:
            return

    def _out_of_deliveries(self, message: ReceivedMessage) -> bool:
        limit = self.cfg.max_receive_count
        return limit is not None and message.receive_count >= limit

    async def _dead_letter(self, message: ReceivedMessage, exc: BaseException) -> DispatchOutcome:
        if self.dead_letter is not None:
            try:
                outcome = self.dead_letter(message, exc)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as dl_exc:
                logger.error(
                    f'Dead-letter handler failed for message {message.message_id}: {dl_exc}; '
                    'leaving it for redelivery',
                    exc_info=True,
                )
                return DispatchOutcome.FAILED
        await self.queue.acknowledge(message)
        return DispatchOutcome.DEAD_LETTERED

    async def handle(self, message: ReceivedMessage) -> DispatchOutcome:
        """Dispatch one received message and settle it."""
        try:
            envelope = Envelope.from_json(message.body)
            await self.dispatcher.dispatch_async(envelope)
        except asyncio.CancelledError:
            raise
        except InvalidEnvelope as exc:
            logger.error(
                f'Poison message {message.message_id} '
                f'(attributes={dict(message.attributes)}): {exc.message}'
            )
            return await self._dead_letter(message, exc)
        except UnknownTarget as exc:
            logger.error(
                f'Message {message.message_id} targets {exc.type_name!r}, which this '
                f'consumer cannot dispatch: {exc.message}. Producer and consumer '
                'registrations are out of sync'
            )
            if self._out_of_deliveries(message):
                return await self._dead_letter(message, exc)
            return DispatchOutcome.UNKNOWN_TARGET
        except Exception as exc:
            logger.error(
                f'Dispatch of message {message.message_id} failed on delivery '
                f'{message.receive_count}: {type(exc).__name__}: {exc}',
                exc_info=True,
            )
            if self._out_of_deliveries(message):
                return await self._dead_letter(message, exc)
            return DispatchOutcome.FAILED

        await self.queue.acknowledge(message)
        logger.debug(f'Completed message {message.message_id}')
        return DispatchOutcome.COMPLETED

    async def process_batch(self) -> int:
        """Receive one batch and handle each message in order. Returns the batch size."""
        messages = await self.queue.receive(self.cfg.batch_size)
        for message in messages:
            await self.handle(message)
        return len(messages)

    async def run(self) -> int:
        """
        Consume until stopped.

        In IdleMode.STOP an empty receive ends the run; in IdleMode.BACKOFF
        the consumer sleeps (exponential backoff with jitter) and polls again.

        Returns:
            Number of messages handled.
        """
        handled = 0
        backoff = _IdleBackoff(
            initial_ms=self.cfg.idle_backoff_initial_ms,
            max_ms=self.cfg.idle_backoff_max_ms,
        )
        logger.info(f'Consumer started (idle_mode={self.cfg.idle_mode.value})')
        while not self._stop.is_set():
            count = await self.process_batch()
            handled += count
            if count:
                backoff.reset()
                continue
            if self.cfg.idle_mode == IdleMode.STOP:
                logger.debug('Queue empty; stopping')
                break
            await self._sleep_with_stop(backoff.next_delay_seconds())
        logger.info(f'Consumer stopped after {handled} messages')
        return handled
