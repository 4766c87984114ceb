# courier/core/app.py
from typing import Any, Callable, Optional
from courier.core.consumer import Consumer, DeadLetterHandler
from courier.core.dispatcher import Dispatcher
from courier.core.logging import get_logger
from courier.core.models.app import CourierConfig
from courier.core.models.envelope import Envelope
from courier.core.producer import Producer
from courier.core.queues.base import TaskQueue
from courier.core.queues.memory import InMemoryQueue
from courier.core.queues.postgres import PostgresQueue
from courier.core.registry.types import TypeHandle, TypeRegistry
from courier.core.defaults import DEFAULT_VISIBILITY_TIMEOUT_MS
from courier.core.utils.imports import import_by_path


class Courier:
    """
    One place to wire the envelope protocol together.

    Producers use schedule()/schedule_sync(); consumers register their
    dispatchable types and run consumer(). Both sides must be built from the
    same code so that type names agree.
    """

    def __init__(
        self,
        config: Optional[CourierConfig] = None,
        *,
        queue: Optional[TaskQueue] = None,
    ):
        self.config = config or CourierConfig()
        self.types = TypeRegistry()
        self.logger = get_logger('app')
        self._queue: Optional[TaskQueue] = queue
        self._producer: Optional[Producer] = None
        self._dispatcher: Optional[Dispatcher] = None
        self._discovered_modules: list[str] = []

        queue_kind = 'postgres' if self.config.queue is not None else 'in-memory'
        if queue is not None:
            queue_kind = type(queue).__name__
        self.logger.info(f'courier initialized with {queue_kind} queue')

    # ----- wiring -----

    def get_queue(self) -> TaskQueue:
        """Return the queue, building it from config on first use."""
        if self._queue is None:
            if self.config.queue is not None:
                self._queue = PostgresQueue(self.config.queue)
            else:
                self._queue = InMemoryQueue(
                    visibility_timeout_ms=DEFAULT_VISIBILITY_TIMEOUT_MS
                )
        return self._queue

    @property
    def producer(self) -> Producer:
        if self._producer is None:
            self._producer = Producer(self.get_queue())
        return self._producer

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            self._dispatcher = Dispatcher(self.types)
        return self._dispatcher

    def consumer(self, *, dead_letter: Optional[DeadLetterHandler] = None) -> Consumer:
        """Build a consumer over this app's queue, registry and consumer config."""
        return Consumer(
            self.get_queue(),
            self.dispatcher,
            self.config.consumer,
            dead_letter=dead_letter,
        )

    # ----- registration -----

    def register(self, *sources: Any) -> list[TypeHandle]:
        """Register dispatchable types. See TypeRegistry.register."""
        return self.types.register(*sources)

    def discover(self, modules: list[str]) -> None:
        """
        Record module locators whose types a worker registers at startup.

        Locators are dotted module paths or file paths; nothing is imported
        until import_discovered_modules() runs.
        """
        for module in modules:
            if module not in self._discovered_modules:
                self._discovered_modules.append(module)

    def get_discovered_modules(self) -> list[str]:
        return list(self._discovered_modules)

    def import_discovered_modules(self) -> list[TypeHandle]:
        """Import every discovered module and register its types."""
        handles: list[TypeHandle] = []
        for locator in self._discovered_modules:
            try:
                module = import_by_path(locator)
            except Exception as e:
                self.logger.error(f'Failed to import module {locator}: {e}')
                raise
            handles.extend(self.types.register_module(module))
        return handles

    # ----- producer side -----

    async def schedule(self, target: Callable[..., Any], argument: Any) -> Envelope:
        return await self.producer.schedule(target, argument)

    def schedule_sync(self, target: Callable[..., Any], argument: Any) -> Envelope:
        return self.producer.schedule_sync(target, argument)

    # ----- consumer side -----

    async def dispatch_async(self, envelope: Envelope) -> Any:
        return await self.dispatcher.dispatch_async(envelope)

    def dispatch(self, envelope: Envelope) -> Any:
        return self.dispatcher.dispatch(envelope)

    async def close(self) -> None:
        if self._queue is not None:
            await self._queue.close()
