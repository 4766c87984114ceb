# courier/core/dispatcher.py
"""
Consumer-side half of the envelope protocol.

The dispatcher turns an envelope back into a method call: it resolves the
declaring type by name, picks the method, builds an instance when the method
is not static, decodes the argument into the declared parameter type, invokes,
and awaits the result when the method is asynchronous.
"""

from __future__ import annotations
import asyncio
import inspect
from typing import Any, Union

from courier.core.codec.serde import SerializationError
from courier.core.errors import ErrorCode, invalid_envelope
from courier.core.logging import get_logger
from courier.core.models.envelope import Envelope
from courier.core.registry.types import MethodHandle, TypeHandle, TypeRegistry
from courier.core.utils.loop_runner import run_sync

logger = get_logger('dispatcher')


class Dispatcher:
    """Executes envelopes against the types of one registry.

    Stateless between calls: nothing is cached and nothing is retried. Errors
    raised by the target method (or its factory) reach the caller unchanged,
    which leaves retry and dead-letter decisions to the consumer.
    """

    def __init__(self, registry: TypeRegistry) -> None:
        self.registry = registry

    def _prepare(self, envelope: Envelope) -> tuple[TypeHandle, MethodHandle, Any]:
        reason = envelope.invalid_reason()
        if reason is not None:
            raise reason

        assert envelope.type_name is not None and envelope.method_name is not None
        handle = self.registry.resolve(envelope.type_name)
        method = handle.method(envelope.method_name)
        owner: Any = handle.cls if method.is_static else handle.create_instance()

        try:
            argument = method.decode(envelope.value)
        except SerializationError as e:
            raise invalid_envelope(
                f'value does not fit the parameter of {handle.type_name}.{method.name}',
                code=ErrorCode.ENVELOPE_ARGUMENT_MISMATCH,
                notes=[
                    f'parameter type: {getattr(method.parameter_type, "__qualname__", method.parameter_type)!r}',
                    str(e),
                ],
            ) from e
        return handle, method, method.bind(owner)(argument)

    async def dispatch_async(self, envelope: Envelope) -> Any:
        """
        Run the call described by `envelope` and await it when asynchronous.

        Returns:
            Whatever the target method returned (awaited).

        Raises:
            InvalidEnvelope: Blank names, missing value, or a value that does
                not fit the declared parameter type.
            UnknownType: The type name is not registered.
            UnknownMethod: The type has no dispatchable method by that name.
            Exception: Anything the factory or the method itself raises.
        """
        handle, method, result = self._prepare(envelope)
        logger.debug(f'Dispatched {handle.type_name}.{method.name}')
        if inspect.isawaitable(result):
            result = await result
            logger.debug(f'Completed {handle.type_name}.{method.name}')
        return result

    def dispatch(self, envelope: Envelope) -> Any:
        """
        Blocking dispatch for sync callers.

        Synchronous methods run on the calling thread. A coroutine result is
        driven to completion with asyncio.run() when this thread has no
        running loop, or on the shared loop runner otherwise.

        Futures and tasks are bound to the loop that created them and cannot
        be driven from here; async callers should use dispatch_async().

        Raises:
            RuntimeError: The method returned an asyncio future or task.
        """
        handle, method, result = self._prepare(envelope)
        logger.debug(f'Dispatched {handle.type_name}.{method.name}')
        if asyncio.isfuture(result):
            raise RuntimeError(
                f'{handle.type_name}.{method.name} returned {type(result).__name__}, '
                'which only its own event loop can await; use dispatch_async()'
            )
        if inspect.isawaitable(result):
            result = run_sync(_await_result, result)
            logger.debug(f'Completed {handle.type_name}.{method.name}')
        return result

    async def dispatch_body_async(self, body: Union[str, bytes]) -> Any:
        """Parse wire bytes, then dispatch_async()."""
        return await self.dispatch_async(Envelope.from_json(body))

    def dispatch_body(self, body: Union[str, bytes]) -> Any:
        """Parse wire bytes, then dispatch()."""
        return self.dispatch(Envelope.from_json(body))


async def _await_result(awaitable: Any) -> Any:
    return await awaitable
