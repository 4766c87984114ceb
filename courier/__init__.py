"""courier - durable method-call envelopes and a dynamic dispatch engine"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.app import Courier
from .core.consumer import Consumer, DispatchOutcome
from .core.dispatcher import Dispatcher
from .core.models.app import ConsumerConfig, CourierConfig, IdleMode
from .core.models.envelope import Envelope
from .core.models.queue import PostgresQueueConfig
from .core.producer import Producer, build_envelope
from .core.queues import InMemoryQueue, PostgresQueue, ReceivedMessage, TaskQueue
from .core.registry.types import MethodHandle, TypeHandle, TypeRegistry
from .core.targets import TargetDescriptor, validate_target
from .core.codec.serde import SerializationError
from .core.errors import (
    CourierError,
    ConfigurationError,
    ErrorCode,
    InvalidEnvelope,
    MultipleValidationErrors,
    RegistryError,
    UnknownMethod,
    UnknownTarget,
    UnknownType,
    UnsupportedTarget,
)

__all__ = [
    # App
    'Courier',
    'CourierConfig',
    'ConsumerConfig',
    'IdleMode',
    'PostgresQueueConfig',
    # Protocol
    'Envelope',
    'Producer',
    'build_envelope',
    'Dispatcher',
    'Consumer',
    'DispatchOutcome',
    'TargetDescriptor',
    'validate_target',
    # Registry
    'TypeRegistry',
    'TypeHandle',
    'MethodHandle',
    # Queues
    'TaskQueue',
    'ReceivedMessage',
    'InMemoryQueue',
    'PostgresQueue',
    # Errors
    'CourierError',
    'ConfigurationError',
    'ErrorCode',
    'InvalidEnvelope',
    'MultipleValidationErrors',
    'RegistryError',
    'SerializationError',
    'UnknownMethod',
    'UnknownTarget',
    'UnknownType',
    'UnsupportedTarget',
]
