"""Shared default constants for the courier library."""

# Wire-level message attribute names mirrored from the envelope body.
ATTRIBUTE_DECLARING_TYPE: str = 'DeclaringType'
ATTRIBUTE_METHOD_NAME: str = 'MethodName'

# Messages requested per receive() call by the consumer loop.
DEFAULT_RECEIVE_BATCH_SIZE: int = 1

# How long a received message stays hidden from other consumers before it
# becomes deliverable again (at-least-once redelivery).
DEFAULT_VISIBILITY_TIMEOUT_MS: int = 30_000  # 30 seconds

# Idle backoff bounds for the consumer when a poll comes back empty.
DEFAULT_IDLE_BACKOFF_INITIAL_MS: int = 250
DEFAULT_IDLE_BACKOFF_MAX_MS: int = 10_000

DEFAULT_QUEUE_TABLE: str = 'courier_messages'
