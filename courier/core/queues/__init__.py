from courier.core.queues.base import ReceivedMessage, TaskQueue
from courier.core.queues.memory import InMemoryQueue
from courier.core.queues.postgres import PostgresQueue

__all__ = [
    'InMemoryQueue',
    'PostgresQueue',
    'ReceivedMessage',
    'TaskQueue',
]
