# courier/core/models/app.py
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from courier.core.defaults import (
    DEFAULT_IDLE_BACKOFF_INITIAL_MS,
    DEFAULT_IDLE_BACKOFF_MAX_MS,
    DEFAULT_RECEIVE_BATCH_SIZE,
)
from courier.core.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationReport,
    raise_collected,
)
from courier.core.models.queue import PostgresQueueConfig
from courier.core.utils.url import mask_database_url
import logging


class IdleMode(str, Enum):
    """What the consumer does when a receive() comes back empty."""

    STOP = 'stop'  # return from run(); the next scheduled invocation picks up later
    BACKOFF = 'backoff'  # sleep with exponential backoff and poll again


class ConsumerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_size: int = DEFAULT_RECEIVE_BATCH_SIZE
    idle_mode: IdleMode = IdleMode.BACKOFF
    idle_backoff_initial_ms: int = DEFAULT_IDLE_BACKOFF_INITIAL_MS
    idle_backoff_max_ms: int = DEFAULT_IDLE_BACKOFF_MAX_MS
    # Deliveries after which a still-failing message is dead-lettered. None = never.
    max_receive_count: Optional[int] = None

    @model_validator(mode='after')
    def validate_consumer(self):
        """Collects all independent errors and raises them together."""
        report = ValidationReport('consumer config')

        if self.batch_size < 1:
            report.add(
                ConfigurationError(
                    message='batch_size must be at least 1',
                    code=ErrorCode.CONFIG_INVALID_CONSUMER,
                    notes=[f'got batch_size={self.batch_size}'],
                    help_text='use a positive integer',
                )
            )

        if self.idle_backoff_initial_ms <= 0 or self.idle_backoff_max_ms <= 0:
            report.add(
                ConfigurationError(
                    message='idle backoff bounds must be positive',
                    code=ErrorCode.CONFIG_INVALID_CONSUMER,
                    notes=[
                        f'idle_backoff_initial_ms={self.idle_backoff_initial_ms}',
                        f'idle_backoff_max_ms={self.idle_backoff_max_ms}',
                    ],
                    help_text='use positive integers in milliseconds',
                )
            )
        elif self.idle_backoff_initial_ms > self.idle_backoff_max_ms:
            report.add(
                ConfigurationError(
                    message='idle_backoff_initial_ms exceeds idle_backoff_max_ms',
                    code=ErrorCode.CONFIG_INVALID_CONSUMER,
                    notes=[
                        f'idle_backoff_initial_ms={self.idle_backoff_initial_ms}',
                        f'idle_backoff_max_ms={self.idle_backoff_max_ms}',
                    ],
                    help_text='the initial delay must not be larger than the cap',
                )
            )

        if self.max_receive_count is not None and self.max_receive_count < 1:
            report.add(
                ConfigurationError(
                    message='max_receive_count must be positive',
                    code=ErrorCode.CONFIG_INVALID_CONSUMER,
                    notes=[f'got max_receive_count={self.max_receive_count}'],
                    help_text='use a positive integer or None to retry forever',
                )
            )

        raise_collected(report)
        return self


class CourierConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # None keeps messages in process (InMemoryQueue)
    queue: Optional[PostgresQueueConfig] = None
    consumer: ConsumerConfig = Field(default_factory=ConsumerConfig)

    @model_validator(mode='after')
    def validate_queue(self):
        report = ValidationReport('config')

        if (
            self.queue is not None
            and self.consumer.idle_mode == IdleMode.BACKOFF
            and self.consumer.idle_backoff_max_ms >= self.queue.visibility_timeout_ms
        ):
            report.add(
                ConfigurationError(
                    message='idle backoff cap must be shorter than the visibility timeout',
                    code=ErrorCode.CONFIG_INVALID_QUEUE,
                    notes=[
                        f'idle_backoff_max_ms={self.consumer.idle_backoff_max_ms}',
                        f'visibility_timeout_ms={self.queue.visibility_timeout_ms}',
                        'released messages would sit idle for longer than a delivery window',
                    ],
                    help_text='lower consumer.idle_backoff_max_ms or raise queue.visibility_timeout_ms',
                )
            )

        raise_collected(report)
        return self

    def log_config(self, logger: Optional[logging.Logger] = None) -> None:
        """
        Log the configuration in a human-readable format.

        Masks sensitive data like database passwords.
        """
        if logger is None:
            logger = logging.getLogger()
        logger.info('CourierConfig:\n%s', self._format_for_logging())

    def _format_for_logging(self) -> str:
        lines: list[str] = []
        if self.queue is None:
            lines.append('  queue: in-memory')
        else:
            lines.append('  queue:')
            lines.append(f'    database_url: {mask_database_url(self.queue.database_url)}')
            lines.append(f'    queue_name: {self.queue.queue_name}')
            lines.append(f'    visibility_timeout: {self.queue.visibility_timeout_ms}ms')
            lines.append(f'    pool_size: {self.queue.pool_size}')
            lines.append(f'    max_overflow: {self.queue.max_overflow}')

        lines.append('  consumer:')
        lines.append(f'    batch_size: {self.consumer.batch_size}')
        lines.append(f'    idle_mode: {self.consumer.idle_mode.value.upper()}')
        if self.consumer.idle_mode == IdleMode.BACKOFF:
            lines.append(
                f'    idle_backoff: {self.consumer.idle_backoff_initial_ms}ms..'
                f'{self.consumer.idle_backoff_max_ms}ms'
            )
        if self.consumer.max_receive_count is not None:
            lines.append(f'    max_receive_count: {self.consumer.max_receive_count}')
        return '\n'.join(lines)
