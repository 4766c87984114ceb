# courier/core/queues/postgres.py
from __future__ import annotations
import hashlib
import uuid
from typing import Mapping, Sequence
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from courier.core.logging import get_logger
from courier.core.models.queue import PostgresQueueConfig
from courier.core.models.queue_pg import Base, MessageModel
from courier.core.queues.base import ReceivedMessage
from courier.core.utils.url import mask_database_url

logger = get_logger('queue.postgres')

# Claim up to :lim visible messages in FIFO order. Claimed rows get a fresh
# receipt and are hidden until :visibility_ms passes; unacknowledged rows then
# become claimable again by any consumer.
CLAIM_SQL = text("""
WITH next AS (
  SELECT id
  FROM courier_messages
  WHERE queue_name = :queue
    AND visible_at <= now()
  ORDER BY created_at ASC, id ASC
  FOR UPDATE SKIP LOCKED
  LIMIT :lim
)
UPDATE courier_messages m
SET receive_count = m.receive_count + 1,
    receipt = md5(random()::text || m.id),
    visible_at = now() + make_interval(secs => CAST(:visibility_ms AS DOUBLE PRECISION) / 1000.0)
FROM next
WHERE m.id = next.id
RETURNING m.id, m.body, m.attributes, m.receive_count, m.receipt
""")

ACK_SQL = text("""
DELETE FROM courier_messages
WHERE id = :id AND receipt = :receipt
""")

RELEASE_SQL = text("""
UPDATE courier_messages
SET visible_at = now()
WHERE id = :id AND receipt = :receipt
""")


class PostgresQueue:
    """
    PostgreSQL-backed TaskQueue.

    Messages live in the ``courier_messages`` table; several logical queues
    share it through the ``queue_name`` column. Consumers claim rows with
    ``FOR UPDATE SKIP LOCKED``, so concurrent workers never receive the same
    message inside its visibility window.
    """

    def __init__(self, config: PostgresQueueConfig):
        self.config = config
        self.async_engine = create_async_engine(
            self.config.database_url, **self.config.engine_options()
        )
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self._initialized = False
        logger.info(
            f'PostgresQueue initialized for queue {config.queue_name!r} '
            f'on {mask_database_url(config.database_url)}'
        )

    def _schema_advisory_key(self) -> int:
        """Stable 64-bit advisory lock key for schema creation, per database URL."""
        basis = self.config.database_url.encode('utf-8', errors='ignore')
        h = hashlib.sha256(b'courier-schema:' + basis).digest()
        return int.from_bytes(h[:8], byteorder='big', signed=True)

    async def ensure_schema_initialized(self) -> None:
        """
        Create the message table if missing.

        Safe to call multiple times and from multiple processes; serialized
        by a PostgreSQL advisory lock.
        """
        if self._initialized:
            return
        async with self.async_engine.begin() as conn:
            await conn.execute(
                text('SELECT pg_advisory_xact_lock(CAST(:key AS BIGINT))'),
                {'key': self._schema_advisory_key()},
            )
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True

    async def publish(self, body: bytes, attributes: Mapping[str, str]) -> str:
        await self.ensure_schema_initialized()
        message_id = str(uuid.uuid4())
        async with self.session_factory() as session:
            session.add(
                MessageModel(
                    id=message_id,
                    queue_name=self.config.queue_name,
                    body=body.decode('utf-8'),
                    attributes=dict(attributes),
                )
            )
            await session.commit()
        return message_id

    async def receive(self, max_messages: int = 1) -> Sequence[ReceivedMessage]:
        await self.ensure_schema_initialized()
        async with self.session_factory() as session:
            result = await session.execute(
                CLAIM_SQL,
                {
                    'queue': self.config.queue_name,
                    'lim': max_messages,
                    'visibility_ms': self.config.visibility_timeout_ms,
                },
            )
            rows = result.fetchall()
            await session.commit()
        return [
            ReceivedMessage(
                message_id=row[0],
                body=row[1].encode('utf-8'),
                attributes=dict(row[2] or {}),
                receive_count=row[3],
                receipt=row[4],
            )
            for row in rows
        ]

    async def acknowledge(self, message: ReceivedMessage) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                ACK_SQL, {'id': message.message_id, 'receipt': message.receipt}
            )
            await session.commit()
        if getattr(result, 'rowcount', 1) == 0:
            # Visibility window expired and someone else holds the message now
            logger.warning(
                f'Acknowledge of message {message.message_id} matched no row; '
                'it may be redelivered'
            )

    async def release(self, message: ReceivedMessage) -> None:
        async with self.session_factory() as session:
            await session.execute(
                RELEASE_SQL, {'id': message.message_id, 'receipt': message.receipt}
            )
            await session.commit()

    async def close(self) -> None:
        await self.async_engine.dispose()
