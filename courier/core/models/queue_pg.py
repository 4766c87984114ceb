from __future__ import annotations
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from courier.core.defaults import DEFAULT_QUEUE_TABLE


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for PostgreSQL models"""

    pass


class MessageModel(Base):
    """
    SQLAlchemy model for queued envelopes.

    - id: str # uuid4, the message id returned by publish()
    - queue_name: str # logical queue, several queues can share the table
    - body: str # the envelope wire document (UTF-8 JSON)
    - attributes: dict # advisory attributes (DeclaringType, MethodName)
    - receive_count: int # number of times the message was claimed
    - receipt: str # token of the current claim, None while never claimed
    - visible_at: datetime # the message can be claimed once now() passes this
    - created_at: datetime # publish time, used for FIFO ordering
    """

    __tablename__ = DEFAULT_QUEUE_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    queue_name: Mapped[str] = mapped_column(String(100), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    attributes: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
    receive_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text('0')
    )
    receipt: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    visible_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('now()')
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('now()')
    )

    __table_args__ = (
        Index('idx_courier_messages_claim', 'queue_name', 'visible_at', 'created_at'),
    )
