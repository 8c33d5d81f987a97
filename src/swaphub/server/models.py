"""SQLAlchemy models for SwapHub server.

This module defines the database schema using SQLAlchemy ORM.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def new_id() -> str:
    """Generate an opaque identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class User(Base):
    """Represents a registered user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    tokens: Mapped[list[AuthToken]] = relationship(
        "AuthToken", back_populates="user", cascade="all, delete-orphan"
    )


class AuthToken(Base):
    """Represents a bearer token issued at login."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    user: Mapped[User] = relationship("User", back_populates="tokens")

    # Indexes
    __table_args__ = (Index("idx_tokens_hash", "token_hash"),)


class Item(Base):
    """Represents a posted item that can be offered or desired in a swap."""

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (Index("idx_items_owner", "owner_id"),)


class SwapRequest(Base):
    """Represents a proposal to exchange one item for another.

    Removal deletes the row; there is no "deleted" status.
    """

    __tablename__ = "swap_requests"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    offered_item_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("items.id"), nullable=False
    )
    desired_item_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("items.id"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False)
    receiver_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_swaps_sender", "sender_id"),
        Index("idx_swaps_receiver", "receiver_id"),
        Index("idx_swaps_status", "status"),
    )


class ChatSession(Base):
    """Chat between the two parties of an accepted swap request.

    ``request_id`` is not a foreign key: removing the request leaves the chat.
    """

    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    participant_a: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.id"), nullable=False
    )
    participant_b: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    messages: Mapped[list[ChatMessage]] = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatMessage.seq",
    )

    __table_args__ = (
        Index("idx_chats_a", "participant_a"),
        Index("idx_chats_b", "participant_b"),
    )

    @property
    def participants(self) -> frozenset[str]:
        """Unordered participant set."""
        return frozenset((self.participant_a, self.participant_b))


class ChatMessage(Base):
    """A message appended to a chat session."""

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    chat_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    chat: Mapped[ChatSession] = relationship("ChatSession", back_populates="messages")

    __table_args__ = (UniqueConstraint("chat_id", "seq", name="uq_chat_messages_seq"),)
