"""Server database using SQLAlchemy with SQLite.

This module provides:
- User registration and token-based authentication (identity gateway)
- Item records with ownership and availability (item registry)
- Swap request persistence with status-conditional updates
- Chat sessions and ordered message storage
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import and_, create_engine, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from swaphub.core.errors import AuthenticationError
from swaphub.core.types import SwapStatus
from swaphub.server.models import (
    AuthToken,
    Base,
    ChatMessage,
    ChatSession,
    Item,
    SwapRequest,
    User,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine


def hash_token(token: str) -> str:
    """Hash a token using SHA-256.

    Args:
        token: Raw token string.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    return hashlib.sha256(token.encode()).hexdigest()


def _as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Database:
    """SQLAlchemy database for users, items, swap requests and chats.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Every method opens its own short-lived session and returns detached
    objects.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False: FastAPI may call from worker threads
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")

        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        """Path of the database file."""
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === User operations ===

    def create_user(self, username: str, password_hash: str) -> User:
        """Register a new user.

        Raises:
            IntegrityError: If the username is already taken.
        """
        with self._session() as session:
            user = User(username=username, password_hash=password_hash)
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user

    def get_user(self, user_id: str) -> User | None:
        """Get a user by ID."""
        with self._session() as session:
            user = session.get(User, user_id)
            if user:
                session.expunge(user)
            return user

    def get_user_by_username(self, username: str) -> User | None:
        """Get a user by username."""
        with self._session() as session:
            stmt = select(User).where(User.username == username)
            user = session.execute(stmt).scalar_one_or_none()
            if user:
                session.expunge(user)
            return user

    # === Token operations ===

    def create_token(
        self,
        user_id: str,
        expires_in: timedelta | None = None,
    ) -> tuple[str, AuthToken]:
        """Create a new bearer token.

        Args:
            user_id: User the token authenticates.
            expires_in: Optional expiration duration.

        Returns:
            Tuple of (raw_token, AuthToken object).
        """
        raw_token = "sh_" + secrets.token_urlsafe(32)
        now = datetime.now(UTC)
        expires_at = (now + expires_in) if expires_in else None

        with self._session() as session:
            token = AuthToken(
                user_id=user_id,
                token_hash=hash_token(raw_token),
                created_at=now,
                expires_at=expires_at,
            )
            session.add(token)
            session.commit()
            session.refresh(token)
            session.expunge(token)
            return raw_token, token

    def validate_token(self, raw_token: str) -> AuthToken | None:
        """Validate a token and return it if valid.

        Returns:
            AuthToken if valid, None if unknown, revoked or expired.
        """
        token_hash = hash_token(raw_token)
        with self._session() as session:
            stmt = select(AuthToken).where(
                AuthToken.token_hash == token_hash,
                AuthToken.revoked == False,  # noqa: E712
            )
            token = session.execute(stmt).scalar_one_or_none()
            if token is None:
                return None

            if token.expires_at and _as_utc(token.expires_at) < datetime.now(UTC):
                return None

            session.expunge(token)
            return token

    def resolve_caller(self, credential: str | None) -> str:
        """Resolve a bearer credential to a user ID.

        Raises:
            AuthenticationError: If the credential is missing, invalid or expired.
        """
        if not credential:
            raise AuthenticationError("Missing authentication credentials")
        token = self.validate_token(credential)
        if token is None:
            raise AuthenticationError("Invalid or expired token")
        return token.user_id

    def revoke_token(self, raw_token: str) -> None:
        """Revoke a token (logout)."""
        with self._session() as session:
            stmt = select(AuthToken).where(AuthToken.token_hash == hash_token(raw_token))
            token = session.execute(stmt).scalar_one_or_none()
            if token:
                token.revoked = True
                session.commit()

    def cleanup_expired_tokens(self) -> int:
        """Delete expired and revoked tokens.

        Returns:
            Number of tokens deleted.
        """
        now = datetime.now(UTC)
        with self._session() as session:
            stmt = delete(AuthToken).where(
                or_(
                    AuthToken.revoked == True,  # noqa: E712
                    and_(AuthToken.expires_at.is_not(None), AuthToken.expires_at < now),
                )
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount or 0

    # === Item registry ===

    def create_item(self, owner_id: str, title: str) -> Item:
        """Post a new, available item."""
        with self._session() as session:
            item = Item(owner_id=owner_id, title=title, available=True)
            session.add(item)
            session.commit()
            session.refresh(item)
            session.expunge(item)
            return item

    def get_item(self, item_id: str) -> Item | None:
        """Get an item by ID."""
        with self._session() as session:
            item = session.get(Item, item_id)
            if item:
                session.expunge(item)
            return item

    def list_items(self, owner_id: str | None = None) -> list[Item]:
        """List items, optionally only those of one owner."""
        with self._session() as session:
            stmt = select(Item).order_by(Item.created_at.desc())
            if owner_id is not None:
                stmt = stmt.where(Item.owner_id == owner_id)
            items = list(session.execute(stmt).scalars().all())
            for item in items:
                session.expunge(item)
            return items

    def set_available(self, item_id: str, available: bool) -> Item | None:
        """Set item availability. Idempotent.

        Returns:
            The updated item, or None if not found.
        """
        with self._session() as session:
            item = session.get(Item, item_id)
            if item is None:
                return None
            if item.available != available:
                item.available = available
                item.updated_at = utcnow()
                session.commit()
                session.refresh(item)
            session.expunge(item)
            return item

    # === Swap requests ===

    def create_swap_request(
        self,
        sender_id: str,
        receiver_id: str,
        offered_item_id: str,
        desired_item_id: str,
    ) -> SwapRequest:
        """Insert a pending swap request."""
        now = utcnow()
        with self._session() as session:
            request = SwapRequest(
                sender_id=sender_id,
                receiver_id=receiver_id,
                offered_item_id=offered_item_id,
                desired_item_id=desired_item_id,
                status=SwapStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(request)
            session.commit()
            session.refresh(request)
            session.expunge(request)
            return request

    def get_swap_request(self, request_id: str) -> SwapRequest | None:
        """Get a swap request by ID."""
        with self._session() as session:
            request = session.get(SwapRequest, request_id)
            if request:
                session.expunge(request)
            return request

    def list_swap_requests(self, user_id: str) -> list[SwapRequest]:
        """List requests where the user is sender or receiver, newest first."""
        with self._session() as session:
            stmt = (
                select(SwapRequest)
                .where(
                    or_(SwapRequest.sender_id == user_id, SwapRequest.receiver_id == user_id)
                )
                .order_by(SwapRequest.created_at.desc())
            )
            requests = list(session.execute(stmt).scalars().all())
            for request in requests:
                session.expunge(request)
            return requests

    def transition_swap_request(
        self,
        request_id: str,
        expected: SwapStatus,
        new: SwapStatus,
    ) -> SwapRequest | None:
        """Move a request to a new status if it still has the expected one.

        The update is conditional on the current status, so of two racing
        writers only the first one matches a row.

        Returns:
            The updated request, or None if no row had the expected status.
        """
        with self._session() as session:
            stmt = (
                update(SwapRequest)
                .where(SwapRequest.id == request_id, SwapRequest.status == expected.value)
                .values(status=new.value, updated_at=utcnow())
            )
            result = session.execute(stmt)
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()

            request = session.get(SwapRequest, request_id)
            if request:
                session.expunge(request)
            return request

    def delete_swap_request(self, request_id: str) -> bool:
        """Delete a request unless it is still pending.

        Returns:
            True if a row was deleted.
        """
        with self._session() as session:
            stmt = delete(SwapRequest).where(
                SwapRequest.id == request_id,
                SwapRequest.status != SwapStatus.PENDING.value,
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def list_accepted_without_chat(self) -> list[SwapRequest]:
        """Accepted requests whose chat session was never created."""
        with self._session() as session:
            stmt = (
                select(SwapRequest)
                .outerjoin(ChatSession, ChatSession.request_id == SwapRequest.id)
                .where(
                    SwapRequest.status == SwapStatus.ACCEPTED.value,
                    ChatSession.id.is_(None),
                )
            )
            requests = list(session.execute(stmt).scalars().all())
            for request in requests:
                session.expunge(request)
            return requests

    # === Chats ===

    def get_or_create_chat(
        self,
        request_id: str,
        participant_a: str,
        participant_b: str,
    ) -> tuple[ChatSession, bool]:
        """Get the chat of a request, creating it on first call.

        The unique constraint on request_id guarantees a single session
        even if two writers get past the lookup.

        Returns:
            Tuple of (chat, created).
        """
        existing = self.get_chat_by_request(request_id)
        if existing is not None:
            return existing, False

        now = utcnow()
        with self._session() as session:
            chat = ChatSession(
                request_id=request_id,
                participant_a=participant_a,
                participant_b=participant_b,
                created_at=now,
                updated_at=now,
            )
            session.add(chat)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                existing = self.get_chat_by_request(request_id)
                if existing is None:
                    raise
                return existing, False
            session.refresh(chat)
            session.expunge(chat)
            return chat, True

    def get_chat(self, chat_id: str) -> ChatSession | None:
        """Get a chat session by ID (messages not loaded)."""
        with self._session() as session:
            chat = session.get(ChatSession, chat_id)
            if chat:
                session.expunge(chat)
            return chat

    def get_chat_by_request(self, request_id: str) -> ChatSession | None:
        """Get the chat session created for a swap request."""
        with self._session() as session:
            stmt = select(ChatSession).where(ChatSession.request_id == request_id)
            chat = session.execute(stmt).scalar_one_or_none()
            if chat:
                session.expunge(chat)
            return chat

    def list_chats(self, user_id: str) -> list[ChatSession]:
        """List the user's chats, most recently active first."""
        with self._session() as session:
            stmt = (
                select(ChatSession)
                .where(
                    or_(
                        ChatSession.participant_a == user_id,
                        ChatSession.participant_b == user_id,
                    )
                )
                .order_by(ChatSession.updated_at.desc())
            )
            chats = list(session.execute(stmt).scalars().all())
            for chat in chats:
                session.expunge(chat)
            return chats

    def append_chat_message(
        self,
        chat_id: str,
        sender_id: str,
        content: str,
    ) -> tuple[ChatMessage, ChatSession] | None:
        """Append a message with the next sequence number.

        Returns:
            Tuple of (message, updated chat), or None if the chat is unknown.
        """
        now = utcnow()
        with self._session() as session:
            chat = session.get(ChatSession, chat_id)
            if chat is None:
                return None

            last_seq = session.execute(
                select(func.max(ChatMessage.seq)).where(ChatMessage.chat_id == chat_id)
            ).scalar()
            message = ChatMessage(
                chat_id=chat_id,
                seq=(last_seq or 0) + 1,
                sender_id=sender_id,
                content=content,
                created_at=now,
            )
            session.add(message)
            chat.updated_at = now
            session.commit()

            session.refresh(message)
            session.refresh(chat)
            session.expunge(message)
            session.expunge(chat)
            return message, chat

    def list_chat_messages(self, chat_id: str) -> list[ChatMessage]:
        """All messages of a chat in sequence order."""
        with self._session() as session:
            stmt = (
                select(ChatMessage)
                .where(ChatMessage.chat_id == chat_id)
                .order_by(ChatMessage.seq.asc())
            )
            messages = list(session.execute(stmt).scalars().all())
            for message in messages:
                session.expunge(message)
            return messages

    def get_last_message(self, chat_id: str) -> ChatMessage | None:
        """Most recent message of a chat."""
        with self._session() as session:
            stmt = (
                select(ChatMessage)
                .where(ChatMessage.chat_id == chat_id)
                .order_by(ChatMessage.seq.desc())
                .limit(1)
            )
            message = session.execute(stmt).scalar_one_or_none()
            if message:
                session.expunge(message)
            return message
