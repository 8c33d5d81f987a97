"""Swap request ledger and lifecycle state machine.

States and transitions:

    pending ──accept──► accepted ──remove──► (deleted)
       │
       └────reject────► rejected ──remove──► (deleted)

Invariants enforced:
- Only the receiver accepts or rejects; either party removes
- A pending request is never removed, a decided one never re-decided
- Accept runs an ordered pipeline (commit status, mark items unavailable,
  create chat, publish) and its side effects happen at most once per request
- An item leaves with at most one accepted swap

Mutations of one request are serialized by a per-request lock, and every
status write is conditional on the expected current status, so of two racing
operations the second observes the committed state and fails with StateError.
Events are published before the lock is released; publishing only queues
frames on the bus, so a slow client never holds up a transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from swaphub.core.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from swaphub.core.events import (
    ChatSnapshot,
    ChatUpdate,
    RequestCreated,
    RequestRemoved,
    RequestUpdated,
    SwapAccepted,
    SwapNotification,
    SwapRequestSnapshot,
)
from swaphub.core.types import NotificationKind, SwapStatus
from swaphub.server.locks import KeyedLock
from swaphub.server.schemas import item_to_snapshot, request_to_snapshot

if TYPE_CHECKING:
    from swaphub.server.chats import ChatStore
    from swaphub.server.database import Database
    from swaphub.server.models import Item, SwapRequest
    from swaphub.server.ws import EventBus

logger = logging.getLogger(__name__)


class ItemRegistry(Protocol):
    """Item collaborator: ownership and availability."""

    def get_item(self, item_id: str) -> Item | None: ...

    def set_available(self, item_id: str, available: bool) -> Item | None: ...


# Exhaustive transition whitelist. None stands for removal from the ledger.
VALID_TRANSITIONS: dict[SwapStatus, frozenset[SwapStatus | None]] = {
    SwapStatus.PENDING: frozenset({SwapStatus.ACCEPTED, SwapStatus.REJECTED}),
    SwapStatus.ACCEPTED: frozenset({None}),
    SwapStatus.REJECTED: frozenset({None}),
}


def check_transition(current: SwapStatus, target: SwapStatus | None) -> None:
    """Raise StateError unless ``current -> target`` is a legal move."""
    if target not in VALID_TRANSITIONS[current]:
        if target is None:
            raise StateError(f"A {current.value} request cannot be removed")
        raise StateError(f"Request is already {current.value}")


@dataclass
class AcceptResult:
    """Outcome of an accepted swap."""

    request: SwapRequestSnapshot
    chat: ChatSnapshot


class SwapLedger:
    """Owns swap requests and the rules for moving them between states."""

    def __init__(
        self,
        db: Database,
        chats: ChatStore,
        bus: EventBus,
        items: ItemRegistry | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            db: Database holding swap requests.
            chats: Chat store used by the accept pipeline.
            bus: Event bus for fan-out.
            items: Item registry (defaults to the database's item tables).
        """
        self._db = db
        self._chats = chats
        self._bus = bus
        self._items: ItemRegistry = items if items is not None else db
        self._locks = KeyedLock()

    # === Queries ===

    def _load(self, request_id: str) -> SwapRequest:
        request = self._db.get_swap_request(request_id)
        if request is None:
            raise NotFoundError(f"Swap request not found: {request_id}")
        return request

    async def get(self, request_id: str, acting_user: str) -> SwapRequestSnapshot:
        """Get a request visible to one of its parties."""
        request = self._load(request_id)
        if acting_user not in (request.sender_id, request.receiver_id):
            raise AuthorizationError("Not a party to this swap request")
        return request_to_snapshot(request)

    async def list_for_user(self, user_id: str) -> list[SwapRequestSnapshot]:
        """Requests the user sent or received, newest first."""
        return [request_to_snapshot(r) for r in self._db.list_swap_requests(user_id)]

    # === Transitions ===

    async def create(
        self,
        sender: str,
        offered_item_id: str,
        desired_item_id: str,
    ) -> SwapRequestSnapshot:
        """Propose swapping one of the sender's items for someone else's.

        Raises:
            NotFoundError: If an item does not exist.
            ValidationError: If ownership or availability rules are broken.
        """
        offered = self._items.get_item(offered_item_id)
        if offered is None:
            raise NotFoundError(f"Item not found: {offered_item_id}")
        desired = self._items.get_item(desired_item_id)
        if desired is None:
            raise NotFoundError(f"Item not found: {desired_item_id}")

        if offered.owner_id != sender:
            raise ValidationError("You can only offer your own items")
        if desired.owner_id == sender:
            raise ValidationError("Cannot request a swap for your own item")
        if not offered.available or not desired.available:
            raise ValidationError("Both items must be available")

        request = self._db.create_swap_request(
            sender_id=sender,
            receiver_id=desired.owner_id,
            offered_item_id=offered.id,
            desired_item_id=desired.id,
        )
        snapshot = request_to_snapshot(request)
        logger.info(
            "Swap request %s created: %s offers %s for %s",
            request.id, sender, offered.id, desired.id,
        )

        await self._bus.publish_to_users(
            (request.receiver_id, request.sender_id), RequestCreated(request=snapshot)
        )
        await self._bus.publish_to_users(
            (request.receiver_id,),
            SwapNotification(
                kind=NotificationKind.NEW_REQUEST,
                request_id=request.id,
                message="You have received a new swap request",
            ),
        )
        return snapshot

    async def accept(self, request_id: str, acting_user: str) -> AcceptResult:
        """Accept a pending request as its receiver.

        Raises:
            NotFoundError: If the request does not exist.
            AuthorizationError: If the acting user is not the receiver.
            StateError: If the request is no longer pending, or one of its
                items already went to another swap.
        """
        async with self._locks.hold(request_id):
            request = self._decide_guard(request_id, acting_user, SwapStatus.ACCEPTED)
            # No await between the availability check and the withdrawal
            self._require_available(request)
            committed = self._commit(request, SwapStatus.ACCEPTED)
            offered, desired = self._withdraw_items(committed)
            chat = await self._chats.create_session(
                committed.id, committed.sender_id, committed.receiver_id
            )

            snapshot = request_to_snapshot(committed)
            parties = (committed.sender_id, committed.receiver_id)
            await self._bus.publish_to_users(parties, RequestUpdated(request=snapshot))
            await self._bus.publish_to_users(
                parties,
                SwapAccepted(
                    request=snapshot,
                    chat_id=chat.id,
                    offered_item=item_to_snapshot(offered),
                    desired_item=item_to_snapshot(desired),
                ),
            )
            await self._bus.publish_to_users(parties, ChatUpdate(chat=chat))
            await self._notify_status(committed)

        return AcceptResult(request=snapshot, chat=chat)

    async def reject(self, request_id: str, acting_user: str) -> SwapRequestSnapshot:
        """Reject a pending request as its receiver.

        Raises:
            NotFoundError: If the request does not exist.
            AuthorizationError: If the acting user is not the receiver.
            StateError: If the request is no longer pending.
        """
        async with self._locks.hold(request_id):
            request = self._decide_guard(request_id, acting_user, SwapStatus.REJECTED)
            committed = self._commit(request, SwapStatus.REJECTED)

            snapshot = request_to_snapshot(committed)
            await self._bus.publish_to_users(
                (committed.sender_id, committed.receiver_id), RequestUpdated(request=snapshot)
            )
            await self._notify_status(committed)

        return snapshot

    async def remove(self, request_id: str, acting_user: str) -> None:
        """Delete an accepted or rejected request for both parties.

        Raises:
            NotFoundError: If the request does not exist.
            AuthorizationError: If the acting user is neither sender nor receiver.
            StateError: If the request is still pending, or was removed while
                this call waited for it.
        """
        self._load(request_id)
        async with self._locks.hold(request_id):
            request = self._db.get_swap_request(request_id)
            if request is None:
                raise StateError("Request was already removed")
            if acting_user not in (request.sender_id, request.receiver_id):
                raise AuthorizationError("Not a party to this swap request")
            check_transition(SwapStatus(request.status), None)

            if not self._db.delete_swap_request(request_id):
                raise self._lost_race(request_id)
            logger.info("Swap request %s removed by %s", request_id, acting_user)

            await self._bus.publish_to_users(
                (request.sender_id, request.receiver_id),
                RequestRemoved(request_id=request_id),
            )

    # === Recovery ===

    async def resume_incomplete(self) -> int:
        """Finish accept pipelines interrupted after the status commit.

        Re-runs the idempotent item and chat steps for accepted requests
        that have no chat session. Nothing is published: clients pick up
        the state when they query after connecting.

        Returns:
            Number of requests repaired.
        """
        repaired = 0
        for request in self._db.list_accepted_without_chat():
            async with self._locks.hold(request.id):
                self._withdraw_items(request)
                await self._chats.create_session(
                    request.id, request.sender_id, request.receiver_id
                )
            repaired += 1
            logger.warning("Resumed interrupted accept of swap request %s", request.id)
        return repaired

    # === Pipeline steps ===

    def _decide_guard(
        self, request_id: str, acting_user: str, target: SwapStatus
    ) -> SwapRequest:
        request = self._load(request_id)
        if acting_user != request.receiver_id:
            raise AuthorizationError("Only the receiver can accept or reject a swap request")
        check_transition(SwapStatus(request.status), target)
        return request

    def _commit(self, request: SwapRequest, target: SwapStatus) -> SwapRequest:
        committed = self._db.transition_swap_request(request.id, SwapStatus.PENDING, target)
        if committed is None:
            raise self._lost_race(request.id)
        logger.info("Swap request %s %s", committed.id, target.value)
        return committed

    def _lost_race(self, request_id: str) -> StateError:
        """Error for a conditional write that matched nothing."""
        current = self._db.get_swap_request(request_id)
        if current is None:
            return StateError("Request was already removed")
        return StateError(f"Request is already {current.status}")

    def _require_available(self, request: SwapRequest) -> None:
        for item_id in (request.offered_item_id, request.desired_item_id):
            item = self._items.get_item(item_id)
            if item is None:
                raise NotFoundError(f"Item not found: {item_id}")
            if not item.available:
                raise StateError(f"Item {item_id} is no longer available")

    def _withdraw_items(self, request: SwapRequest) -> tuple[Item, Item]:
        offered = self._items.set_available(request.offered_item_id, False)
        desired = self._items.set_available(request.desired_item_id, False)
        if offered is None or desired is None:
            raise NotFoundError(f"Item of swap request {request.id} no longer exists")
        return offered, desired

    async def _notify_status(self, request: SwapRequest) -> None:
        status = SwapStatus(request.status)
        await self._bus.publish_to_users(
            (request.sender_id, request.receiver_id),
            SwapNotification(
                kind=NotificationKind.STATUS_UPDATE,
                request_id=request.id,
                status=status,
                message=f"Swap request {status.value}",
            ),
        )
