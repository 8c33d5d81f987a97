"""Tests for the swap request ledger and its state machine."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from swaphub.core.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from swaphub.core.types import SwapStatus
from swaphub.server.database import Database
from swaphub.server.ledger import VALID_TRANSITIONS, SwapLedger, check_transition
from swaphub.server.models import Item
from swaphub.server.ws import EventBus

Decode = Callable[[MagicMock], Awaitable[list[dict[str, Any]]]]


async def _never_sends(message: str) -> None:
    await asyncio.Event().wait()


class TestTransitionTable:
    """Tests for VALID_TRANSITIONS and check_transition."""

    def test_every_status_has_an_entry(self) -> None:
        """The table should be exhaustive over SwapStatus."""
        assert set(VALID_TRANSITIONS) == set(SwapStatus)

    def test_pending_can_be_decided(self) -> None:
        """Pending requests can be accepted or rejected."""
        check_transition(SwapStatus.PENDING, SwapStatus.ACCEPTED)
        check_transition(SwapStatus.PENDING, SwapStatus.REJECTED)

    def test_pending_cannot_be_removed(self) -> None:
        """Removing a pending request is a state error."""
        with pytest.raises(StateError):
            check_transition(SwapStatus.PENDING, None)

    @pytest.mark.parametrize("status", [SwapStatus.ACCEPTED, SwapStatus.REJECTED])
    def test_decided_cannot_be_redecided(self, status: SwapStatus) -> None:
        """Decided requests only allow removal."""
        check_transition(status, None)
        with pytest.raises(StateError):
            check_transition(status, SwapStatus.ACCEPTED)
        with pytest.raises(StateError):
            check_transition(status, SwapStatus.REJECTED)


class TestCreate:
    """Tests for SwapLedger.create."""

    @pytest.mark.asyncio
    async def test_creates_pending_request(
        self, ledger: SwapLedger, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Should create a pending request addressed to the desired item's owner."""
        request = await ledger.create(alice, bike.id, guitar.id)

        assert request.status == SwapStatus.PENDING
        assert request.sender_id == alice
        assert request.receiver_id == bob
        assert request.offered_item_id == bike.id
        assert request.desired_item_id == guitar.id

    @pytest.mark.asyncio
    async def test_unknown_item(self, ledger: SwapLedger, alice: str, bike: Item) -> None:
        """Should raise NotFoundError for an unknown item."""
        with pytest.raises(NotFoundError):
            await ledger.create(alice, bike.id, "missing")

    @pytest.mark.asyncio
    async def test_must_own_offered_item(
        self, ledger: SwapLedger, alice: str, guitar: Item, db: Database, carol: str
    ) -> None:
        """Offering someone else's item is rejected."""
        lamp = db.create_item(carol, "Lamp")
        with pytest.raises(ValidationError):
            await ledger.create(alice, guitar.id, lamp.id)

    @pytest.mark.asyncio
    async def test_cannot_desire_own_item(
        self, ledger: SwapLedger, alice: str, bike: Item, db: Database
    ) -> None:
        """Sender and receiver must differ."""
        helmet = db.create_item(alice, "Helmet")
        with pytest.raises(ValidationError):
            await ledger.create(alice, bike.id, helmet.id)

    @pytest.mark.asyncio
    async def test_items_must_be_available(
        self, ledger: SwapLedger, alice: str, bike: Item, guitar: Item, db: Database
    ) -> None:
        """Unavailable items cannot be swapped."""
        db.set_available(guitar.id, False)
        with pytest.raises(ValidationError):
            await ledger.create(alice, bike.id, guitar.id)

    @pytest.mark.asyncio
    async def test_publishes_to_both_parties(
        self,
        ledger: SwapLedger,
        bus: EventBus,
        alice: str,
        bob: str,
        bike: Item,
        guitar: Item,
        make_ws: Callable[[], MagicMock],
        sent: Decode,
    ) -> None:
        """Both parties see the request; the receiver also gets a notification."""
        alice_ws, bob_ws = make_ws(), make_ws()
        await bus.connect(alice_ws, alice)
        await bus.connect(bob_ws, bob)

        request = await ledger.create(alice, bike.id, guitar.id)

        assert [e["event"] for e in await sent(alice_ws)] == ["request-created"]
        assert [e["event"] for e in await sent(bob_ws)] == ["request-created", "swap-notification"]
        assert (await sent(bob_ws))[0]["request"]["id"] == request.id
        assert (await sent(bob_ws))[1]["kind"] == "new_request"


class TestAccept:
    """Tests for SwapLedger.accept."""

    @pytest.mark.asyncio
    async def test_accept_runs_pipeline(
        self,
        ledger: SwapLedger,
        db: Database,
        alice: str,
        bob: str,
        bike: Item,
        guitar: Item,
    ) -> None:
        """Accept commits, withdraws both items and opens one chat."""
        request = await ledger.create(alice, bike.id, guitar.id)

        result = await ledger.accept(request.id, bob)

        assert result.request.status == SwapStatus.ACCEPTED
        assert sorted(result.chat.participants) == sorted([alice, bob])
        assert result.chat.request_id == request.id
        assert db.get_item(bike.id).available is False  # type: ignore[union-attr]
        assert db.get_item(guitar.id).available is False  # type: ignore[union-attr]
        assert db.get_chat_by_request(request.id) is not None

    @pytest.mark.asyncio
    async def test_only_receiver_accepts(
        self, ledger: SwapLedger, db: Database, alice: str, carol: str, bike: Item, guitar: Item
    ) -> None:
        """Sender and bystanders cannot accept; nothing changes."""
        request = await ledger.create(alice, bike.id, guitar.id)

        with pytest.raises(AuthorizationError):
            await ledger.accept(request.id, alice)
        with pytest.raises(AuthorizationError):
            await ledger.accept(request.id, carol)

        assert db.get_swap_request(request.id).status == "pending"  # type: ignore[union-attr]
        assert db.get_chat_by_request(request.id) is None

    @pytest.mark.asyncio
    async def test_unknown_request(self, ledger: SwapLedger, bob: str) -> None:
        """Should raise NotFoundError for an unknown ID."""
        with pytest.raises(NotFoundError):
            await ledger.accept("missing", bob)

    @pytest.mark.asyncio
    async def test_accept_twice(
        self, ledger: SwapLedger, db: Database, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """The second accept fails and opens no second chat."""
        request = await ledger.create(alice, bike.id, guitar.id)
        first = await ledger.accept(request.id, bob)

        with pytest.raises(StateError):
            await ledger.accept(request.id, bob)

        assert db.list_chats(bob) and len(db.list_chats(bob)) == 1
        assert db.list_chats(bob)[0].id == first.chat.id

    @pytest.mark.asyncio
    async def test_racing_accepts_create_one_chat(
        self, ledger: SwapLedger, db: Database, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Of two concurrent accepts exactly one wins."""
        request = await ledger.create(alice, bike.id, guitar.id)

        results = await asyncio.gather(
            ledger.accept(request.id, bob),
            ledger.accept(request.id, bob),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], StateError)
        assert len(db.list_chats(alice)) == 1

    @pytest.mark.asyncio
    async def test_accept_after_reject(
        self, ledger: SwapLedger, db: Database, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """A rejected request cannot be accepted."""
        request = await ledger.create(alice, bike.id, guitar.id)
        await ledger.reject(request.id, bob)

        with pytest.raises(StateError):
            await ledger.accept(request.id, bob)

        assert db.get_item(bike.id).available is True  # type: ignore[union-attr]
        assert db.get_chat_by_request(request.id) is None

    @pytest.mark.asyncio
    async def test_item_goes_to_one_swap(
        self,
        ledger: SwapLedger,
        db: Database,
        alice: str,
        bob: str,
        carol: str,
        bike: Item,
        guitar: Item,
    ) -> None:
        """Once an item is swapped, other requests for it cannot be accepted."""
        lamp = db.create_item(carol, "Lamp")
        first = await ledger.create(alice, bike.id, guitar.id)
        second = await ledger.create(carol, lamp.id, guitar.id)

        await ledger.accept(first.id, bob)
        with pytest.raises(StateError):
            await ledger.accept(second.id, bob)

        assert db.get_swap_request(second.id).status == "pending"  # type: ignore[union-attr]
        assert db.get_item(lamp.id).available is True  # type: ignore[union-attr]
        assert db.get_chat_by_request(second.id) is None
        assert len(db.list_chats(bob)) == 1

    @pytest.mark.asyncio
    async def test_racing_accept_and_reject(
        self, ledger: SwapLedger, db: Database, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Of an accept racing a reject, the loser fails with StateError."""
        request = await ledger.create(alice, bike.id, guitar.id)

        results = await asyncio.gather(
            ledger.accept(request.id, bob),
            ledger.reject(request.id, bob),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], StateError)
        final = db.get_swap_request(request.id).status  # type: ignore[union-attr]
        assert len(db.list_chats(bob)) == (1 if final == "accepted" else 0)

    @pytest.mark.asyncio
    async def test_stalled_client_does_not_block(
        self,
        ledger: SwapLedger,
        bus: EventBus,
        alice: str,
        bob: str,
        bike: Item,
        guitar: Item,
        make_ws: Callable[[], MagicMock],
    ) -> None:
        """A party whose socket never finishes sending does not hold up the ledger."""
        stalled = make_ws()
        stalled.send_text.side_effect = _never_sends
        await bus.connect(stalled, alice)
        request = await ledger.create(alice, bike.id, guitar.id)

        result = await asyncio.wait_for(ledger.accept(request.id, bob), timeout=1.0)
        assert result.request.status == SwapStatus.ACCEPTED

        await asyncio.wait_for(ledger.remove(request.id, bob), timeout=1.0)
        await bus.close()

    @pytest.mark.asyncio
    async def test_event_order(
        self,
        ledger: SwapLedger,
        bus: EventBus,
        alice: str,
        bob: str,
        bike: Item,
        guitar: Item,
        make_ws: Callable[[], MagicMock],
        sent: Decode,
    ) -> None:
        """Each party sees the events of an accept in commit order."""
        request = await ledger.create(alice, bike.id, guitar.id)
        alice_ws, bob_ws = make_ws(), make_ws()
        await bus.connect(alice_ws, alice)
        await bus.connect(bob_ws, bob)

        result = await ledger.accept(request.id, bob)

        expected = ["request-updated", "swap-accepted", "chat-update", "swap-notification"]
        for ws in (alice_ws, bob_ws):
            events = await sent(ws)
            assert [e["event"] for e in events] == expected
            assert events[0]["request"]["status"] == "accepted"
            assert events[1]["chat_id"] == result.chat.id
            assert events[1]["offered_item"]["available"] is False
            assert events[1]["desired_item"]["available"] is False
            assert events[2]["chat"]["id"] == result.chat.id
            assert events[3]["status"] == "accepted"


class TestReject:
    """Tests for SwapLedger.reject."""

    @pytest.mark.asyncio
    async def test_reject(
        self, ledger: SwapLedger, db: Database, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Reject sets the status and has no side effects on items."""
        request = await ledger.create(alice, bike.id, guitar.id)

        rejected = await ledger.reject(request.id, bob)

        assert rejected.status == SwapStatus.REJECTED
        assert db.get_item(guitar.id).available is True  # type: ignore[union-attr]
        assert db.get_chat_by_request(request.id) is None

    @pytest.mark.asyncio
    async def test_only_receiver_rejects(
        self, ledger: SwapLedger, alice: str, bike: Item, guitar: Item
    ) -> None:
        """The sender cannot reject their own request."""
        request = await ledger.create(alice, bike.id, guitar.id)
        with pytest.raises(AuthorizationError):
            await ledger.reject(request.id, alice)

    @pytest.mark.asyncio
    async def test_reject_after_accept(
        self, ledger: SwapLedger, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """An accepted request cannot be rejected."""
        request = await ledger.create(alice, bike.id, guitar.id)
        await ledger.accept(request.id, bob)
        with pytest.raises(StateError):
            await ledger.reject(request.id, bob)


class TestRemove:
    """Tests for SwapLedger.remove."""

    @pytest.mark.asyncio
    async def test_pending_cannot_be_removed(
        self, ledger: SwapLedger, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Neither party can remove a pending request."""
        request = await ledger.create(alice, bike.id, guitar.id)
        with pytest.raises(StateError):
            await ledger.remove(request.id, alice)
        with pytest.raises(StateError):
            await ledger.remove(request.id, bob)

    @pytest.mark.asyncio
    async def test_bystander_cannot_remove(
        self, ledger: SwapLedger, alice: str, bob: str, carol: str, bike: Item, guitar: Item
    ) -> None:
        """Only sender or receiver may remove."""
        request = await ledger.create(alice, bike.id, guitar.id)
        await ledger.reject(request.id, bob)
        with pytest.raises(AuthorizationError):
            await ledger.remove(request.id, carol)

    @pytest.mark.asyncio
    async def test_reject_then_remove(
        self,
        ledger: SwapLedger,
        bus: EventBus,
        alice: str,
        bob: str,
        bike: Item,
        guitar: Item,
        make_ws: Callable[[], MagicMock],
        sent: Decode,
    ) -> None:
        """The sender removes a rejected request; both parties are told."""
        request = await ledger.create(alice, bike.id, guitar.id)
        await ledger.reject(request.id, bob)
        bob_ws = make_ws()
        await bus.connect(bob_ws, bob)

        await ledger.remove(request.id, alice)

        assert await sent(bob_ws) == [{"event": "request-removed", "request_id": request.id}]
        with pytest.raises(NotFoundError):
            await ledger.get(request.id, alice)
        with pytest.raises(NotFoundError):
            await ledger.remove(request.id, bob)

    @pytest.mark.asyncio
    async def test_racing_removes(
        self, ledger: SwapLedger, db: Database, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Of two concurrent removes one wins; the other fails with StateError."""
        request = await ledger.create(alice, bike.id, guitar.id)
        await ledger.reject(request.id, bob)

        # Both removes get past the lookup and wait on the request lock
        async with ledger._locks.hold(request.id):
            first = asyncio.create_task(ledger.remove(request.id, alice))
            second = asyncio.create_task(ledger.remove(request.id, bob))
            await asyncio.sleep(0)

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert results[0] is None
        assert isinstance(results[1], StateError)
        assert db.get_swap_request(request.id) is None

    @pytest.mark.asyncio
    async def test_remove_accepted_keeps_chat(
        self, ledger: SwapLedger, db: Database, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Removing an accepted request leaves its chat in place."""
        request = await ledger.create(alice, bike.id, guitar.id)
        result = await ledger.accept(request.id, bob)

        await ledger.remove(request.id, bob)

        assert db.get_swap_request(request.id) is None
        assert db.get_chat(result.chat.id) is not None

    @pytest.mark.asyncio
    async def test_unknown_request(self, ledger: SwapLedger, alice: str) -> None:
        """Should raise NotFoundError for an unknown ID."""
        with pytest.raises(NotFoundError):
            await ledger.remove("missing", alice)


class TestQueries:
    """Tests for get and list_for_user."""

    @pytest.mark.asyncio
    async def test_get_requires_party(
        self, ledger: SwapLedger, alice: str, bob: str, carol: str, bike: Item, guitar: Item
    ) -> None:
        """Only the two parties can read a request."""
        request = await ledger.create(alice, bike.id, guitar.id)
        assert (await ledger.get(request.id, bob)).id == request.id
        with pytest.raises(AuthorizationError):
            await ledger.get(request.id, carol)

    @pytest.mark.asyncio
    async def test_list_for_user(
        self, ledger: SwapLedger, alice: str, bob: str, carol: str, bike: Item, guitar: Item
    ) -> None:
        """Lists sent and received requests."""
        request = await ledger.create(alice, bike.id, guitar.id)

        assert [r.id for r in await ledger.list_for_user(alice)] == [request.id]
        assert [r.id for r in await ledger.list_for_user(bob)] == [request.id]
        assert await ledger.list_for_user(carol) == []


class TestResumeIncomplete:
    """Tests for startup recovery of interrupted accepts."""

    @pytest.mark.asyncio
    async def test_finishes_interrupted_accept(
        self, ledger: SwapLedger, db: Database, alice: str, bike: Item, guitar: Item
    ) -> None:
        """An accepted request without a chat gets its side effects."""
        request = await ledger.create(alice, bike.id, guitar.id)
        # Status committed, then the process died
        db.transition_swap_request(request.id, SwapStatus.PENDING, SwapStatus.ACCEPTED)

        assert await ledger.resume_incomplete() == 1

        assert db.get_chat_by_request(request.id) is not None
        assert db.get_item(bike.id).available is False  # type: ignore[union-attr]
        assert db.get_item(guitar.id).available is False  # type: ignore[union-attr]
        assert await ledger.resume_incomplete() == 0

    @pytest.mark.asyncio
    async def test_nothing_to_resume(
        self, ledger: SwapLedger, alice: str, bob: str, bike: Item, guitar: Item
    ) -> None:
        """Completed accepts are left alone."""
        request = await ledger.create(alice, bike.id, guitar.id)
        await ledger.accept(request.id, bob)
        assert await ledger.resume_incomplete() == 0
