"""Swap request routes.

Every mutation goes through the SwapLedger, which also publishes the
resulting events; the responses carry the same snapshots the events do.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from swaphub.core.errors import SwapHubError
from swaphub.core.events import SwapRequestSnapshot
from swaphub.server.api.deps import get_current_user, get_ledger, to_http_exception
from swaphub.server.ledger import SwapLedger
from swaphub.server.schemas import AcceptResponse, SwapCreateRequest

router = APIRouter(prefix="/api/swaps", tags=["swaps"])


@router.post("", response_model=SwapRequestSnapshot, status_code=status.HTTP_201_CREATED)
async def create_swap(
    body: SwapCreateRequest,
    ledger: SwapLedger = Depends(get_ledger),
    user_id: str = Depends(get_current_user),
) -> SwapRequestSnapshot:
    """Propose a swap of one of the caller's items for another user's item."""
    try:
        return await ledger.create(user_id, body.offered_item_id, body.desired_item_id)
    except SwapHubError as e:
        raise to_http_exception(e) from e


@router.get("", response_model=list[SwapRequestSnapshot])
async def list_swaps(
    ledger: SwapLedger = Depends(get_ledger),
    user_id: str = Depends(get_current_user),
) -> list[SwapRequestSnapshot]:
    """List requests the caller sent or received."""
    return await ledger.list_for_user(user_id)


@router.get("/{request_id}", response_model=SwapRequestSnapshot)
async def get_swap(
    request_id: str,
    ledger: SwapLedger = Depends(get_ledger),
    user_id: str = Depends(get_current_user),
) -> SwapRequestSnapshot:
    """Get one request the caller is a party to."""
    try:
        return await ledger.get(request_id, user_id)
    except SwapHubError as e:
        raise to_http_exception(e) from e


@router.post("/{request_id}/accept", response_model=AcceptResponse)
async def accept_swap(
    request_id: str,
    ledger: SwapLedger = Depends(get_ledger),
    user_id: str = Depends(get_current_user),
) -> AcceptResponse:
    """Accept a pending request; returns the chat to join."""
    try:
        result = await ledger.accept(request_id, user_id)
    except SwapHubError as e:
        raise to_http_exception(e) from e
    return AcceptResponse(request=result.request, chat_id=result.chat.id, chat=result.chat)


@router.post("/{request_id}/reject", response_model=SwapRequestSnapshot)
async def reject_swap(
    request_id: str,
    ledger: SwapLedger = Depends(get_ledger),
    user_id: str = Depends(get_current_user),
) -> SwapRequestSnapshot:
    """Reject a pending request."""
    try:
        return await ledger.reject(request_id, user_id)
    except SwapHubError as e:
        raise to_http_exception(e) from e


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_swap(
    request_id: str,
    ledger: SwapLedger = Depends(get_ledger),
    user_id: str = Depends(get_current_user),
) -> Response:
    """Remove an accepted or rejected request for both parties."""
    try:
        await ledger.remove(request_id, user_id)
    except SwapHubError as e:
        raise to_http_exception(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
