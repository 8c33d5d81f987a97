"""Item registry routes.

A thin surface over the item records the swap ledger consults: post an item,
list items, read one. Editing, search and images are not handled here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from swaphub.core.errors import NotFoundError
from swaphub.core.events import ItemSnapshot
from swaphub.server.api.deps import get_current_user, get_db, to_http_exception
from swaphub.server.database import Database
from swaphub.server.schemas import ItemCreateRequest, item_to_snapshot

router = APIRouter(prefix="/api/items", tags=["items"])


@router.post("", response_model=ItemSnapshot, status_code=status.HTTP_201_CREATED)
def create_item(
    body: ItemCreateRequest,
    db: Database = Depends(get_db),
    user_id: str = Depends(get_current_user),
) -> ItemSnapshot:
    """Post a new item owned by the caller."""
    return item_to_snapshot(db.create_item(user_id, body.title))


@router.get("", response_model=list[ItemSnapshot])
def list_items(
    owner: str | None = None,
    db: Database = Depends(get_db),
    user_id: str = Depends(get_current_user),
) -> list[ItemSnapshot]:
    """List items. ``owner=me`` restricts to the caller's own items."""
    owner_id = user_id if owner == "me" else owner
    return [item_to_snapshot(i) for i in db.list_items(owner_id)]


@router.get("/{item_id}", response_model=ItemSnapshot)
def get_item(
    item_id: str,
    db: Database = Depends(get_db),
    _user: str = Depends(get_current_user),
) -> ItemSnapshot:
    """Get one item."""
    item = db.get_item(item_id)
    if item is None:
        raise to_http_exception(NotFoundError(f"Item not found: {item_id}"))
    return item_to_snapshot(item)
