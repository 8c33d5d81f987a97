"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from swaphub.server.api import chats, health, items, swaps, users

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(users.router)
router.include_router(items.router)
router.include_router(swaps.router)
router.include_router(chats.router)
