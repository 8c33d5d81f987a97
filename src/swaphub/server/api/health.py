"""Health check API route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from swaphub import __version__
from swaphub.server.api.deps import get_bus
from swaphub.server.schemas import HealthResponse
from swaphub.server.ws import EventBus

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(bus: EventBus = Depends(get_bus)) -> HealthResponse:
    """Report liveness and the number of open event streams."""
    return HealthResponse(status="ok", version=__version__, connections=bus.connection_count)
