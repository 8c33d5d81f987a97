"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from swaphub.core.errors import AuthenticationError, SwapHubError
from swaphub.server.chats import ChatStore
from swaphub.server.database import Database
from swaphub.server.ledger import SwapLedger
from swaphub.server.ws import EventBus

# Security scheme
security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_bus(request: Request) -> EventBus:
    """Get event bus from app state."""
    bus: EventBus = request.app.state.bus
    return bus


def get_ledger(request: Request) -> SwapLedger:
    """Get swap ledger from app state."""
    ledger: SwapLedger = request.app.state.ledger
    return ledger


def get_chats(request: Request) -> ChatStore:
    """Get chat store from app state."""
    chats: ChatStore = request.app.state.chats
    return chats


def to_http_exception(error: SwapHubError) -> HTTPException:
    """Convert a taxonomy error into an HTTP error response."""
    headers = None
    if isinstance(error, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(
        status_code=error.status_code,
        detail={"code": error.code, "message": error.message},
        headers=headers,
    )


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """Validate bearer token and return the caller's user ID."""
    db = get_db(request)
    try:
        return db.resolve_caller(credentials.credentials if credentials else None)
    except AuthenticationError as e:
        raise to_http_exception(e) from e


def get_credentials(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """Raw bearer token of the request."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": AuthenticationError.code, "message": "Missing credentials"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
