"""User registration and login routes.

These back the identity gateway: a login issues the bearer token that every
other route and the event WebSocket resolve to a user ID.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import argon2
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import IntegrityError

from swaphub.core.errors import AuthenticationError, NotFoundError, ValidationError
from swaphub.server.api.deps import get_credentials, get_current_user, get_db, to_http_exception
from swaphub.server.database import Database
from swaphub.server.schemas import (
    CredentialsRequest,
    TokenResponse,
    UserResponse,
    user_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

# Password hasher
ph = argon2.PasswordHasher()


def _token_ttl(request: Request) -> timedelta | None:
    ttl: timedelta | None = getattr(request.app.state, "token_ttl", None)
    return ttl


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: CredentialsRequest,
    request: Request,
    db: Database = Depends(get_db),
) -> TokenResponse:
    """Register a new user and sign them in."""
    try:
        user = db.create_user(body.username, ph.hash(body.password))
    except IntegrityError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": ValidationError.code,
                "message": f"Username '{body.username}' is already taken",
            },
        ) from e

    raw_token, _ = db.create_token(user.id, _token_ttl(request))
    logger.info("User registered: %s (id=%s)", user.username, user.id)
    return TokenResponse(token=raw_token, user=user_to_response(user))


@router.post("/login", response_model=TokenResponse)
def login(
    body: CredentialsRequest,
    request: Request,
    db: Database = Depends(get_db),
) -> TokenResponse:
    """Exchange a username and password for a bearer token."""
    user = db.get_user_by_username(body.username)
    invalid = AuthenticationError("Invalid credentials")
    if user is None:
        raise to_http_exception(invalid)

    try:
        ph.verify(user.password_hash, body.password)
    except (argon2.exceptions.VerificationError, argon2.exceptions.InvalidHashError) as e:
        # Mismatch and unreadable stored hash look the same to the caller
        raise to_http_exception(invalid) from e

    raw_token, _ = db.create_token(user.id, _token_ttl(request))
    return TokenResponse(token=raw_token, user=user_to_response(user))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    token: str = Depends(get_credentials),
    db: Database = Depends(get_db),
    _user: str = Depends(get_current_user),
) -> Response:
    """Revoke the token used for this request."""
    db.revoke_token(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserResponse)
def me(
    db: Database = Depends(get_db),
    user_id: str = Depends(get_current_user),
) -> UserResponse:
    """Get the signed-in user."""
    user = db.get_user(user_id)
    if user is None:
        raise to_http_exception(NotFoundError(f"User not found: {user_id}"))
    return user_to_response(user)
