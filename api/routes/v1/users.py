"""
api/routes/v1/users.py -- User lookup endpoints.

Routes:
  GET /api/v1/me                 -- current user's record and roles (requires auth)
  GET /api/v1/users/{username}   -- any user's record and roles (requires admin role)

The stored password hash is never included in a response.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from api.models import UserResponse
from auth.dependencies import get_current_user, get_provider, require_role
from auth.provider import KVStoreProvider
from store.kv import Record

router = APIRouter()


def _to_response(provider: KVStoreProvider, user: Record) -> UserResponse:
    cfg = provider.config
    username = user[cfg.users_username_key]
    details = {k: v for k, v in user.items() if k != cfg.users_password_key}
    roles = None if cfg.disable_roles else provider.get_user_roles(username)
    return UserResponse(username=username, details=details, roles=roles)


@router.get("/me", response_model=UserResponse)
def me(
    user: Record = Depends(get_current_user),
    provider: KVStoreProvider = Depends(get_provider),
) -> UserResponse:
    """Return the authenticated user's record and roles."""
    return _to_response(provider, user)


@router.get("/users/{username}", response_model=UserResponse)
def get_user(
    username: str,
    _admin: Record = Depends(require_role("admin")),
    provider: KVStoreProvider = Depends(get_provider),
) -> UserResponse:
    """Return a user's record and roles. Admin only."""
    user = provider.get_user_details(username)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"User {username!r} not found."},
        )
    return _to_response(provider, user)
