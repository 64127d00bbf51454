"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credentials arrive as HTTP Basic (Authorization: Basic ...) and are checked
on every request through KVStoreProvider.authenticate_user(). There is no
session or token: each request carries its own credentials.

get_provider() reads the provider that the lifespan placed on app.state.
get_current_user() raises HTTP 401 if unauthenticated.
require_role(role) wraps get_current_user() and raises HTTP 403 if the user
does not hold role (always, when the provider has roles disabled).

Every authentication failure produces the same 401 body. Whether the user is
unknown, has no password, or sent the wrong one is never disclosed [A2].
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from auth.provider import KVStoreProvider
from store.kv import Record

_basic = HTTPBasic(auto_error=False)

_UNAUTHORIZED = HTTPException(
    status_code=401,
    detail={"code": "unauthorized", "message": "Authentication required."},
    headers={"WWW-Authenticate": "Basic"},
)


def get_provider(request: Request) -> KVStoreProvider:
    return request.app.state.provider


def get_current_user(
    credentials: HTTPBasicCredentials | None = Depends(_basic),
    provider: KVStoreProvider = Depends(get_provider),
) -> Record:
    """Require valid Basic credentials. Returns the authenticated user's record.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: dict = Depends(get_current_user)): ...
    """
    if credentials is None:
        raise _UNAUTHORIZED
    if not provider.authenticate_user(credentials.username, credentials.password):
        raise _UNAUTHORIZED
    user = provider.get_user_details(credentials.username)
    if user is None:
        # Deleted between the two lookups.
        raise _UNAUTHORIZED
    return user


def require_role(role: str) -> Callable[..., Record]:
    """Build a dependency that requires the current user to hold role.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(user: dict = Depends(require_role("admin"))): ...
    """

    def dependency(
        user: Record = Depends(get_current_user),
        provider: KVStoreProvider = Depends(get_provider),
    ) -> Record:
        # With roles disabled nobody holds any role.
        username = user[provider.config.users_username_key]
        if provider.config.disable_roles or not provider.user_has_role(username, role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Role {role!r} required."},
            )
        return user

    return dependency
