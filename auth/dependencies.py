"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credentials are accepted, checked in this order:
  1. Authorization: Bearer <JWT>  -- people, via POST /api/v1/auth/token.
  2. X-API-Key: <key>             -- partners, CI jobs and scripts.

Both converge on a User.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises HTTP 401 if unauthenticated.
require_admin() additionally raises HTTP 403 if the user is not an admin.

Layer rule: no imports from inventory/ or sync/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import ROLE_ADMIN, User
from auth.tokens import decode_access_token, hash_api_key


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via Bearer JWT or API key. Never raises."""
    user_store = request.app.state.user_store

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        payload = decode_access_token(auth_header[7:])
        if payload:
            user = user_store.get_by_id(payload["user_id"])
            if user and user.is_active:
                return user

    raw_key = request.headers.get("X-API-Key", "")
    if raw_key:
        key = user_store.get_api_key_by_hash(hash_api_key(raw_key))
        if key and key.is_active:
            user = user_store.get_by_id(key.user_id)
            if user and user.is_active:
                user_store.touch_api_key(key.id)
                return user

    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if user.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
