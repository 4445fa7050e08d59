"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic), same as
inventory/models.py. Stores and dependencies do the work.

Layer rule: no imports from api/, core/, inventory/, or sync/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_USER = "user"
# Service identity an integration's items are created under.
ROLE_INTEGRATION = "integration"

ROLES = (ROLE_ADMIN, ROLE_USER, ROLE_INTEGRATION)


@dataclass
class User:
    """An authenticated identity: a person or an integration's service user.

    hashed_password is None for service users; they authenticate only with
    the API key issued when their integration was created.
    """

    username: str
    role: str  # "admin", "user", "integration"
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass
class ApiKey:
    """A long-lived credential for partners, CI jobs and scripts.

    key_hash is HMAC-SHA256(SECRET_KEY, raw_key). key_prefix (first 12 chars)
    is kept for display only. The raw key is returned once at creation and
    never persisted.
    """

    user_id: int
    name: str
    key_hash: str
    key_prefix: str
    id: int | None = None
    created_at: str | None = None
    last_used: str | None = None
    is_active: bool = True
