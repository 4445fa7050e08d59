"""
tests/conftest.py -- Shared test fixtures for VulnWatch unit and integration tests.

This module provides:
  - store / reconciler: a fresh in-memory inventory per test for unit tests
  - make_integration / asset_payload / remediation_payload: builders for
    integrations and partner records
  - _make_test_stores(): isolated shared-memory DBs for inventory + auth
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with admin JWT for API integration tests
  - user_headers: auth headers for a second, non-admin user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixtures because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit tests run on one thread and use plain :memory:.

DEBUG and ALLOWED_HOSTS must be set before any api/auth/core import so
get_settings() auto-generates SECRET_KEY and TrustedHostMiddleware accepts
TestClient's "testserver" host.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_components
from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings
from inventory.models import RESOURCE_ASSET, Integration
from inventory.store import InventoryStore
from sync.reconciler import Reconciler, build_reconciler

PUMP_CPE = "cpe:2.3:h:acme:infusion_pump:2.1"
MONITOR_CPE = "cpe:2.3:h:acme:patient_monitor:4.0"


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[InventoryStore, None, None]:
    s = InventoryStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def reconciler(store: InventoryStore) -> Reconciler:
    return build_reconciler(store, history_limit=5)


@pytest.fixture
def make_integration(store: InventoryStore):
    """Return a factory that registers an integration and returns it."""

    def _make(resource_type: str = RESOURCE_ASSET, **overrides) -> Integration:
        fields = dict(
            name=f"{resource_type} partner",
            integration_uri="https://partner.example.com/sync",
            resource_type=resource_type,
            sync_every=3600,
            user_id=1,
            integration_user_id=2,
        )
        fields.update(overrides)
        integration_id = store.create_integration(Integration(**fields))
        return store.get_integration(integration_id)

    return _make


@pytest.fixture
def asset_payload():
    """Return a builder for camelCase partner asset records."""

    def _build(vendor_id: str, **overrides) -> dict:
        record = {
            "vendorId": vendor_id,
            "ip": "10.0.0.5",
            "cpe": PUMP_CPE,
            "role": "infusion pump",
            "upstreamApi": "https://partner.example.com/assets/" + vendor_id,
        }
        record.update(overrides)
        return record

    return _build


@pytest.fixture
def remediation_payload():
    """Return a builder for camelCase partner remediation records with one firmware artifact."""

    def _build(vendor_id: str, firmware_url: str = "https://fw.example.com/pump-2.2.bin", **overrides) -> dict:
        record = {
            "vendorId": vendor_id,
            "cpes": [PUMP_CPE],
            "description": "Firmware update closing the telnet backdoor",
            "narrative": "Flash 2.2 through the service port.",
            "artifacts": [{"name": "pump-firmware", "artifactType": "Firmware", "downloadUrl": firmware_url}],
        }
        record.update(overrides)
        return record

    return _build


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Clear slowapi's in-memory counters so one test's requests never throttle another's."""
    limiter.reset()
    yield


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[InventoryStore, UserStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    inventory_url = f"sqlite:///file:test_inventory_{db_suffix}?mode=memory&cache=shared&uri=true"
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return InventoryStore(db_url=inventory_url), UserStore(db_url=auth_url)


def _patch_lifespan(inventory: InventoryStore, user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Builds the same component graph as production around the test stores.
    The background scheduler loop is never started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_components(app.state, inventory, user_store, get_settings())
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The admin user ("testadmin" / "testpass123") is created before the
    client starts and the JWT is generated for use in Authorization headers.
    """
    inventory, user_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])

    admin = User(username="testadmin", hashed_password=hash_password("testpass123"), role=ROLE_ADMIN)
    uid = user_store.create_user(admin)
    token = create_access_token(user_id=uid, username="testadmin", role=ROLE_ADMIN, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(inventory, user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()
    inventory.close()


@pytest.fixture(scope="module")
def user_headers(api_client: tuple[TestClient, str, int]) -> dict[str, str]:
    """Bearer headers for a plain (non-admin) user in the api_client databases."""
    client, _token, _uid = api_client
    user_store: UserStore = client.app.state.user_store
    uid = user_store.create_user(User(username="plainuser", hashed_password=hash_password("userpass123"), role=ROLE_USER))
    token = create_access_token(user_id=uid, username="plainuser", role=ROLE_USER, expire_seconds=3600)
    return {"Authorization": f"Bearer {token}"}
