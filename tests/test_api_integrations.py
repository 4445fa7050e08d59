"""
tests/test_api_integrations.py -- Integration tests for partner integrations and sync uploads.

Coverage:
  - POST /integrations returns the service API key once and never echoes credentials
  - The partner pushes with X-API-Key; replaying the same batch updates, never duplicates
  - Upload rejections: unknown integration (404), wrong kind (422), foreign user (403)
  - GET /integrations/{id} carries the retained sync history
  - GET /integrations filters by resourceType
  - POST /integrations/sync-due is admin-only and reports one run per integration
  - DELETE /integrations/{id} revokes the partner's key

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with admin JWT
  - user_headers: Bearer headers for a non-admin user
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

PUMP = "cpe:2.3:h:acme:infusion_pump:2.1"


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _integration_body(**overrides) -> dict:
    body = {
        "name": "Biomed CMMS",
        "platform": "CMMS 9",
        "integrationUri": "https://cmms.example.org/vulnwatch/sync",
        "resourceType": "Asset",
        "syncEvery": 3600,
        "authType": "Bearer",
        "authentication": {"token": "partner-secret"},
    }
    body.update(overrides)
    return body


def _asset(vendor_id: str, **overrides) -> dict:
    item = {
        "vendorId": vendor_id,
        "ip": "10.60.0.1",
        "cpe": PUMP,
        "role": "infusion pump",
        "upstreamApi": f"https://cmms.example.org/assets/{vendor_id}",
    }
    item.update(overrides)
    return item


@pytest.fixture(scope="module")
def partner(api_client: tuple[TestClient, str, int]) -> dict:
    """Register one asset integration and return its creation response."""
    client, token, _uid = api_client
    resp = client.post("/api/v1/integrations", json=_integration_body(), headers=_auth(token))
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()


class TestCreateIntegration:
    def test_returns_api_key_once(self, partner: dict) -> None:
        assert partner["apiKey"].startswith("vw_")
        integration = partner["integration"]
        assert integration["integrationUserId"] is not None
        assert integration["apiKeyId"] is not None
        assert integration["authType"] == "Bearer"
        assert "authentication" not in integration, "Stored partner credentials must never be echoed"

    def test_sync_every_minimum(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/v1/integrations", json=_integration_body(syncEvery=10), headers=_auth(token))
        assert resp.status_code == 422

    def test_auth_type_requires_credentials(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        body = _integration_body(authType="Basic", authentication={"username": "svc"})
        resp = client.post("/api/v1/integrations", json=body, headers=_auth(token))
        assert resp.status_code == 422


class TestUpload:
    def test_push_with_api_key_is_idempotent(self, api_client: tuple[TestClient, str, int], partner: dict) -> None:
        client, token, _uid = api_client
        headers = {"X-API-Key": partner["apiKey"]}
        body = {
            "integrationId": partner["integration"]["id"],
            "items": [_asset("cmms-1", hostname="pump-ward-1"), _asset("cmms-2", serialNumber="SN-1002")],
        }
        first = client.post("/api/v1/assets/integration-upload", json=body, headers=headers)
        assert first.status_code == 200, first.text
        assert first.json()["createdItemsCount"] == 2
        assert first.json()["message"] == "success"
        assert first.json()["shouldRetry"] is False

        second = client.post("/api/v1/assets/integration-upload", json=body, headers=headers).json()
        assert second["createdItemsCount"] == 0
        assert second["updatedItemsCount"] == 2

        assets = client.get("/api/v1/assets", params={"search": "pump-ward-1"}, headers=_auth(token)).json()
        assert assets["totalCount"] == 1
        assert assets["items"][0]["userId"] == partner["integration"]["integrationUserId"]

    def test_invalid_item_rejects_batch(self, api_client: tuple[TestClient, str, int], partner: dict) -> None:
        client, _token, _uid = api_client
        body = {"integrationId": partner["integration"]["id"], "items": [_asset("cmms-9", cpe="pump")]}
        resp = client.post("/api/v1/assets/integration-upload", json=body, headers={"X-API-Key": partner["apiKey"]})
        assert resp.status_code == 422

    def test_unknown_integration(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        body = {"integrationId": 9999, "items": []}
        resp = client.post("/api/v1/assets/integration-upload", json=body, headers=_auth(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "integration_not_found"

    def test_wrong_kind(self, api_client: tuple[TestClient, str, int], partner: dict) -> None:
        client, token, _uid = api_client
        body = {"integrationId": partner["integration"]["id"], "items": []}
        resp = client.post("/api/v1/vulnerabilities/integration-upload", json=body, headers=_auth(token))
        assert resp.status_code == 422
        assert "feeds Asset" in resp.json()["error"]["message"]

    def test_foreign_user_forbidden(self, api_client: tuple[TestClient, str, int], partner: dict, user_headers) -> None:
        client, _token, _uid = api_client
        body = {"integrationId": partner["integration"]["id"], "items": []}
        resp = client.post("/api/v1/assets/integration-upload", json=body, headers=user_headers)
        assert resp.status_code == 403


class TestReadIntegrations:
    def test_detail_includes_history(self, api_client: tuple[TestClient, str, int], partner: dict) -> None:
        client, token, _uid = api_client
        integration_id = partner["integration"]["id"]
        client.post(
            "/api/v1/assets/integration-upload",
            json={"integrationId": integration_id, "items": []},
            headers={"X-API-Key": partner["apiKey"]},
        )
        data = client.get(f"/api/v1/integrations/{integration_id}", headers=_auth(token)).json()
        history = data["syncHistory"]
        assert 1 <= len(history) <= 5
        assert history[0]["status"] == "Success"

    def test_filter_by_resource_type(self, api_client: tuple[TestClient, str, int], partner: dict) -> None:
        client, token, _uid = api_client
        client.post(
            "/api/v1/integrations",
            json=_integration_body(name="Scanner", resourceType="Vulnerability", authType="None", authentication=None),
            headers=_auth(token),
        )
        data = client.get("/api/v1/integrations", params={"resourceType": "Vulnerability"}, headers=_auth(token)).json()
        assert data["totalCount"] >= 1
        assert all(i["resourceType"] == "Vulnerability" for i in data["items"])

    def test_unknown_integration_404(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        assert client.get("/api/v1/integrations/9999", headers=_auth(token)).status_code == 404


class TestSyncDue:
    def test_admin_only(self, api_client: tuple[TestClient, str, int], user_headers) -> None:
        client, _token, _uid = api_client
        assert client.post("/api/v1/integrations/sync-due", headers=user_headers).status_code == 403

    def test_forced_pass_reports_runs(
        self, api_client: tuple[TestClient, str, int], partner: dict, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        client, token, _uid = api_client
        seen = []

        def fake_fetcher(integration, **kwargs):
            seen.append(integration.id)
            return {"items": [], "hasNextPage": False}

        monkeypatch.setattr(client.app.state.scheduler, "fetcher", fake_fetcher)
        resp = client.post("/api/v1/integrations/sync-due", params={"force": "true"}, headers=_auth(token))
        assert resp.status_code == 200, resp.text
        runs = resp.json()
        assert partner["integration"]["id"] in seen
        run = next(r for r in runs if r["integrationId"] == partner["integration"]["id"])
        assert run["ok"] is True
        assert run["result"]["createdItemsCount"] == 0


class TestDeleteIntegration:
    def test_delete_revokes_key(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        created = client.post(
            "/api/v1/integrations", json=_integration_body(name="Short-lived"), headers=_auth(token)
        ).json()
        integration_id = created["integration"]["id"]
        key_headers = {"X-API-Key": created["apiKey"]}
        assert client.get("/api/v1/auth/me", headers=key_headers).status_code == 200

        assert client.delete(f"/api/v1/integrations/{integration_id}", headers=_auth(token)).status_code == 204
        assert client.get(f"/api/v1/integrations/{integration_id}", headers=_auth(token)).status_code == 404
        assert client.get("/api/v1/auth/me", headers=key_headers).status_code == 401, "Revoked key must stop working"

    def test_non_owner_cannot_delete(self, api_client: tuple[TestClient, str, int], partner: dict, user_headers) -> None:
        client, _token, _uid = api_client
        resp = client.delete(f"/api/v1/integrations/{partner['integration']['id']}", headers=user_headers)
        assert resp.status_code == 403
