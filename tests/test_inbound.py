"""Unit tests for sync/inbound.py -- partner batch validation.

Covers:
- {"items": [...]} and bare-list envelopes are both accepted
- camelCase wire keys map onto the domain dataclasses
- Blank identity attributes become None
- One invalid item rejects the whole batch with field-level errors
- Artifact versions need downloadUrl or hash; URLs must be http(s)
- CPE and CVE formats are enforced
"""

from __future__ import annotations

import pytest

from inventory.models import RESOURCE_ASSET, RESOURCE_REMEDIATION, RESOURCE_VULNERABILITY, Asset, Remediation
from sync.inbound import ArtifactVersionInput, BatchValidationError, parse_batch

PUMP_CPE = "cpe:2.3:h:acme:infusion_pump:2.1"


def _vulnerability(vendor_id: str, **overrides) -> dict:
    record = {
        "vendorId": vendor_id,
        "cpes": [PUMP_CPE],
        "cveId": "CVE-2025-10001",
        "exploitUri": "https://exploits.example.com/10001",
        "upstreamApi": "https://partner.example.com/vulns/10001",
        "description": "Hard-coded telnet credentials",
        "narrative": "Service account left enabled in release builds.",
        "impact": "Remote code execution",
    }
    record.update(overrides)
    return record


class TestEnvelope:
    def test_items_envelope(self, asset_payload) -> None:
        batch = parse_batch(RESOURCE_ASSET, {"items": [asset_payload("a-1"), asset_payload("a-2")]})
        assert [i.vendor_id for i in batch] == ["a-1", "a-2"]

    def test_bare_list(self, asset_payload) -> None:
        batch = parse_batch(RESOURCE_ASSET, [asset_payload("a-1")])
        assert len(batch) == 1

    def test_empty_batch(self) -> None:
        assert parse_batch(RESOURCE_ASSET, {"items": []}) == []

    @pytest.mark.parametrize("payload", [{"data": []}, "items", 42, {"items": "nope"}])
    def test_bad_envelope(self, payload) -> None:
        with pytest.raises(BatchValidationError, match="list of items"):
            parse_batch(RESOURCE_ASSET, payload)

    def test_unknown_resource_type(self) -> None:
        with pytest.raises(BatchValidationError, match="Unknown resource type"):
            parse_batch("Spaceship", [])


class TestAssetItems:
    def test_maps_to_domain(self, asset_payload) -> None:
        raw = asset_payload(
            "a-1",
            hostname="pump-icu-04",
            macAddress="00:1B:44:11:3A:B7",
            location={"facility": "North", "room": "ICU-4"},
            status="Active",
        )
        item = parse_batch(RESOURCE_ASSET, [raw])[0]
        assert isinstance(item.record, Asset)
        assert item.record.hostname == "pump-icu-04"
        assert item.record.mac_address == "00:1B:44:11:3A:B7"
        assert item.record.location == {"facility": "North", "room": "ICU-4"}
        assert item.record.status == "Active"
        assert item.artifacts == []

    def test_blank_identity_attributes_become_none(self, asset_payload) -> None:
        item = parse_batch(RESOURCE_ASSET, [asset_payload("a-1", hostname="   ", serialNumber="")])[0]
        assert item.record.hostname is None
        assert item.record.serial_number is None

    def test_one_bad_item_rejects_batch(self, asset_payload) -> None:
        bad = asset_payload("a-2", cpe="not-a-cpe")
        with pytest.raises(BatchValidationError) as excinfo:
            parse_batch(RESOURCE_ASSET, [asset_payload("a-1"), bad])
        assert excinfo.value.errors, "Field-level errors must be attached"
        assert excinfo.value.errors[0]["loc"][0] == 1, "Error should point at the second item"

    def test_missing_vendor_id(self, asset_payload) -> None:
        raw = asset_payload("a-1")
        del raw["vendorId"]
        with pytest.raises(BatchValidationError):
            parse_batch(RESOURCE_ASSET, [raw])

    def test_rejects_non_http_upstream(self, asset_payload) -> None:
        with pytest.raises(BatchValidationError):
            parse_batch(RESOURCE_ASSET, [asset_payload("a-1", upstreamApi="ftp://partner.example.com/x")])


class TestVulnerabilityItems:
    def test_valid(self) -> None:
        item = parse_batch(RESOURCE_VULNERABILITY, [_vulnerability("v-1")])[0]
        assert item.record.cve_id == "CVE-2025-10001"
        assert item.record.cpes == [PUMP_CPE]

    def test_cve_optional(self) -> None:
        raw = _vulnerability("v-1")
        del raw["cveId"]
        assert parse_batch(RESOURCE_VULNERABILITY, [raw])[0].record.cve_id is None

    def test_bad_cve_format(self) -> None:
        with pytest.raises(BatchValidationError):
            parse_batch(RESOURCE_VULNERABILITY, [_vulnerability("v-1", cveId="CVE-25-1")])

    def test_needs_at_least_one_cpe(self) -> None:
        with pytest.raises(BatchValidationError):
            parse_batch(RESOURCE_VULNERABILITY, [_vulnerability("v-1", cpes=[])])


class TestRemediationItems:
    def test_artifacts_become_inputs(self, remediation_payload) -> None:
        item = parse_batch(RESOURCE_REMEDIATION, [remediation_payload("r-1")])[0]
        assert isinstance(item.record, Remediation)
        assert len(item.artifacts) == 1
        assert item.artifacts[0].artifact_type == "Firmware"
        assert item.artifacts[0].download_url == "https://fw.example.com/pump-2.2.bin"

    def test_needs_an_artifact(self, remediation_payload) -> None:
        with pytest.raises(BatchValidationError):
            parse_batch(RESOURCE_REMEDIATION, [remediation_payload("r-1", artifacts=[])])


class TestArtifactVersionInput:
    def test_hash_alone_is_enough(self) -> None:
        version = ArtifactVersionInput(artifactType="Binary", hash="sha256:abc")
        assert version.to_domain().hash == "sha256:abc"

    def test_needs_url_or_hash(self) -> None:
        with pytest.raises(ValueError, match="downloadUrl or hash"):
            ArtifactVersionInput(artifactType="Binary", name="orphan")

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError):
            ArtifactVersionInput(artifactType="Spreadsheet", hash="abc")
