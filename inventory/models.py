"""
inventory/models.py -- Domain dataclasses for the VulnWatch inventory.

These are pure data containers with zero logic. Matching, versioning and
bookkeeping rules live in the components that operate on them
(inventory/classification.py, inventory/versions.py, sync/).

id is None before a record is written to the database. Timestamps are ISO 8601
UTC strings set by the store.
"""

from dataclasses import dataclass, field
from typing import Optional

# Resource kinds an integration can feed. Values are stored verbatim in
# integrations.resource_type and external_mappings.resource_type.
RESOURCE_ASSET = "Asset"
RESOURCE_VULNERABILITY = "Vulnerability"
RESOURCE_DEVICE_ARTIFACT = "DeviceArtifact"
RESOURCE_REMEDIATION = "Remediation"

RESOURCE_TYPES = (RESOURCE_ASSET, RESOURCE_VULNERABILITY, RESOURCE_DEVICE_ARTIFACT, RESOURCE_REMEDIATION)

SYNC_SUCCESS = "Success"
SYNC_ERROR = "Error"

ARTIFACT_TYPES = ("Firmware", "Binary", "Document", "Configuration", "Other")

# Remediation urgency derived from EPSS, CVSS and CISA KEV by sync/enrichment.py.
PRIORITY_CRITICAL = "Critical"
PRIORITY_HIGH = "High"
PRIORITY_MONITOR = "Monitor"
PRIORITY_DEFER = "Defer"
PRIORITY_UNSORTED = "Unsorted"

PRIORITIES = (PRIORITY_CRITICAL, PRIORITY_HIGH, PRIORITY_MONITOR, PRIORITY_DEFER, PRIORITY_UNSORTED)


@dataclass
class ClassificationGroup:
    """A canonical device/product class keyed by its CPE string.

    Only cpe is set when the reconciler creates a group. The descriptive
    fields are filled in later by a person through the device-groups API.
    """

    cpe: str
    id: Optional[int] = None
    manufacturer: Optional[str] = None
    model_name: Optional[str] = None
    version: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


@dataclass
class Asset:
    """A tracked hospital device.

    hostname, mac_address and serial_number are the identifying attributes
    used to match an inbound record that has no external mapping yet.
    """

    ip: str
    cpe: str
    role: str
    upstream_api: str
    id: Optional[int] = None
    user_id: Optional[int] = None
    device_group_id: Optional[int] = None
    network_segment: Optional[str] = None
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    serial_number: Optional[str] = None
    location: Optional[dict] = None  # facility / building / floor / room
    status: Optional[str] = None  # "Active" | "Inactive" | "Maintenance" | "Decommissioned"
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Vulnerability:
    """A vulnerability affecting one or more device classes.

    cve_id is optional (vendors report pre-CVE findings) and is the only
    identifying attribute for fallback matching. cvss_score comes from the
    reporter; epss, in_kev and priority are filled in by enrichment and never
    by a sync or an edit.
    """

    cpes: list[str]
    exploit_uri: str
    upstream_api: str
    description: str
    narrative: str
    impact: str
    id: Optional[int] = None
    user_id: Optional[int] = None
    cve_id: Optional[str] = None
    sarif: Optional[dict] = None
    cvss_score: Optional[float] = None
    epss: Optional[float] = None
    epss_updated_at: Optional[str] = None
    in_kev: bool = False
    kev_updated_at: Optional[str] = None
    priority: str = PRIORITY_UNSORTED
    device_group_ids: list[int] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class DeviceArtifact:
    """A downloadable artifact (image, emulator build, dump) for a device class."""

    cpe: str
    role: str
    description: str
    id: Optional[int] = None
    user_id: Optional[int] = None
    device_group_id: Optional[int] = None
    download_url: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Remediation:
    """A fix for a vulnerability, optionally shipping versioned artifacts."""

    cpes: list[str]
    description: str
    narrative: str
    id: Optional[int] = None
    user_id: Optional[int] = None
    vulnerability_id: Optional[int] = None
    fix_uri: Optional[str] = None
    upstream_api: Optional[str] = None
    device_group_ids: list[int] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


@dataclass
class ArtifactInput:
    """Content for one new artifact version.

    At least one of download_url or hash is required. The API and inbound
    parsers enforce that before an ArtifactInput is built.
    """

    artifact_type: str
    name: Optional[str] = None
    download_url: Optional[str] = None
    hash: Optional[str] = None
    size: Optional[int] = None


@dataclass
class Artifact:
    """One immutable version of a wrapper's content.

    prev_version_id links back to the version this one superseded; it is None
    only for version 1.
    """

    wrapper_id: int
    artifact_type: str
    version_number: int
    id: Optional[int] = None
    user_id: Optional[int] = None
    name: Optional[str] = None
    download_url: Optional[str] = None
    hash: Optional[str] = None
    size: Optional[int] = None
    prev_version_id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ArtifactWrapper:
    """Version-independent handle for "this downloadable thing".

    Exactly one of remediation_id / device_artifact_id names the owning item.
    latest_artifact_id is None only between wrapper insert and its first version.
    """

    id: Optional[int] = None
    user_id: Optional[int] = None
    remediation_id: Optional[int] = None
    device_artifact_id: Optional[int] = None
    latest_artifact_id: Optional[int] = None
    latest_artifact: Optional[Artifact] = None
    versions_count: int = 0
    created_at: str = ""


# ---------------------------------------------------------------------------
# Integrations and sync housekeeping
# ---------------------------------------------------------------------------


@dataclass
class Integration:
    """A third-party platform that feeds one resource kind.

    integration_user_id is the service identity items are created under; the
    partner authenticates its pushes with the API key api_key_id refers to.
    """

    name: str
    integration_uri: str
    resource_type: str
    sync_every: int  # seconds
    id: Optional[int] = None
    user_id: Optional[int] = None
    integration_user_id: Optional[int] = None
    api_key_id: Optional[int] = None
    platform: Optional[str] = None
    is_generic: bool = False
    prompt: Optional[str] = None
    auth_type: str = "None"  # "None" | "Basic" | "Bearer" | "Header"
    authentication: Optional[dict] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ExternalMapping:
    """Links one (integration, external id) pair to exactly one item."""

    integration_id: int
    resource_type: str
    external_id: str
    item_id: int
    last_synced: str
    id: Optional[int] = None


@dataclass
class SyncRecord:
    """Outcome of one sync batch. Only the newest few per integration are kept."""

    integration_id: int
    status: str  # "Success" | "Error"
    synced_at: str
    error_message: Optional[str] = None
    id: Optional[int] = None
