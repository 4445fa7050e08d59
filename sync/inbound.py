"""
sync/inbound.py -- Validation of partner payloads before they reach the reconciler.

Partners push (or we pull) JSON batches of items in the shape of the item
input models below plus a vendorId. Every item in a batch is validated up
front: a single malformed item rejects the whole batch with
BatchValidationError and nothing is persisted.

The same input models back the manual CRUD request bodies in api/, so a
partner record and a hand-entered record are held to identical rules.

Pipeline:
  payload -> parse_batch(resource_type, payload) -> list[InboundItem]
  -> Reconciler.reconcile(integration_id, items)

JSON keys are camelCase on the wire (vendorId, upstreamApi, ...); Python
attributes are snake_case. populate_by_name lets tests use either.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Optional, Union
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from inventory.errors import InvalidInputError
from inventory.models import (
    RESOURCE_ASSET,
    RESOURCE_DEVICE_ARTIFACT,
    RESOURCE_REMEDIATION,
    RESOURCE_VULNERABILITY,
    ArtifactInput,
    Asset,
    DeviceArtifact,
    Remediation,
    Vulnerability,
)

# ---------------------------------------------------------------------------
# Constants and constrained types
# ---------------------------------------------------------------------------

# CPE 2.3 formatted string: part (a/h/o) followed by up to ten components.
# Trailing components may be omitted; partners rarely send all thirteen.
CPE_PATTERN = r"^cpe:2\.3:[aho\*\-](?::[^:\s]*){1,10}$"
CVE_PATTERN = r"^CVE-\d{4}-\d{4,}$"


def _check_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be an absolute http(s) URL")
    return value


Cpe = Annotated[str, Field(pattern=CPE_PATTERN, max_length=255)]
SafeUrl = Annotated[str, Field(max_length=2048), AfterValidator(_check_url)]


class ArtifactTypeEnum(str, Enum):
    firmware = "Firmware"
    binary = "Binary"
    document = "Document"
    configuration = "Configuration"
    other = "Other"


class AssetStatusEnum(str, Enum):
    active = "Active"
    inactive = "Inactive"
    maintenance = "Maintenance"
    decommissioned = "Decommissioned"


class _InputModel(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Artifact content
# ---------------------------------------------------------------------------


class ArtifactVersionInput(_InputModel):
    """One artifact version: a download location, a content hash, or both."""

    name: Optional[str] = Field(default=None, max_length=255)
    artifact_type: ArtifactTypeEnum
    download_url: Optional[SafeUrl] = None
    hash: Optional[str] = Field(default=None, min_length=1, max_length=255)
    size: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def require_location_or_hash(self) -> "ArtifactVersionInput":
        if self.download_url is None and self.hash is None:
            raise ValueError("Either downloadUrl or hash must be provided")
        return self

    def to_domain(self) -> ArtifactInput:
        return ArtifactInput(
            artifact_type=self.artifact_type.value,
            name=self.name,
            download_url=self.download_url,
            hash=self.hash,
            size=self.size,
        )


# ---------------------------------------------------------------------------
# Item inputs (manual CRUD bodies)
# ---------------------------------------------------------------------------


class Location(_InputModel):
    facility: Optional[str] = None
    building: Optional[str] = None
    floor: Optional[str] = None
    room: Optional[str] = None


class AssetInput(_InputModel):
    ip: str = Field(min_length=1, max_length=45)
    network_segment: Optional[str] = Field(default=None, max_length=100)
    cpe: Cpe
    role: str = Field(min_length=1, max_length=255)
    upstream_api: SafeUrl
    hostname: Optional[str] = Field(default=None, max_length=255)
    mac_address: Optional[str] = Field(default=None, max_length=32)
    serial_number: Optional[str] = Field(default=None, max_length=255)
    location: Optional[Location] = None
    status: Optional[AssetStatusEnum] = None

    def to_record(self) -> Asset:
        return Asset(
            ip=self.ip,
            cpe=self.cpe,
            role=self.role,
            upstream_api=self.upstream_api,
            network_segment=self.network_segment,
            # Blank identity attributes are stored as NULL so UNIQUE never trips on "".
            hostname=self.hostname or None,
            mac_address=self.mac_address or None,
            serial_number=self.serial_number or None,
            location=self.location.model_dump(exclude_none=True) if self.location else None,
            status=self.status.value if self.status else None,
        )

    def artifact_inputs(self) -> list[ArtifactInput]:
        return []


class VulnerabilityInput(_InputModel):
    cpes: list[Cpe] = Field(min_length=1)
    cve_id: Optional[str] = Field(default=None, pattern=CVE_PATTERN)
    sarif: Optional[dict[str, Any]] = None
    cvss_score: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    exploit_uri: SafeUrl
    upstream_api: SafeUrl
    description: str = Field(min_length=1)
    narrative: str = Field(min_length=1)
    impact: str = Field(min_length=1)

    def to_record(self) -> Vulnerability:
        return Vulnerability(
            cpes=list(self.cpes),
            cve_id=self.cve_id or None,
            sarif=self.sarif,
            cvss_score=self.cvss_score,
            exploit_uri=self.exploit_uri,
            upstream_api=self.upstream_api,
            description=self.description,
            narrative=self.narrative,
            impact=self.impact,
        )

    def artifact_inputs(self) -> list[ArtifactInput]:
        return []


class DeviceArtifactInput(_InputModel):
    cpe: Cpe
    role: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    download_url: Optional[SafeUrl] = None
    artifacts: list[ArtifactVersionInput] = Field(min_length=1)

    def to_record(self) -> DeviceArtifact:
        return DeviceArtifact(
            cpe=self.cpe,
            role=self.role,
            description=self.description,
            download_url=self.download_url,
        )

    def artifact_inputs(self) -> list[ArtifactInput]:
        return [a.to_domain() for a in self.artifacts]


class RemediationInput(_InputModel):
    cpes: list[Cpe] = Field(min_length=1)
    vulnerability_id: Optional[int] = None
    fix_uri: Optional[SafeUrl] = None
    description: str = Field(min_length=1)
    narrative: str = Field(min_length=1)
    upstream_api: Optional[SafeUrl] = None
    artifacts: list[ArtifactVersionInput] = Field(min_length=1)

    def to_record(self) -> Remediation:
        return Remediation(
            cpes=list(self.cpes),
            vulnerability_id=self.vulnerability_id,
            fix_uri=self.fix_uri,
            description=self.description,
            narrative=self.narrative,
            upstream_api=self.upstream_api,
        )

    def artifact_inputs(self) -> list[ArtifactInput]:
        return [a.to_domain() for a in self.artifacts]


# ---------------------------------------------------------------------------
# Sync items (input + vendor id)
# ---------------------------------------------------------------------------


class AssetSyncItem(AssetInput):
    vendor_id: str = Field(min_length=1, max_length=255)


class VulnerabilitySyncItem(VulnerabilityInput):
    vendor_id: str = Field(min_length=1, max_length=255)


class DeviceArtifactSyncItem(DeviceArtifactInput):
    vendor_id: str = Field(min_length=1, max_length=255)


class RemediationSyncItem(RemediationInput):
    vendor_id: str = Field(min_length=1, max_length=255)


SyncItem = Union[AssetSyncItem, VulnerabilitySyncItem, DeviceArtifactSyncItem, RemediationSyncItem]

SYNC_ITEM_MODELS: dict[str, type] = {
    RESOURCE_ASSET: AssetSyncItem,
    RESOURCE_VULNERABILITY: VulnerabilitySyncItem,
    RESOURCE_DEVICE_ARTIFACT: DeviceArtifactSyncItem,
    RESOURCE_REMEDIATION: RemediationSyncItem,
}


# ---------------------------------------------------------------------------
# Batch parsing
# ---------------------------------------------------------------------------


@dataclass
class InboundItem:
    """One validated partner record, ready for reconciliation."""

    vendor_id: str
    record: Any  # Asset | Vulnerability | DeviceArtifact | Remediation
    artifacts: list[ArtifactInput] = field(default_factory=list)


class BatchValidationError(InvalidInputError):
    """A partner batch failed validation. errors holds pydantic's error list."""

    def __init__(self, message: str, errors: Optional[list] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def to_inbound(item: SyncItem) -> InboundItem:
    return InboundItem(vendor_id=item.vendor_id, record=item.to_record(), artifacts=item.artifact_inputs())


def parse_batch(resource_type: str, payload: Any) -> list[InboundItem]:
    """Validate a raw JSON batch for resource_type.

    Accepts {"items": [...]} or a bare list. Raises BatchValidationError on
    an unknown resource type, an unexpected envelope, or any invalid item.
    """
    model = SYNC_ITEM_MODELS.get(resource_type)
    if model is None:
        raise BatchValidationError(f"Unknown resource type: {resource_type!r}")

    if isinstance(payload, dict):
        raw_items = payload.get("items")
    else:
        raw_items = payload
    if not isinstance(raw_items, list):
        raise BatchValidationError("Batch must be a list of items or an object with an 'items' list")

    try:
        items = TypeAdapter(list[model]).validate_python(raw_items)
    except ValidationError as exc:
        raise BatchValidationError(
            f"{exc.error_count()} invalid field(s) in {resource_type} batch",
            exc.errors(include_url=False, include_context=False),
        ) from exc
    return [to_inbound(item) for item in items]
