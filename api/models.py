"""
API request and response models for VulnWatch REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
separate from the dataclasses in inventory/models.py, which own the domain
representation; from_attributes lets a response model read a domain object
directly.

Item input bodies (AssetInput, ..., and the *SyncItem variants) live in
sync/inbound.py so manual CRUD and partner syncs share one validation path.

JSON keys are camelCase on the wire. Python attributes stay snake_case.
"""

from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.config import get_settings
from core.pagination import Page
from sync.inbound import ArtifactTypeEnum, SafeUrl

T = TypeVar("T")
ItemT = TypeVar("ItemT")


class _Out(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class _In(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class PaginatedResponse(_Out, Generic[T]):
    """One page of results plus the metadata needed to render a pager."""

    items: list[T]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def from_page(cls, page: Page, items: list) -> "PaginatedResponse":
        meta = page.meta
        return cls(
            items=items,
            page=meta.page,
            page_size=meta.page_size,
            total_count=meta.total_count,
            total_pages=meta.total_pages,
            has_next_page=meta.has_next_page,
            has_previous_page=meta.has_previous_page,
        )


# ---------------------------------------------------------------------------
# Device groups
# ---------------------------------------------------------------------------


class DeviceGroupResponse(_Out):
    id: int
    cpe: str
    manufacturer: Optional[str]
    model_name: Optional[str]
    version: Optional[str]
    created_at: str
    updated_at: str


class DeviceGroupPatch(_In):
    """Request body for PATCH /device-groups/{id}. The cpe key is immutable."""

    manufacturer: Optional[str] = Field(default=None, max_length=255)
    model_name: Optional[str] = Field(default=None, max_length=255)
    version: Optional[str] = Field(default=None, max_length=100)


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


class ArtifactResponse(_Out):
    id: int
    wrapper_id: int
    user_id: int
    name: Optional[str]
    artifact_type: str
    download_url: Optional[str]
    hash: Optional[str]
    size: Optional[int]
    version_number: int
    prev_version_id: Optional[int]
    created_at: str
    updated_at: str


class ArtifactWrapperResponse(_Out):
    id: int
    user_id: int
    remediation_id: Optional[int]
    device_artifact_id: Optional[int]
    latest_artifact_id: Optional[int]
    latest_artifact: Optional[ArtifactResponse]
    versions_count: int
    created_at: str


class ArtifactUpdate(_In):
    """Request body for PUT /artifacts/{id}. Content fields are immutable."""

    name: Optional[str] = Field(default=None, max_length=255)
    artifact_type: Optional[ArtifactTypeEnum] = None
    size: Optional[int] = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class AssetResponse(_Out):
    id: int
    user_id: int
    device_group_id: int
    cpe: str
    ip: str
    network_segment: Optional[str]
    role: str
    upstream_api: str
    hostname: Optional[str]
    mac_address: Optional[str]
    serial_number: Optional[str]
    location: Optional[dict[str, Any]]
    status: Optional[str]
    created_at: str
    updated_at: str


class VulnerabilityResponse(_Out):
    id: int
    user_id: int
    cpes: list[str]
    device_group_ids: list[int]
    cve_id: Optional[str]
    sarif: Optional[dict[str, Any]]
    cvss_score: Optional[float]
    epss: Optional[float]
    epss_updated_at: Optional[str]
    in_kev: bool
    kev_updated_at: Optional[str]
    priority: str
    exploit_uri: str
    upstream_api: str
    description: str
    narrative: str
    impact: str
    created_at: str
    updated_at: str


class DeviceArtifactResponse(_Out):
    id: int
    user_id: int
    device_group_id: int
    cpe: str
    role: str
    description: str
    download_url: Optional[str]
    artifacts: list[ArtifactWrapperResponse] = Field(default_factory=list)
    created_at: str
    updated_at: str


class RemediationResponse(_Out):
    id: int
    user_id: int
    cpes: list[str]
    device_group_ids: list[int]
    vulnerability_id: Optional[int]
    fix_uri: Optional[str]
    description: str
    narrative: str
    upstream_api: Optional[str]
    artifacts: list[ArtifactWrapperResponse] = Field(default_factory=list)
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class IntegrationUpload(_In, Generic[ItemT]):
    """Request body for POST /{kind}/integration-upload."""

    integration_id: int
    items: list[ItemT] = Field(max_length=1000)


class SyncResultResponse(_Out):
    message: str
    created_items_count: int
    updated_items_count: int
    should_retry: bool
    synced_at: str


class SyncRecordResponse(_Out):
    id: int
    status: str
    error_message: Optional[str]
    synced_at: str


class ScheduledRunResponse(_Out):
    integration_id: int
    name: str
    ok: bool
    error: Optional[str]
    result: Optional[SyncResultResponse]


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class ResourceTypeEnum(str, Enum):
    asset = "Asset"
    vulnerability = "Vulnerability"
    device_artifact = "DeviceArtifact"
    remediation = "Remediation"


class AuthTypeEnum(str, Enum):
    none = "None"
    basic = "Basic"
    bearer = "Bearer"
    header = "Header"


# Keys each auth type needs inside `authentication`.
_AUTH_KEYS = {
    AuthTypeEnum.none: (),
    AuthTypeEnum.basic: ("username", "password"),
    AuthTypeEnum.bearer: ("token",),
    AuthTypeEnum.header: ("header", "value"),
}


class IntegrationCreate(_In):
    """Request body for POST /api/v1/integrations."""

    name: str = Field(min_length=1, max_length=255)
    platform: Optional[str] = Field(default=None, max_length=255)
    integration_uri: SafeUrl
    is_generic: bool = False
    prompt: Optional[str] = Field(default=None, max_length=4000)
    resource_type: ResourceTypeEnum
    sync_every: int = Field(description="Seconds between scheduled syncs. Minimum MIN_SYNC_INTERVAL_SECONDS.")
    auth_type: AuthTypeEnum = AuthTypeEnum.none
    authentication: Optional[dict[str, str]] = None

    @field_validator("sync_every")
    @classmethod
    def check_sync_every(cls, value: int) -> int:
        minimum = get_settings().min_sync_interval_seconds
        if value < minimum:
            raise ValueError(f"syncEvery must be at least {minimum} seconds")
        return value

    @model_validator(mode="after")
    def check_authentication(self) -> "IntegrationCreate":
        required = _AUTH_KEYS[self.auth_type]
        missing = [k for k in required if not (self.authentication or {}).get(k)]
        if missing:
            raise ValueError(f"{self.auth_type.value} authentication requires: {', '.join(missing)}")
        return self


class IntegrationResponse(_Out):
    """Integration as returned to clients. Stored credentials are never echoed."""

    id: int
    user_id: int
    integration_user_id: Optional[int]
    api_key_id: Optional[int]
    name: str
    platform: Optional[str]
    integration_uri: str
    is_generic: bool
    prompt: Optional[str]
    resource_type: str
    sync_every: int
    auth_type: str
    created_at: str
    updated_at: str
    sync_history: list[SyncRecordResponse] = Field(default_factory=list)


class IntegrationCreatedResponse(_Out):
    """Returned once by POST /integrations. api_key cannot be retrieved again."""

    integration: IntegrationResponse
    api_key: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class TokenResponse(_Out):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(_Out):
    id: int
    username: str
    role: str
