"""
inventory/kinds.py -- Descriptors for the four item kinds the sync engine handles.

Assets, vulnerabilities, device artifacts and remediations differ only in
their table, their columns, how they link to device groups, which attributes
identify them, and whether they own artifact wrappers. A ResourceKind captures
exactly that, so the store and the reconciler run one algorithm for all four.

Group linking comes in two shapes:
  single -- the item table carries device_group_id (record has .cpe)
  multi  -- an association table links item to groups (record has .cpes)
"""

import json
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Table

from inventory import schema
from inventory.models import (
    RESOURCE_ASSET,
    RESOURCE_DEVICE_ARTIFACT,
    RESOURCE_REMEDIATION,
    RESOURCE_VULNERABILITY,
    Asset,
    DeviceArtifact,
    Remediation,
    Vulnerability,
)


@dataclass(frozen=True)
class ResourceKind:
    resource_type: str
    table: Table
    record_type: type
    columns: tuple[str, ...]  # mutable columns copied verbatim from the record
    json_columns: tuple[str, ...] = ()
    identity_fields: tuple[str, ...] = ()
    group_column: Optional[str] = None
    group_link: Optional[Table] = None
    group_link_column: Optional[str] = None
    artifact_fk: Optional[str] = None  # artifact_wrappers column that names the owner
    search_columns: tuple[str, ...] = ()
    # Read back into the record but never written from one (enrichment output).
    derived_columns: tuple[str, ...] = ()
    # (column, kind) pairs naming another item this one links to.
    references: tuple[tuple[str, "ResourceKind"], ...] = ()

    @property
    def multi_group(self) -> bool:
        return self.group_link is not None

    def classification_keys(self, record) -> list[str]:
        if self.multi_group:
            return list(record.cpes)
        return [record.cpe]

    def identity_conditions(self, record) -> dict[str, str]:
        """Return the non-empty identifying attributes of record.

        An empty dict means the record cannot be matched by identity and the
        reconciler must create a new item.
        """
        conditions: dict[str, str] = {}
        for name in self.identity_fields:
            value = getattr(record, name, None)
            if isinstance(value, str):
                value = value.strip()
            if value:
                conditions[name] = value
        return conditions

    def row_values(self, record) -> dict:
        """Column values for an insert or update, JSON columns serialized."""
        values = {}
        for name in self.columns:
            value = getattr(record, name)
            if name in self.json_columns and value is not None:
                value = json.dumps(value)
            values[name] = value
        return values

    def build_record(self, row, cpes: list[str], group_ids: list[int]):
        """Map a DB row plus its resolved group(s) back to the domain dataclass."""
        values = {name: getattr(row, name) for name in self.columns + self.derived_columns}
        for name in self.json_columns:
            raw = values.get(name)
            values[name] = json.loads(raw) if raw else None
        common = dict(id=row.id, user_id=row.user_id, created_at=row.created_at, updated_at=row.updated_at)
        if self.multi_group:
            return self.record_type(cpes=cpes, device_group_ids=group_ids, **common, **values)
        return self.record_type(
            cpe=cpes[0] if cpes else "",
            device_group_id=group_ids[0] if group_ids else None,
            **common,
            **values,
        )


ASSET = ResourceKind(
    resource_type=RESOURCE_ASSET,
    table=schema.assets,
    record_type=Asset,
    columns=(
        "ip",
        "network_segment",
        "role",
        "upstream_api",
        "hostname",
        "mac_address",
        "serial_number",
        "location",
        "status",
    ),
    json_columns=("location",),
    identity_fields=("hostname", "mac_address", "serial_number"),
    group_column="device_group_id",
    search_columns=("ip", "role", "hostname", "serial_number"),
)

VULNERABILITY = ResourceKind(
    resource_type=RESOURCE_VULNERABILITY,
    table=schema.vulnerabilities,
    record_type=Vulnerability,
    columns=("cve_id", "sarif", "cvss_score", "exploit_uri", "upstream_api", "description", "narrative", "impact"),
    json_columns=("sarif",),
    derived_columns=("epss", "epss_updated_at", "in_kev", "kev_updated_at", "priority"),
    identity_fields=("cve_id",),
    group_link=schema.vulnerability_groups,
    group_link_column="vulnerability_id",
    search_columns=("cve_id", "description", "impact"),
)

DEVICE_ARTIFACT = ResourceKind(
    resource_type=RESOURCE_DEVICE_ARTIFACT,
    table=schema.device_artifacts,
    record_type=DeviceArtifact,
    columns=("role", "description", "download_url"),
    group_column="device_group_id",
    artifact_fk="device_artifact_id",
    search_columns=("role", "description", "download_url"),
)

REMEDIATION = ResourceKind(
    resource_type=RESOURCE_REMEDIATION,
    table=schema.remediations,
    record_type=Remediation,
    columns=("vulnerability_id", "fix_uri", "description", "narrative", "upstream_api"),
    group_link=schema.remediation_groups,
    group_link_column="remediation_id",
    artifact_fk="remediation_id",
    search_columns=("description", "narrative", "fix_uri"),
    references=(("vulnerability_id", VULNERABILITY),),
)

KINDS: dict[str, ResourceKind] = {k.resource_type: k for k in (ASSET, VULNERABILITY, DEVICE_ARTIFACT, REMEDIATION)}


def get_kind(resource_type: str) -> ResourceKind:
    """Look up a kind by its resource type. Raises ValueError for unknown types."""
    try:
        return KINDS[resource_type]
    except KeyError:
        raise ValueError(f"Unknown resource type: {resource_type!r}") from None
